"""
Amazon Bedrock text-generation backend built on the Converse API.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def _extract_text(response: Dict[str, Any]) -> str:
    """Concatenate the text blocks of a Converse response."""
    content = response.get('output', {}).get('message', {}).get('content', [])
    return ''.join(block.get('text', '') for block in content if isinstance(block, dict))


class BedrockLLM:
    """Amazon Bedrock generation backend with retry and exponential backoff."""

    def __init__(self, config: BedrockLLMConfig, client=None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = client or boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _converse_with_retry(self, request: Dict[str, Any]) -> Dict[str, Any]:
        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')
                return self.bedrock_runtime.converse(**request)

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def generate(self,
                 system_prompt: str,
                 user_message: str,
                 max_tokens: Optional[int] = None,
                 temperature: Optional[float] = None,
                 stop_sequences: Optional[List[str]] = None) -> str:
        """
        Generate a reply to a single user message.

        Args:
            system_prompt: Instruction placed in the system slot
            user_message: Text sent as the only user turn
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Generated text

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        request = {
            'modelId': self.model_id,
            'messages': [{'role': 'user', 'content': [{'text': user_message}]}],
            'system': [{'text': system_prompt}],
            'inferenceConfig': {
                'maxTokens': max_tokens or self.config.max_tokens,
                'temperature': self.config.temperature if temperature is None else temperature,
                'stopSequences': stop_sequences or [],
            },
        }

        response = self._converse_with_retry(request)
        text = _extract_text(response)
        usage = response.get('usage')
        if usage:
            logger.debug(f"Bedrock LLM usage: input={usage.get('inputTokens')} output={usage.get('outputTokens')}")
        logger.debug(f'Bedrock LLM response generated successfully (length: {len(text)})')
        return text

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.generate(system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                     user_message='Hi',
                                     max_tokens=10,
                                     temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
