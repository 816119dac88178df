"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere accepts at most this many texts per invoke_model call
COHERE_MAX_BATCH = 96


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client producing one vector per input text."""

    def __init__(self, config: BedrockEmbedConfig, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        self.bedrock = client or boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _zero_vector(self) -> List[float]:
        return [0.0] * self.output_embedding_length

    def _embed_titan(self, text: str) -> List[float]:
        data = {'inputText': text, 'dimensions': self.output_embedding_length}
        response = self._call_with_retry(data)
        return response.get('embedding', self._zero_vector())

    def _embed_cohere(self, texts: List[str]) -> List[List[float]]:
        if self.output_embedding_length != 1024:
            raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

        vectors = []
        for start in range(0, len(texts), COHERE_MAX_BATCH):
            batch = texts[start:start + COHERE_MAX_BATCH]
            response = self._call_with_retry({'input_type': 'search_document', 'texts': batch})
            embeddings = response.get('embeddings') or []
            if len(embeddings) != len(batch):
                raise BedrockEmbedError(f'Cohere returned {len(embeddings)} embeddings for {len(batch)} texts')
            vectors.extend(embeddings)
        return vectors

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One embedding per input text, in input order. Blank texts map to a zero vector.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not texts:
            return []

        logger.debug(f'Generating embeddings for {len(texts)} texts')
        model = self.model_id.lower()

        # Blank inputs are not sent to the model
        positions = [i for i, text in enumerate(texts) if text and text.strip()]
        if len(positions) < len(texts):
            logger.warning('Empty text provided for embedding')
        vectors = [self._zero_vector() for _ in texts]

        try:
            if 'titan' in model:
                for i in positions:
                    vectors[i] = self._embed_titan(texts[i])
            elif 'cohere' in model:
                embedded = self._embed_cohere([texts[i] for i in positions]) if positions else []
                for i, vector in zip(positions, embedded):
                    vectors[i] = vector
            else:
                raise BedrockEmbedError(f'Unsupported model for embedding: {self.model_id}')

        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating embeddings: {e}')
            raise BedrockEmbedError(f'Embedding failed: {e}')

        logger.debug('Embeddings generated successfully')
        return vectors

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed(['test'])[0]
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
