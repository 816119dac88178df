"""
Chat Service that formats the assembled context into a prompt and calls the generation backend.
"""

from typing import Optional

from ..models.interfaces import GenerationBackend
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso

logger = get_logger(__name__)


class GenerationError(Exception):
    """Raised when the generation backend cannot produce a reply."""
    pass


class ChatService:
    """Generate the reply for one user query."""

    def __init__(self,
                 llm: Optional[GenerationBackend] = None,
                 system_prompt: Optional[str] = None,
                 include_date: Optional[bool] = None):
        self.llm = llm if llm is not None else BedrockLLM(config.bedrock_llm)
        self.system_prompt = config.chat.system_prompt if system_prompt is None else system_prompt
        self.include_date = config.chat.include_date if include_date is None else include_date
        logger.info('Initialized ChatService')

    def build_system_prompt(self, context: str, user_preferences: str, facts: str) -> str:
        """Lay out persona, time, preferences, facts and prior conversation as tagged sections."""
        current_date_time_section = ''
        if self.include_date:
            current_date_time_section = f'<currentDateTime>{to_iso()}</currentDateTime>'

        return f"""<prompt>{self.system_prompt.strip()}</prompt>
{current_date_time_section}
<userPreferences>{user_preferences.strip()}</userPreferences>
<facts>{facts.strip()}</facts>
<previousConversation>{context.strip()}</previousConversation>"""

    def generate_response(self, user_id: str, query: str, context: str, user_preferences: str, facts: str) -> str:
        """Issue one generation call for the query.

        Args:
            user_id: Caller, used for logging only
            query: Current user message
            context: Flattened prior conversation
            user_preferences: Free-form preferences text
            facts: Known facts, one per line

        Returns:
            Generated reply

        Raises:
            GenerationError: If the backend fails
        """
        logger.info(f'Generating AI response for user {user_id}')
        system_prompt = self.build_system_prompt(context, user_preferences, facts)

        try:
            response = self.llm.generate(system_prompt, query)
        except Exception as e:
            logger.error(f'Error generating AI response: {e}')
            raise GenerationError(f'Failed to generate AI response: {e}')

        logger.debug('AI response generated successfully')
        return response
