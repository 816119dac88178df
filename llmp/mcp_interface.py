"""
MCP Interface Layer using fastmcp: grounded chat and fact memory tools.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from llmp.services.chat import ChatService
from llmp.services.fact_memory import FactMemoryError, FactMemoryService
from llmp.services.orchestrator import QueryOrchestrator
from llmp.services.retrieval import RetrievalService
from llmp.utils.bedrock_embed import BedrockEmbed
from llmp.utils.bedrock_llm import BedrockLLM
from llmp.utils.config import config
from llmp.utils.dynamodb_client import DynamoDBFactStore
from llmp.utils.health_check import get_health_status
from llmp.utils.logging_config import get_logger
from llmp.utils.opensearch_client import OpenSearchClient
from llmp.utils.sqlite_client import SQLiteMessageStore

logger = get_logger(__name__)

mcp = FastMCP('LLMP Memory')

_orchestrator: Optional[QueryOrchestrator] = None


def _require_user(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')
    return user_id.strip()


def build_services() -> QueryOrchestrator:
    """Wire the production adapters into one orchestrator, sharing clients between services."""
    llm = BedrockLLM(config.bedrock_llm)
    embedder = BedrockEmbed(config.bedrock_embed)
    vector_index = OpenSearchClient(config.opensearch)
    vector_index.create_index_if_not_exists()
    message_store = SQLiteMessageStore(config.message_store)
    message_store.initialize()

    facts = FactMemoryService(blob_store=DynamoDBFactStore(config.dynamodb),
                              vector_index=vector_index,
                              embedder=embedder,
                              llm=llm)
    return QueryOrchestrator(message_store=message_store,
                             embedder=embedder,
                             retrieval=RetrievalService(vector_index=vector_index, message_store=message_store),
                             facts=facts,
                             chat=ChatService(llm=llm))


def get_orchestrator() -> QueryOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_services()
    return _orchestrator


def get_fact_service() -> FactMemoryService:
    return get_orchestrator().facts


@mcp.tool()
def chat(user_id: str, query: str, preferences: str = '') -> str:
    """Answer a user query using recent history, relevant past messages and known facts.

    Args:
        user_id: User ID
        query: User message
        preferences: Optional free-form user preferences

    Returns:
        Generated reply
    """
    user_id = _require_user(user_id)
    return get_orchestrator().handle_query(user_id, query, preferences or None)


@mcp.tool()
def get_facts(user_id: str) -> List[Dict[str, str]]:
    """List the facts remembered about a user.

    Returns:
        List of {id, text, created_at} records in insertion order
    """
    user_id = _require_user(user_id)
    return [record.to_dict() for record in get_fact_service().list_fact_records(user_id)]


@mcp.tool()
def add_fact(user_id: str, fact: str) -> Dict[str, str]:
    """Remember a fact about a user, replacing a near-duplicate if one exists.

    Returns:
        The stored fact record
    """
    user_id = _require_user(user_id)
    try:
        return get_fact_service().update_facts(user_id, fact).to_dict()
    except FactMemoryError as e:
        logger.error(f'Fact memory error in MCP add_fact: {e}')
        raise


@mcp.tool()
def remove_fact(user_id: str, fact: str) -> int:
    """Forget a fact about a user.

    Returns:
        Number of facts removed
    """
    user_id = _require_user(user_id)
    try:
        return get_fact_service().remove_fact(user_id, fact)
    except FactMemoryError as e:
        logger.error(f'Fact memory error in MCP remove_fact: {e}')
        raise


@mcp.tool()
def extract_facts(user_id: str, text: str) -> List[str]:
    """Extract facts from text and remember them.

    Returns:
        Texts of the facts stored
    """
    user_id = _require_user(user_id)
    return [record.text for record in get_fact_service().extract_and_update_facts(user_id, text)]


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of every backing service.

    Returns:
        Per-component status plus an overall ``healthy`` flag
    """
    components = get_health_status()
    return {'healthy': all(status.get('healthy', False) for status in components.values()), 'components': components}


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
