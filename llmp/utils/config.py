"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int
    refresh_on_write: bool


@dataclass
class DynamoDBConfig:
    """Configuration for the DynamoDB fact blob table."""
    region: str
    table_name: str
    endpoint_url: Optional[str]


@dataclass
class MessageStoreConfig:
    """Configuration for the SQLite message log."""
    database_path: str


@dataclass
class ContextConfig:
    """Sizes of the context window assembled for each query."""
    recent_message_limit: int
    relevant_top_k: int


@dataclass
class FactConfig:
    """Configuration for long-term fact memory."""
    dedup_threshold: float


@dataclass
class ChatConfig:
    """Configuration for the generation prompt."""
    system_prompt: str
    include_date: bool


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    opensearch: OpenSearchConfig
    dynamodb: DynamoDBConfig
    message_store: MessageStoreConfig
    context: ContextConfig
    facts: FactConfig
    chat: ChatConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '4096')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'llmp_vectors'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         refresh_on_write=_get_bool('OPENSEARCH_REFRESH_ON_WRITE', 'false'))

    # Fact blob store configuration
    dynamodb_config = DynamoDBConfig(region=os.getenv('DYNAMODB_AWS_REGION', 'us-east-1'),
                                     table_name=os.getenv('DYNAMODB_FACTS_TABLE', 'llmp_facts'),
                                     endpoint_url=os.getenv('DYNAMODB_ENDPOINT_URL') or None)

    message_store_config = MessageStoreConfig(database_path=os.getenv('MESSAGE_STORE_PATH', 'llmp_messages.db'))

    # Context window and fact memory policy
    context_config = ContextConfig(recent_message_limit=int(os.getenv('CONTEXT_RECENT_MESSAGE_LIMIT', '10')),
                                   relevant_top_k=int(os.getenv('CONTEXT_RELEVANT_TOP_K', '5')))

    fact_config = FactConfig(dedup_threshold=float(os.getenv('FACT_DEDUP_THRESHOLD', '0.9')))

    chat_config = ChatConfig(system_prompt=os.getenv('CHAT_SYSTEM_PROMPT', 'You are a helpful assistant'),
                             include_date=_get_bool('CHAT_INCLUDE_DATE', 'true'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     opensearch=opensearch_config,
                     dynamodb=dynamodb_config,
                     message_store=message_store_config,
                     context=context_config,
                     facts=fact_config,
                     chat=chat_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
