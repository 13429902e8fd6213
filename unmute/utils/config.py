"""
Configuration management for AWS services and matching settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str  # es for managed domains, aoss for serverless collections
    index_prefix: str
    dimension: int

    @property
    def content_index(self) -> str:
        return f'{self.index_prefix}_content'

    @property
    def match_index(self) -> str:
        return f'{self.index_prefix}_matches'


@dataclass
class MatchingConfig:
    """Configuration for match scoring, scheduling and side calls."""
    similarity_threshold: float
    evidence_weight: float
    suggestion_min_score: float
    nearest_k: int
    candidate_strategy: str  # full_scan | nearest
    sweep_interval_hours: float
    sweep_concurrency: int
    side_call_timeout: float
    bulk_retry_on_conflict: int


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
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    matching: MatchingConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Content index and match store configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_AWS_SERVICE', 'es'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'unmute'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Matching configuration
    matching_config = MatchingConfig(similarity_threshold=float(os.getenv('MATCH_SIMILARITY_THRESHOLD', '0.3')),
                                     evidence_weight=float(os.getenv('MATCH_EVIDENCE_WEIGHT', '1.0')),
                                     suggestion_min_score=float(os.getenv('MATCH_SUGGESTION_MIN_SCORE', '0.6')),
                                     nearest_k=int(os.getenv('MATCH_NEAREST_K', '10')),
                                     candidate_strategy=os.getenv('MATCH_CANDIDATE_STRATEGY', 'full_scan'),
                                     sweep_interval_hours=float(os.getenv('MATCH_SWEEP_INTERVAL_HOURS', '24')),
                                     sweep_concurrency=int(os.getenv('MATCH_SWEEP_CONCURRENCY', '8')),
                                     side_call_timeout=float(os.getenv('SIDE_CALL_TIMEOUT_SECONDS', '10')),
                                     bulk_retry_on_conflict=int(os.getenv('MATCH_BULK_RETRY_ON_CONFLICT', '5')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     matching=matching_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
