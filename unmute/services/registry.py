"""
Explicitly constructed set of clients and services.

Request handlers, the MCP interface and the sweep loop all receive one of these
instead of reaching for module-level singletons, so tests can build their own
with fakes.
"""

from dataclasses import dataclass
from typing import Optional

from ..stores.content_store import ContentStore
from ..stores.match_store import MatchStore
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import AppConfig, config as default_config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient
from .candidates import CandidateSource, FullScanCandidates, NearestNeighbourCandidates
from .content_service import ContentService
from .embedding_index import EmbeddingIndexService
from .graph_sync import GraphSyncService
from .match_aggregation import MatchAggregator
from .match_lifecycle import MatchLifecycleService, Notifier
from .match_scheduler import MatchScheduler

logger = get_logger(__name__)


@dataclass
class ServiceRegistry:
    """Everything the matching subsystem needs, wired together."""
    config: AppConfig
    content_store: ContentStore
    match_store: MatchStore
    embedding_index: EmbeddingIndexService
    graph: GraphSyncService
    aggregator: MatchAggregator
    lifecycle: MatchLifecycleService
    scheduler: MatchScheduler
    content: ContentService
    neptune: Optional[NeptuneClient] = None

    @classmethod
    def assemble(cls,
                 app_config: AppConfig,
                 content_store: ContentStore,
                 match_store: MatchStore,
                 embedder: Optional[BedrockEmbed] = None,
                 neptune: Optional[NeptuneClient] = None,
                 notifier: Optional[Notifier] = None) -> 'ServiceRegistry':
        """Wire services around already-built stores and clients."""
        matching = app_config.matching
        embedding_index = EmbeddingIndexService(embedder, content_store, timeout=matching.side_call_timeout)
        graph = GraphSyncService(neptune, timeout=matching.side_call_timeout)

        candidates: CandidateSource
        if matching.candidate_strategy == 'nearest':
            candidates = NearestNeighbourCandidates(content_store, embedding_index, k=matching.nearest_k)
        else:
            candidates = FullScanCandidates(content_store)

        aggregator = MatchAggregator(content_store, match_store, candidates=candidates, graph=graph, matching=matching)
        lifecycle = MatchLifecycleService(match_store, graph, content_store=content_store, notifier=notifier, matching=matching)
        scheduler = MatchScheduler(aggregator, content_store, match_store, matching=matching)
        content = ContentService(content_store, match_store, embedding_index, graph, scheduler, matching=matching)

        return cls(config=app_config,
                   content_store=content_store,
                   match_store=match_store,
                   embedding_index=embedding_index,
                   graph=graph,
                   aggregator=aggregator,
                   lifecycle=lifecycle,
                   scheduler=scheduler,
                   content=content,
                   neptune=neptune)

    @classmethod
    def build(cls, app_config: Optional[AppConfig] = None, notifier: Optional[Notifier] = None) -> 'ServiceRegistry':
        """
        Connect to OpenSearch, Bedrock and Neptune from configuration.

        OpenSearch is required. Bedrock and Neptune are secondary: if either
        cannot be reached the registry is built without it and the matching
        subsystem runs degraded.
        """
        app_config = app_config or default_config

        opensearch = OpenSearchClient(app_config.opensearch)
        content_store = ContentStore(opensearch)
        match_store = MatchStore(opensearch)
        content_store.ensure_index()
        match_store.ensure_index()

        embedder = None
        try:
            embedder = BedrockEmbed(app_config.bedrock_embed)
        except Exception as e:
            logger.warning(f'Bedrock embedding unavailable, semantic neighbours disabled: {e}')

        neptune = None
        try:
            neptune = NeptuneClient(app_config.neptune)
        except Exception as e:
            logger.warning(f'Neptune unavailable, graph sync disabled: {e}')

        return cls.assemble(app_config, content_store, match_store, embedder=embedder, neptune=neptune, notifier=notifier)

    async def close(self) -> None:
        """Finish background work and release connections."""
        await self.scheduler.drain()
        await self.lifecycle.wait_for_notifications()
        if self.neptune is not None:
            self.neptune.close()
