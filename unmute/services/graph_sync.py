"""
Best-effort synchronization of the Neptune recommendation graph.

The match store is the source of truth; the graph is a secondary index. Callers
write the match store first and then call in here. Nothing in this module
raises: failures and timeouts are logged and reported as a False/empty result.
"""

from typing import List, Optional

from ..models.core import GraphMatch, Recommendation
from ..utils.async_utils import best_effort
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient

logger = get_logger(__name__)


class GraphSyncService:
    """Async, failure-tolerant front of NeptuneClient."""

    def __init__(self, neptune: Optional[NeptuneClient], timeout: float = 10.0, limit: int = 10):
        self.neptune = neptune
        self.timeout = timeout
        self.limit = limit
        if neptune is None:
            logger.warning('No graph store configured; graph sync is disabled')

    async def link(self, from_user: str, to_user: str, similarity: float, emotions: List[str]) -> bool:
        """Upsert the MATCHED edge from one user to another."""
        if self.neptune is None:
            return False
        return await best_effort(self.neptune.upsert_match_edge,
                                 from_user,
                                 to_user,
                                 similarity,
                                 list(emotions),
                                 timeout=self.timeout,
                                 description=f'Graph edge upsert {from_user} -> {to_user}',
                                 default=False)

    async def connect_users(self, user_a: str, user_b: str, similarity: float, emotions: List[str]) -> bool:
        """Upsert MATCHED in both directions so each user sees the other as a direct match."""
        forward = await self.link(user_a, user_b, similarity, emotions)
        backward = await self.link(user_b, user_a, similarity, emotions)
        return forward and backward

    async def disconnect_users(self, user_a: str, user_b: str) -> bool:
        """Remove MATCHED in both directions."""
        if self.neptune is None:
            return False
        forward = await best_effort(self.neptune.delete_match_edge,
                                    user_a,
                                    user_b,
                                    timeout=self.timeout,
                                    description=f'Graph edge removal {user_a} -> {user_b}',
                                    default=False)
        backward = await best_effort(self.neptune.delete_match_edge,
                                     user_b,
                                     user_a,
                                     timeout=self.timeout,
                                     description=f'Graph edge removal {user_b} -> {user_a}',
                                     default=False)
        return forward and backward

    async def remove_user(self, user_id: str) -> bool:
        if self.neptune is None:
            return False
        return await best_effort(self.neptune.delete_user_edges,
                                 user_id,
                                 timeout=self.timeout,
                                 description=f'Graph edge cleanup for {user_id}',
                                 default=False)

    async def find_direct_matches(self, user_id: str) -> List[GraphMatch]:
        if self.neptune is None:
            return []
        return await best_effort(self.neptune.find_direct_matches,
                                 user_id,
                                 self.limit,
                                 timeout=self.timeout,
                                 description=f'Direct match lookup for {user_id}',
                                 default=[])

    async def find_recommendations(self, user_id: str) -> List[Recommendation]:
        """
        Friend-of-friend recommendations, falling back to direct matches.

        Returns:
            Recommendation list; direct matches are converted with their edge
            similarity as the average when no second-degree user exists
        """
        if self.neptune is None:
            return []
        recommendations = await best_effort(self.neptune.find_second_degree,
                                            user_id,
                                            self.limit,
                                            timeout=self.timeout,
                                            description=f'Recommendation traversal for {user_id}',
                                            default=[])
        if recommendations:
            return recommendations

        logger.debug(f'No second-degree users for {user_id}; returning direct matches')
        direct = await self.find_direct_matches(user_id)
        return [Recommendation(user_id=m.user_id, avg_similarity=m.similarity) for m in direct]
