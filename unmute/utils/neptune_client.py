"""
Amazon Neptune graph client for MATCHED relationships between users.

User vertices carry a ``user_id`` property. A directed ``MATCHED`` edge holds
``similarity`` and ``common_emotions``; Neptune edges have no list-valued
properties, so the emotions are stored as a JSON-encoded string.
"""

import json
from collections import defaultdict
from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import Order

from ..models.core import GraphMatch, Recommendation
from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)

USER_LABEL = 'User'
MATCHED_LABEL = 'MATCHED'
BLOCKED_LABEL = 'BLOCKED'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _single(value: Any, default: Any = None) -> Any:
    """Unwrap the one-element lists value_map returns for vertex properties."""
    if isinstance(value, list):
        return value[0] if value else default
    return default if value is None else value


def decode_emotions(raw: Any) -> List[str]:
    """Decode the stored emotions property into a list."""
    raw = _single(raw, '')
    if isinstance(raw, str):
        if not raw:
            return []
        try:
            decoded = json.loads(raw)
        except ValueError:
            return [raw]
        return [str(e) for e in decoded] if isinstance(decoded, list) else [str(decoded)]
    return [str(e) for e in raw or []]


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig, g: Optional[Any] = None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Pre-built traversal source, mainly for tests
        """
        self.config = config
        self.connection = None
        self.g = g
        if g is None:
            self._connect()
            logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        # Get AWS credentials
        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def _user(self, user_id: str):
        """Traversal to the user's vertex, creating it when absent."""
        return self.g.V().has(USER_LABEL, 'user_id', user_id).fold()\
            .coalesce(__.unfold(), __.addV(USER_LABEL).property('user_id', user_id))

    @retry_on_connection_error
    def upsert_match_edge(self, from_user: str, to_user: str, similarity: float, common_emotions: List[str]) -> bool:
        """
        Create or refresh the MATCHED edge from one user to another.

        A new edge takes the given similarity; an existing one moves to the mean
        of its old value and the new one, and its emotions list is extended.

        Args:
            from_user: Source user id
            to_user: Target user id
            similarity: Similarity observed for this write
            common_emotions: Emotions to append to the edge

        Returns:
            True when the edge was written
        """
        self._user(from_user).next()
        self._user(to_user).next()

        existing = self.g.V().has(USER_LABEL, 'user_id', from_user)\
            .out_e(MATCHED_LABEL).where(__.in_v().has('user_id', to_user))\
            .value_map().to_list()

        if existing:
            props = existing[0]
            old_similarity = float(_single(props.get('similarity'), 0.0))
            merged_similarity = (old_similarity + similarity) / 2
            merged_emotions = decode_emotions(props.get('common_emotions')) + list(common_emotions)

            self.g.V().has(USER_LABEL, 'user_id', from_user)\
                .out_e(MATCHED_LABEL).where(__.in_v().has('user_id', to_user))\
                .property('similarity', merged_similarity)\
                .property('common_emotions', json.dumps(merged_emotions))\
                .iterate()
            logger.debug(f'Updated MATCHED edge {from_user} -> {to_user} to {merged_similarity:.3f}')
            return True

        self.g.V().has(USER_LABEL, 'user_id', from_user)\
            .add_e(MATCHED_LABEL).to(__.V().has(USER_LABEL, 'user_id', to_user))\
            .property('similarity', float(similarity))\
            .property('common_emotions', json.dumps(list(common_emotions)))\
            .next()
        logger.debug(f'Created MATCHED edge {from_user} -> {to_user}')
        return True

    @retry_on_connection_error
    def delete_match_edge(self, from_user: str, to_user: str) -> bool:
        """Drop the MATCHED edge from one user to another, if any."""
        self.g.V().has(USER_LABEL, 'user_id', from_user)\
            .out_e(MATCHED_LABEL).where(__.in_v().has('user_id', to_user))\
            .drop().iterate()
        logger.debug(f'Removed MATCHED edge {from_user} -> {to_user}')
        return True

    @retry_on_connection_error
    def delete_user_edges(self, user_id: str) -> bool:
        """Drop every MATCHED edge touching the user, in either direction."""
        self.g.V().has(USER_LABEL, 'user_id', user_id).both_e(MATCHED_LABEL).drop().iterate()
        logger.debug(f'Removed all MATCHED edges of {user_id}')
        return True

    @retry_on_connection_error
    def find_direct_matches(self, user_id: str, limit: int = 10) -> List[GraphMatch]:
        """
        Strongest outgoing MATCHED neighbours of a user.

        Args:
            user_id: User to start from
            limit: Maximum number of neighbours

        Returns:
            GraphMatch list ordered by similarity, highest first
        """
        rows = self.g.V().has(USER_LABEL, 'user_id', user_id)\
            .out_e(MATCHED_LABEL)\
            .order().by('similarity', Order.desc)\
            .limit(limit)\
            .project('user_id', 'similarity', 'common_emotions')\
            .by(__.in_v().values('user_id'))\
            .by('similarity')\
            .by('common_emotions')\
            .to_list()

        return [
            GraphMatch(user_id=row['user_id'],
                       similarity=float(row.get('similarity', 0.0)),
                       common_emotions=decode_emotions(row.get('common_emotions'))) for row in rows
        ]

    @retry_on_connection_error
    def find_second_degree(self, user_id: str, limit: int = 10) -> List[Recommendation]:
        """
        Friend-of-friend candidates of a user.

        Users already linked to ``user_id`` by MATCHED or BLOCKED in either
        direction, and the user themself, are excluded. Candidates are ranked by
        the mean similarity of the second hop.

        Args:
            user_id: User to start from
            limit: Maximum number of recommendations

        Returns:
            Recommendation list ordered by average similarity, highest first
        """
        start = self.g.V().has(USER_LABEL, 'user_id', user_id)
        excluded = set(start.both(MATCHED_LABEL, BLOCKED_LABEL).values('user_id').to_list())
        excluded.add(user_id)

        hops: List[Dict[str, Any]] = self.g.V().has(USER_LABEL, 'user_id', user_id)\
            .out(MATCHED_LABEL)\
            .out_e(MATCHED_LABEL)\
            .project('user_id', 'similarity')\
            .by(__.in_v().values('user_id'))\
            .by('similarity')\
            .to_list()

        scores = defaultdict(list)
        for hop in hops:
            candidate = hop['user_id']
            if candidate not in excluded:
                scores[candidate].append(float(hop.get('similarity', 0.0)))

        recommendations = [
            Recommendation(user_id=candidate, avg_similarity=sum(values) / len(values))
            for candidate, values in scores.items()
        ]
        recommendations.sort(key=lambda r: (-r.avg_similarity, r.user_id))
        return recommendations[:limit]

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy
        """
        self.g.V().limit(1).count().next()
        return True
