"""
Match lifecycle: accept, reject and unmatch, plus the read views around them.

State machine::

    pending --both sides accept--> accepted --either side unmatches--> unmatched
    pending --either side rejects--> rejected

Status writes are guarded by the record's seq_no/primary_term and retried on a
version conflict, so two users accepting at the same moment both land and an
aggregator merge racing with the write is never overwritten. Graph sync and
notifications run after the status write is durable and never undo it.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..models.core import MatchRecord, MatchStatus, Recommendation
from ..stores.content_store import ContentStore, ContentStoreError
from ..stores.match_store import MatchStore, MatchStoreConflictError, MatchStoreError
from ..utils.async_utils import run_blocking
from ..utils.config import MatchingConfig, config
from ..utils.logging_config import get_logger
from .errors import (MatchAuthorizationError, MatchError, MatchNotFoundError, MatchStateError,
                     MatchValidationError)
from .graph_sync import GraphSyncService

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 5

PENDING_ROLES = ('sent', 'received')

Notifier = Callable[[str, MatchRecord, str], Awaitable[None]]


class MatchLifecycleService:
    """User-driven transitions of match records."""

    def __init__(self,
                 match_store: MatchStore,
                 graph: GraphSyncService,
                 content_store: Optional[ContentStore] = None,
                 notifier: Optional[Notifier] = None,
                 matching: Optional[MatchingConfig] = None):
        self.match_store = match_store
        self.graph = graph
        self.content_store = content_store
        self.notifier = notifier
        self.matching = matching or config.matching
        self._background: Set[asyncio.Task] = set()

    async def accept_match_side(self, match_id: str, user_id: str) -> MatchRecord:
        """
        Record one party's acceptance.

        The match becomes accepted only once both parties have accepted; the
        graph edge is written at that moment.

        Raises:
            MatchValidationError, MatchNotFoundError, MatchAuthorizationError,
            MatchStateError: As their names say
        """

        def accept(record: MatchRecord) -> MatchRecord:
            if record.status != MatchStatus.PENDING:
                raise MatchStateError(f'Match {match_id} is {record.status.value}, not pending')
            if user_id == record.user_a:
                record.user_a_accepted = True
            else:
                record.user_b_accepted = True
            if record.user_a_accepted and record.user_b_accepted:
                record.status = MatchStatus.ACCEPTED
            return record

        record = await self._transition(match_id, user_id, accept)

        if record.status == MatchStatus.ACCEPTED:
            logger.info(f'Match {match_id} accepted by both users')
            if not await self.graph.connect_users(record.user_a, record.user_b, record.mean_pair_score,
                                                 record.common_emotions):
                logger.warning(f'Match {match_id} accepted but graph edge was not written')
            self._notify('match_accepted', record, user_id)
        else:
            logger.info(f'User {user_id} accepted their side of match {match_id}')
            self._notify('match_requested', record, user_id)
        return record

    async def reject_match(self, match_id: str, user_id: str) -> MatchRecord:
        """Reject a pending match for both parties and drop its graph edges."""

        def reject(record: MatchRecord) -> MatchRecord:
            if record.status != MatchStatus.PENDING:
                raise MatchStateError(f'Match {match_id} is {record.status.value}, not pending')
            record.status = MatchStatus.REJECTED
            record.user_a_accepted = record.user_b_accepted = False
            return record

        record = await self._transition(match_id, user_id, reject)
        logger.info(f'User {user_id} rejected match {match_id}')
        await self.graph.disconnect_users(record.user_a, record.user_b)
        self._notify('match_rejected', record, user_id)
        return record

    async def unmatch(self, match_id: str, user_id: str) -> MatchRecord:
        """End an accepted match and drop its graph edges."""

        def end(record: MatchRecord) -> MatchRecord:
            if record.status != MatchStatus.ACCEPTED:
                raise MatchStateError(f'Match {match_id} is {record.status.value}, not accepted')
            record.status = MatchStatus.UNMATCHED
            record.user_a_accepted = record.user_b_accepted = False
            return record

        record = await self._transition(match_id, user_id, end)
        logger.info(f'User {user_id} unmatched {match_id}')
        await self.graph.disconnect_users(record.user_a, record.user_b)
        self._notify('match_ended', record, user_id)
        return record

    async def list_pending_matches(self, user_id: str, role: str) -> List[MatchRecord]:
        """
        Pending matches split by side.

        Args:
            user_id: The user
            role: 'received' for records where the user is user_b, 'sent' where
                they are user_a
        """
        self._require_id(user_id, 'User ID')
        if role not in PENDING_ROLES:
            raise MatchValidationError(f"Role must be one of {', '.join(PENDING_ROLES)}")
        return await self._list(user_id, statuses=[MatchStatus.PENDING], role=role)

    async def list_accepted_or_rejected_history(self, user_id: str) -> List[MatchRecord]:
        self._require_id(user_id, 'User ID')
        return await self._list(user_id, statuses=[MatchStatus.ACCEPTED, MatchStatus.REJECTED])

    async def get_match_suggestions(self, user_id: str, min_score: Optional[float] = None) -> List[MatchRecord]:
        """Pending matches whose score reaches the suggestion floor."""
        self._require_id(user_id, 'User ID')
        floor = self.matching.suggestion_min_score if min_score is None else min_score
        return await self._list(user_id, statuses=[MatchStatus.PENDING], min_score=floor)

    async def get_match_details(self, user_id: str) -> List[Dict[str, Any]]:
        """Every match of a user with its evidence, content texts filled in where available."""
        self._require_id(user_id, 'User ID')
        records = await self._list(user_id)

        texts: Dict[str, str] = {}
        content_ids = sorted({cid for r in records for e in r.content_pair_evidence for cid in (e.content_id_a, e.content_id_b)})
        if self.content_store is not None and content_ids:
            try:
                items = await run_blocking(self.content_store.get_content_many, content_ids)
                texts = {item.id: item.text for item in items}
            except ContentStoreError as e:
                logger.warning(f'Could not load evidence texts for {user_id}: {e}')

        details = []
        for record in records:
            details.append({
                'id': record.id,
                'user_a': record.user_a,
                'user_b': record.user_b,
                'other_user': record.other_party(user_id),
                'match_score': record.match_score,
                'status': record.status.value,
                'common_emotions': list(record.common_emotions),
                'evidence': [{
                    'content_a': texts.get(e.content_id_a, e.content_id_a),
                    'content_b': texts.get(e.content_id_b, e.content_id_b),
                    'pair_score': e.pair_score
                } for e in record.content_pair_evidence]
            })
        return details

    async def get_recommended_matches(self, user_id: str) -> List[Recommendation]:
        self._require_id(user_id, 'User ID')
        return await self.graph.find_recommendations(user_id)

    async def wait_for_notifications(self) -> None:
        """Wait for in-flight notification tasks; used on shutdown."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _transition(self, match_id: str, user_id: str, change: Callable[[MatchRecord], MatchRecord]) -> MatchRecord:
        """Load, authorize, apply ``change`` and write back under optimistic concurrency."""
        self._require_id(match_id, 'Match ID')
        self._require_id(user_id, 'User ID')

        for attempt in range(MAX_WRITE_ATTEMPTS):
            try:
                loaded = await run_blocking(self.match_store.get_match, match_id)
            except MatchStoreError as e:
                logger.error(f'Failed to load match {match_id}: {e}')
                raise MatchError(f'Failed to load match {match_id}: {e}')
            if loaded is None:
                raise MatchNotFoundError(f'Match {match_id} not found')

            record, seq_no, primary_term = loaded
            if not record.involves(user_id):
                raise MatchAuthorizationError(f'User {user_id} is not part of match {match_id}')

            record = change(record)
            try:
                await run_blocking(self.match_store.update_status, match_id, record.status, record.user_a_accepted,
                                   record.user_b_accepted, seq_no, primary_term)
                return record
            except MatchStoreConflictError:
                logger.debug(f'Match {match_id} changed during update, retrying ({attempt + 1}/{MAX_WRITE_ATTEMPTS})')
            except MatchStoreError as e:
                logger.error(f'Failed to update match {match_id}: {e}')
                raise MatchError(f'Failed to update match {match_id}: {e}')

        raise MatchError(f'Match {match_id} kept changing; gave up after {MAX_WRITE_ATTEMPTS} attempts')

    async def _list(self, user_id: str, **filters: Any) -> List[MatchRecord]:
        try:
            return await run_blocking(self.match_store.list_for_user, user_id, **filters)
        except MatchStoreError as e:
            logger.error(f'Failed to list matches of {user_id}: {e}')
            raise MatchError(f'Failed to list matches: {e}')

    def _notify(self, event: str, record: MatchRecord, actor_id: str) -> None:
        if self.notifier is None:
            return
        task = asyncio.create_task(self._deliver(event, record, actor_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver(self, event: str, record: MatchRecord, actor_id: str) -> None:
        try:
            await self.notifier(event, record, actor_id)
        except Exception as e:
            logger.warning(f'Notification {event} for match {record.id} failed: {e}')

    @staticmethod
    def _require_id(value: Any, label: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise MatchValidationError(f'{label} is required')
