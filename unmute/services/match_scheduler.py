"""
Scheduling driver for match recomputation.

Runs the aggregator for every known user on a fixed interval and on demand
after content changes. One user's failure never stops the others.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..stores.content_store import ContentStore, ContentStoreError
from ..stores.match_store import MatchStore, MatchStoreError
from ..utils.async_utils import run_blocking
from ..utils.config import MatchingConfig, config
from ..utils.logging_config import get_logger
from .match_aggregation import MatchAggregator

logger = get_logger(__name__)


class MatchSchedulerError(Exception):
    """Raised when the sweep cannot even determine which users to process."""
    pass


@dataclass
class SweepReport:
    """Per-user outcome of a sweep."""
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class MatchScheduler:
    """Batch and on-demand driver of MatchAggregator."""

    def __init__(self,
                 aggregator: MatchAggregator,
                 content_store: ContentStore,
                 match_store: MatchStore,
                 matching: Optional[MatchingConfig] = None):
        self.aggregator = aggregator
        self.content_store = content_store
        self.match_store = match_store
        self.matching = matching or config.matching
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._rerun: set = set()

    async def known_user_ids(self) -> List[str]:
        """Content owners plus anyone still holding a match record."""
        try:
            owners = await run_blocking(self.content_store.list_owner_ids)
            parties = await run_blocking(self.match_store.list_party_ids)
        except (ContentStoreError, MatchStoreError) as e:
            logger.error(f'Unable to list users for match sweep: {e}')
            raise MatchSchedulerError(f'Unable to list users: {e}')
        return sorted(set(owners) | set(parties))

    async def run_for_all_users(self) -> SweepReport:
        """
        Recompute matches for every known user.

        Users are processed concurrently up to the configured limit, each in
        isolation.

        Returns:
            SweepReport with successes and per-user failure messages
        """
        user_ids = await self.known_user_ids()
        logger.info(f'Running match sweep for {len(user_ids)} users')

        report = SweepReport()
        semaphore = asyncio.Semaphore(max(1, self.matching.sweep_concurrency))

        async def run_one(user_id: str) -> None:
            async with semaphore:
                try:
                    await self.aggregator.recompute_matches_for_user(user_id)
                    report.succeeded.append(user_id)
                except Exception as e:
                    logger.error(f'Match sweep failed for user {user_id}: {e}')
                    report.failed[user_id] = str(e)

        await asyncio.gather(*(run_one(user_id) for user_id in user_ids))

        logger.info(f'Match sweep completed: {len(report.succeeded)} successes, {len(report.failed)} failures')
        return report

    def trigger(self, user_id: str) -> asyncio.Task:
        """
        Schedule a recompute without waiting for it.

        While a recompute for the user is running, further triggers collapse into
        a single follow-up run.
        """
        task = self._in_flight.get(user_id)
        if task is not None and not task.done():
            self._rerun.add(user_id)
            return task

        task = asyncio.create_task(self._run_triggered(user_id))
        self._in_flight[user_id] = task
        return task

    async def drain(self) -> None:
        """Wait for every triggered recompute to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Sweep every ``sweep_interval_hours`` until ``stop_event`` is set."""
        interval = self.matching.sweep_interval_hours * 3600
        logger.info(f'Match sweep scheduled every {self.matching.sweep_interval_hours}h')

        while not stop_event.is_set():
            try:
                await self.run_for_all_users()
            except MatchSchedulerError as e:
                logger.error(f'Match sweep skipped: {e}')

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info('Match sweep loop stopped')

    async def _run_triggered(self, user_id: str) -> None:
        try:
            while True:
                self._rerun.discard(user_id)
                try:
                    await self.aggregator.recompute_matches_for_user(user_id)
                except Exception as e:
                    logger.error(f'Triggered recompute failed for user {user_id}: {e}')
                if user_id not in self._rerun:
                    break
        finally:
            self._in_flight.pop(user_id, None)
