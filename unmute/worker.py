"""
Background match sweep worker.

Usage:
    python -m unmute.worker

Runs a full recompute for every known user immediately and then every
MATCH_SWEEP_INTERVAL_HOURS until interrupted.
"""

import asyncio
import signal

from .services.registry import ServiceRegistry
from .utils.config import config
from .utils.health_check import check_health
from .utils.logging_config import get_logger

logger = get_logger(__name__)


async def main() -> None:
    registry = ServiceRegistry.build(config)
    if not check_health(registry):
        logger.error('Match store is unreachable; sweep worker not started')
        await registry.close()
        return

    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await registry.scheduler.run_forever(stop_event)
    finally:
        await registry.close()


if __name__ == '__main__':
    asyncio.run(main())
