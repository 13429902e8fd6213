"""
Health reporting for the clients a ServiceRegistry holds.

OpenSearch is the primary store and decides overall health; Bedrock and
Neptune are best-effort and only degrade features when down.
"""

from typing import Any, Dict

from .logging_config import get_logger

logger = get_logger(__name__)

COMPONENTS = (
    ('opensearch', 'Amazon OpenSearch', 'primary'),
    ('bedrock_embed', 'Amazon Bedrock Embed', 'best-effort'),
    ('neptune', 'Amazon Neptune', 'best-effort'),
)


def _clients(registry: Any) -> Dict[str, Any]:
    return {
        'opensearch': getattr(registry.content_store, 'opensearch', None),
        'bedrock_embed': registry.embedding_index.embedder,
        'neptune': registry.neptune
    }


def get_health_status(registry: Any) -> Dict[str, Dict[str, Any]]:
    """Probe every component of ``registry``.

    Returns:
        Mapping of component key to {'healthy', 'service', 'role'} plus an
        'error' entry for components that are missing or failed
    """
    clients = _clients(registry)
    health_status = {}

    for key, service, role in COMPONENTS:
        entry: Dict[str, Any] = {'service': service, 'role': role}
        client = clients[key]
        if client is None:
            entry.update(healthy=False, error='not configured')
        else:
            try:
                entry['healthy'] = bool(client.health_check())
            except Exception as e:
                logger.error(f'{service} health check failed: {e}')
                entry.update(healthy=False, error=str(e))
        health_status[key] = entry

    return health_status


def check_health(registry: Any) -> bool:
    """True when every primary component is healthy; degraded best-effort ones are logged."""
    health_status = get_health_status(registry)

    degraded = [key for key, status in health_status.items() if not status['healthy']]
    primary_down = [key for key in degraded if health_status[key]['role'] == 'primary']

    if primary_down:
        logger.error(f"Primary components unhealthy: {', '.join(primary_down)}")
        return False
    if degraded:
        logger.warning(f"Running degraded without: {', '.join(degraded)}")
    else:
        logger.info('All system components are healthy')
    return True
