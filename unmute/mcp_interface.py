"""
MCP interface exposing match operations as tools, built with fastmcp.
"""
from typing import Any, Dict, List

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .services.errors import ContentError, MatchError
from .services.match_scheduler import MatchSchedulerError
from .services.registry import ServiceRegistry
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger

logger = get_logger(__name__)


def create_mcp(registry: ServiceRegistry) -> FastMCP:
    """Register the matching tools against ``registry``."""
    mcp = FastMCP('Unmute Matching')

    @mcp.tool()
    async def create_vent(user_id: str, text: str, emotion: str, title: str = '', kind: str = 'vent') -> Dict[str, Any]:
        """Store a vent or journal entry and start matching for it.

        Args:
            user_id: Author
            text: Body text
            emotion: Emotion tag
            title: Optional title
            kind: 'vent' or 'journal'

        Returns:
            The stored content item
        """
        try:
            item = await registry.content.create_content(user_id, text, emotion, kind=kind, title=title)
            return item.to_document()
        except ContentError as e:
            logger.error(f'Content creation failed for {user_id}: {e}')
            raise ToolError(f'Content creation failed ({e.http_status}): {e}')

    @mcp.tool()
    async def delete_vent(user_id: str, content_id: str) -> bool:
        """Delete one of the user's vents or journal entries and rescore their matches."""
        try:
            await registry.content.delete_content(content_id, user_id)
            return True
        except ContentError as e:
            logger.error(f'Content deletion failed for {user_id}: {e}')
            raise ToolError(f'Content deletion failed ({e.http_status}): {e}')

    @mcp.tool()
    async def refresh_matches(user_id: str) -> Dict[str, Any]:
        """Recompute a user's matches now."""
        try:
            result = await registry.aggregator.recompute_matches_for_user(user_id)
            return {
                'user_id': result.user_id,
                'pairs_upserted': result.pairs_upserted,
                'evidence_units': result.evidence_units,
                'cleared': result.cleared
            }
        except MatchError as e:
            logger.error(f'Match refresh failed for {user_id}: {e}')
            raise ToolError(f'Match refresh failed ({e.http_status}): {e}')

    @mcp.tool()
    async def accept_match(user_id: str, match_id: str) -> Dict[str, Any]:
        """Accept the user's side of a match."""
        return (await _lifecycle_call('accept', registry.lifecycle.accept_match_side, match_id, user_id)).to_document()

    @mcp.tool()
    async def reject_match(user_id: str, match_id: str) -> Dict[str, Any]:
        """Reject a pending match for both users."""
        return (await _lifecycle_call('reject', registry.lifecycle.reject_match, match_id, user_id)).to_document()

    @mcp.tool()
    async def unmatch_user(user_id: str, match_id: str) -> Dict[str, Any]:
        """End an accepted match."""
        return (await _lifecycle_call('unmatch', registry.lifecycle.unmatch, match_id, user_id)).to_document()

    @mcp.tool()
    async def get_pending_matches(user_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Pending matches the user received and the ones they sent."""
        received = await _lifecycle_call('list pending', registry.lifecycle.list_pending_matches, user_id, 'received')
        sent = await _lifecycle_call('list pending', registry.lifecycle.list_pending_matches, user_id, 'sent')
        return {'received': [m.to_document() for m in received], 'sent': [m.to_document() for m in sent]}

    @mcp.tool()
    async def get_match_history(user_id: str) -> List[Dict[str, Any]]:
        """Accepted and rejected matches of the user."""
        history = await _lifecycle_call('history', registry.lifecycle.list_accepted_or_rejected_history, user_id)
        return [m.to_document() for m in history]

    @mcp.tool()
    async def get_match_suggestions(user_id: str) -> List[Dict[str, Any]]:
        """Strongest pending matches of the user."""
        suggestions = await _lifecycle_call('suggestions', registry.lifecycle.get_match_suggestions, user_id)
        return [m.to_document() for m in suggestions]

    @mcp.tool()
    async def get_match_details(user_id: str) -> List[Dict[str, Any]]:
        """All matches of the user with the content pairs behind them."""
        return await _lifecycle_call('details', registry.lifecycle.get_match_details, user_id)

    @mcp.tool()
    async def get_recommended_matches(user_id: str) -> List[Dict[str, Any]]:
        """Friend-of-friend recommendations from the match graph."""
        recommendations = await _lifecycle_call('recommendations', registry.lifecycle.get_recommended_matches, user_id)
        return [{'user_id': r.user_id, 'avg_similarity': r.avg_similarity} for r in recommendations]

    @mcp.tool()
    async def run_match_sweep() -> Dict[str, Any]:
        """Recompute matches for every known user."""
        try:
            report = await registry.scheduler.run_for_all_users()
        except MatchSchedulerError as e:
            logger.error(f'Match sweep failed: {e}')
            raise ToolError(f'Match sweep failed (503): {e}')
        return {'succeeded': len(report.succeeded), 'failed': report.failed}

    @mcp.tool()
    def health_status() -> Dict[str, Any]:
        """Health of OpenSearch, Bedrock and Neptune."""
        return get_health_status(registry)

    return mcp


async def _lifecycle_call(action: str, func, *args):
    try:
        return await func(*args)
    except MatchError as e:
        logger.error(f'Match {action} failed: {e}')
        raise ToolError(f'Match {action} failed ({e.http_status}): {e}')


if __name__ == '__main__':
    mcp = create_mcp(ServiceRegistry.build(config))
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
