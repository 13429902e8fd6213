"""
Errors raised by the matching services to their callers.

Each carries the HTTP status a request handler should answer with.
"""


class MatchError(Exception):
    """Base class for match scoring and lifecycle errors."""
    http_status = 500


class MatchValidationError(MatchError):
    """Missing or malformed identifiers or arguments."""
    http_status = 400


class MatchNotFoundError(MatchError):
    """The referenced match record does not exist."""
    http_status = 404


class MatchAuthorizationError(MatchError):
    """The acting user is not a party to the match."""
    http_status = 403


class MatchStateError(MatchError):
    """The requested transition is not allowed from the record's current status."""
    http_status = 409


class MatchAggregationError(MatchError):
    """A recompute pass could not read content or persist its merged evidence."""
    pass


class ContentError(Exception):
    """Base class for content ingestion errors."""
    http_status = 500


class ContentValidationError(ContentError):
    http_status = 400


class ContentNotFoundError(ContentError):
    http_status = 404


class ContentAuthorizationError(ContentError):
    http_status = 403
