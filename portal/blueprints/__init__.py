"""
Annual Report Portal
Blueprint registry.
"""

from flask import current_app, request

from portal.core.exceptions import ValidationError
from portal.utils.helpers import parse_positive_int


def pagination_args(default_limit=None):
    """Read ``page`` / ``limit`` from the query string.

    Query params:
        page  — 1-based page number (default 1)
        limit — page size (default DEFAULT_PAGE_SIZE, capped at MAX_PAGE_SIZE)

    Non-numeric or non-positive values raise ValidationError.

    Returns:
        (page, limit)
    """
    default_limit = default_limit or current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 100)
    page = parse_positive_int(request.args.get("page"), "page", default=1)
    limit = parse_positive_int(request.args.get("limit"), "limit", default=default_limit, maximum=max_limit)
    return page, limit


def json_body():
    """Request JSON object; an empty dict when there is no JSON body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", errors=[
            {"field": "body", "message": "Expected a JSON object"}
        ])
    return data
