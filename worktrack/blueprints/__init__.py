"""
Work Tracking Platform
Blueprint registry and shared request helpers.
"""

from flask import request

from worktrack.utils.errors import E, api_error


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  : max items (default 200, capped at max_limit)
        offset : starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def actor_id_from(data):
    """Acting user: ``actor_id`` in the body, else the ``X-User-Id`` header.

    Returns (actor_id, err_response).
    """
    raw = data.get("actor_id") if data else None
    if raw is None:
        raw = request.headers.get("X-User-Id")
    if raw in (None, ""):
        return None, None
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "actor_id must be an integer",
                               details={"actor_id": "invalid"})


def optional_int(data, field):
    """Read an optional integer field. Returns (value, err_response)."""
    raw = data.get(field)
    if raw is None or raw == "":
        return None, None
    if isinstance(raw, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer", details={field: "invalid"})
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{field} must be an integer", details={field: "invalid"})
