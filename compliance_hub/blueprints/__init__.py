"""
Compliance Hub
Blueprint registry.
"""

from flask import request


def paginate_query(stmt_items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already materialized list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = len(stmt_items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return stmt_items[offset:offset + limit], total
