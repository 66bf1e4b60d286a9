"""
Project Tracker
Request helpers shared by the blueprints.
"""

from flask import request


def _int_arg(name, default, *, low=0, high=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default
    value = max(value, low)
    return min(value, high) if high is not None else value


def paginate_query(query, default_limit=100, max_limit=300):
    """
    Slice ``query`` by the ``limit`` / ``offset`` query params.

    Returns ``(items, total)``; ``total`` counts the unsliced query.
    """
    limit = _int_arg("limit", default_limit, low=1, high=max_limit)
    offset = _int_arg("offset", 0)
    return query.limit(limit).offset(offset).all(), query.count()


def request_data():
    """Body fields from JSON or multipart form, whichever the client sent."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()
