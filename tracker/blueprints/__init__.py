"""
Project Tracker Core
Blueprint registry.
"""

from flask import request


def json_body():
    """Request JSON as a dict; non-object bodies count as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(data, key):
    """Optional integer field from a JSON body; returns (value, error_message)."""
    value = data.get(key)
    if value is None or value == "":
        return None, None
    if isinstance(value, bool):
        return None, f"'{key}' must be an integer"
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, f"'{key}' must be an integer"
