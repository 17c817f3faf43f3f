"""Standardised API error responses.

Usage
-----
    from tracker.utils.errors import api_error, failure_response, E

    return api_error(E.NOT_FOUND, "Partner not found")
    return api_error(E.VALIDATION_REQUIRED, "period_start is required")
    return failure_response(result.error)          # workflow taxonomy codes
"""

from __future__ import annotations

from flask import jsonify

from tracker.core.exceptions import ErrorCode


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • workflow/authorization failures use their ``ErrorCode`` value
       (NotAMember, IllegalTransition, …) as the code
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Authentication – HTTP 401
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.UNAUTHORIZED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    # Workflow / authorization taxonomy
    ErrorCode.NOT_A_MEMBER.value: 403,
    ErrorCode.INSUFFICIENT_ROLE.value: 403,
    ErrorCode.NOT_OWNER_OR_WRONG_STATE.value: 403,
    ErrorCode.WRONG_CHARGEABILITY_SIDE.value: 403,
    ErrorCode.ILLEGAL_TRANSITION.value: 409,
    ErrorCode.DUPLICATE_SIGNER.value: 409,
    ErrorCode.STALE_STATE.value: 409,
    ErrorCode.UNKNOWN_ROLE.value: 400,
    ErrorCode.REASON_REQUIRED.value: 422,
    ErrorCode.NOT_FOUND.value: 404,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (``E.*`` constants or an ``ErrorCode`` value).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (current status, denial reason, …).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def failure_response(failure):
    """Render a ``WorkflowFailure`` (or denied ``Decision``) as an API error.

    The body also carries ``error_kind`` and ``recoverable`` so the UI can
    tell "you don't have permission" from "this can't be done right now".
    """
    code = failure.code if hasattr(failure, "code") else failure.reason
    details = dict(getattr(failure, "details", None) or {})
    details["error_kind"] = code.kind.value
    details["recoverable"] = code.recoverable
    if hasattr(failure, "presentation"):
        details["presentation"] = failure.presentation
    return api_error(code.value, failure.message, details=details)
