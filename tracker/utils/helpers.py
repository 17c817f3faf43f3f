"""Shared utility functions.

get_project_scoped_or_404:  tuple-return lookup that hides cross-project records
parse_date_input:           strict, raises ValueError (request bodies)
parse_decimal_input:        strict Decimal parsing for money/hours
commit_or_raise:            service-layer commit with rollback + typed errors
"""
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tracker.core.exceptions import ConflictError
from tracker.models import db
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_project_scoped_or_404(model, pk, project_id, label=None):
    """Fetch a project-scoped instance or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

    A record that exists in another project is reported exactly like a
    missing one.

        invoice, err = get_project_scoped_or_404(PartnerInvoice, iid, pid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if obj is None or obj.project_id != project_id:
        return None, api_error(E.NOT_FOUND, f"{label} not found")
    return obj, None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def parse_decimal_input(value):
    """Parse a number into Decimal, raising ValueError on bad input.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"), not its
    binary expansion.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Expected a number")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid number: {value!r}")
    return result


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(resource="Record"):
    """Commit the current session; roll back on failure.

    IntegrityError   → ConflictError (409)
    SQLAlchemyError  → re-raised after rollback (500)
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, "constraint") from exc
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise
