"""
Permission Decorators — capability checks for route protection.

Kind-level checks only ("may this actor generate partner invoices in this
project at all"). Checks that depend on a specific record's owner, status
or chargeability happen inside the services, which hold the record.

Usage:
    @bp.route("/projects/<int:project_id>/partners/<int:partner_id>/invoices", methods=["POST"])
    @require_actor
    @require_capability("generate", "partner_invoice")
    def create_invoice(project_id, partner_id):
        ...

Must be applied below ``require_actor`` so ``g.actor_id`` is set.
"""

import functools
import logging

from flask import g

from tracker.services.permission_service import ResourceRef, authorize
from tracker.utils.errors import failure_response

logger = logging.getLogger(__name__)


def require_capability(action: str, kind: str, project_arg: str = "project_id"):
    """
    Decorator: require the actor to hold ``action`` on ``kind`` in the
    project named by the ``project_arg`` URL parameter.

    The Decision is left on ``g.decision`` for the view.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            project_id = kwargs.get(project_arg)
            decision = authorize(g.actor_id, project_id, action, ResourceRef(kind=kind))
            if not decision.allowed:
                logger.warning(
                    "User %s denied %s on %s (project %s): %s",
                    g.actor_id, action, kind, project_id, decision.reason.value,
                    extra={"project_id": project_id, "event_type": "permission_denied"},
                )
                return failure_response(decision)
            g.decision = decision
            return f(*args, **kwargs)
        return decorated
    return decorator
