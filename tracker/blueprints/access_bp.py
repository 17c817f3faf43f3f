"""
Access Blueprint — effective roles, authorization checks and project membership.

Endpoints:
    GET    /api/v1/roles?scope=project|organisation
           Returns: 200 with role picker options, most senior first.

    GET    /api/v1/organisations/<oid>/projects
           Returns: 200 {project_ids} the actor can enter; needs an organisation role.

    GET    /api/v1/projects/<pid>/effective-role
           Returns: 200 {role, via, organisation_id, permissions} or 403 NotAMember.

    POST   /api/v1/projects/<pid>/authorize
           Body: { "action": "approve", "resource_kind": "timesheet",
                   "resource_id": <int optional> }
           Returns: 200 with the Decision (allowed or not).

    PUT    /api/v1/projects/<pid>/members/<user_id>    Body: { "role": "supplier_pm" }
    DELETE /api/v1/projects/<pid>/members/<user_id>
           Require manage on project_members.

Layer contract:
    - Blueprint: parse input, call scope_resolver / permission_service, return JSON.
    - NO db.session writes here.
"""

import logging

from flask import Blueprint, g, jsonify, request

from tracker.blueprints import int_arg, json_body
from tracker.core.exceptions import ErrorCode, UnknownRole
from tracker.middleware.jwt_auth import require_actor
from tracker.middleware.permission_required import require_capability
from tracker.models.workflow import MODEL_BY_KIND
from tracker.services import permission_service, scope_resolver
from tracker.services.permission_service import ResourceRef
from tracker.services.role_registry import Scope, role_options
from tracker.utils.errors import E, api_error, failure_response

logger = logging.getLogger(__name__)

access_bp = Blueprint("access", __name__, url_prefix="/api/v1")


@access_bp.route("/roles", methods=["GET"])
@require_actor
def list_roles():
    raw = request.args.get("scope", Scope.PROJECT.value)
    try:
        scope = Scope(raw)
    except ValueError:
        return api_error(
            E.VALIDATION_INVALID, f"Unknown scope '{raw}'",
            details={"valid_scopes": [s.value for s in Scope]},
        )
    return jsonify({"scope": scope.value, "roles": role_options(scope)}), 200


@access_bp.route("/organisations/<int:organisation_id>/projects", methods=["GET"])
@require_actor
def list_accessible_projects(organisation_id):
    """Projects of the organisation the actor can enter (all of them for org admins)."""
    decision = permission_service.authorize_org(
        g.actor_id, organisation_id, "view", "org_projects"
    )
    if not decision.allowed:
        return failure_response(decision)
    ids = scope_resolver.accessible_project_ids(g.actor_id, organisation_id)
    return jsonify({"organisation_id": organisation_id, "project_ids": ids}), 200


@access_bp.route("/projects/<int:project_id>/effective-role", methods=["GET"])
@require_actor
def get_effective_role(project_id):
    scope = scope_resolver.resolve_scope(g.actor_id, project_id)
    if scope is None:
        return api_error(
            ErrorCode.NOT_A_MEMBER.value,
            "You are not a member of this project",
            details={"error_kind": ErrorCode.NOT_A_MEMBER.kind.value, "presentation": "hidden"},
        )
    body = scope.to_dict()
    body["project_id"] = project_id
    body["permissions"] = permission_service.permission_summary(scope.role)
    return jsonify(body), 200


@access_bp.route("/projects/<int:project_id>/authorize", methods=["POST"])
@require_actor
def check_authorization(project_id):
    """Evaluate one (action, resource) pair for the calling actor.

    Denials are a normal answer here (200 with ``allowed: false``); the UI
    uses ``presentation`` to hide or disable the matching control.
    """
    data = json_body()
    action = (data.get("action") or "").strip()
    kind = (data.get("resource_kind") or "").strip()
    if not action or not kind:
        return api_error(E.VALIDATION_REQUIRED, "Fields 'action' and 'resource_kind' are required")

    resource_id, err = int_arg(data, "resource_id")
    if err:
        return api_error(E.VALIDATION_INVALID, err)

    if resource_id is None:
        resource = ResourceRef(kind=kind)
    else:
        model = MODEL_BY_KIND.get(kind)
        if model is None:
            return api_error(
                E.VALIDATION_INVALID,
                f"resource_id is only accepted for workflow kinds, not '{kind}'",
                details={"workflow_kinds": sorted(MODEL_BY_KIND)},
            )
        resource = model.query_active().filter_by(id=resource_id, project_id=project_id).first()
        if resource is None:
            return api_error(E.NOT_FOUND, f"{kind} not found")

    decision = permission_service.authorize(g.actor_id, project_id, action, resource)
    return jsonify(decision.to_dict()), 200


@access_bp.route("/projects/<int:project_id>/members/<int:user_id>", methods=["PUT"])
@require_actor
@require_capability("manage", "project_members")
def assign_member(project_id, user_id):
    data = json_body()
    role = (data.get("role") or "").strip()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "Field 'role' is required")
    try:
        member = scope_resolver.assign_project_role(project_id, user_id, role, assigned_by=g.actor_id)
    except UnknownRole as exc:
        return api_error(exc.code.value, str(exc), details={"role": role})
    return jsonify(member.to_dict()), 200


@access_bp.route("/projects/<int:project_id>/members/<int:user_id>", methods=["DELETE"])
@require_actor
@require_capability("manage", "project_members")
def remove_member(project_id, user_id):
    if not scope_resolver.revoke_project_role(project_id, user_id):
        return api_error(E.NOT_FOUND, "Project member not found")
    return jsonify({"user_id": user_id, "project_id": project_id, "revoked": True}), 200
