"""
Workflow Blueprint — create, edit, transition and delete workflow entities.

All routes are scoped under /api/v1/projects/<pid>/workflow/<kind>/... where
``kind`` is one of: timesheet, expense, deliverable, milestone_certificate,
variation. Entities of another project answer 404.

Endpoints:
    POST   /workflow/<kind>                        create (201)
    GET    /workflow/<kind>/<id>                   entity + available actions
    PATCH  /workflow/<kind>/<id>                   edit business fields
    POST   /workflow/<kind>/<id>/transition        { action, reason?, expected_version? }
    POST   /workflow/<kind>/batch-transition       { ids, action, reason? }
    POST   /workflow/<kind>/<id>/reopen            new draft from a rejected record (201)
    DELETE /workflow/<kind>/<id>?expected_version= soft delete
    GET    /workflow/<kind>/<id>/history           audit rows + signatures

Layer contract:
    - Blueprint: parse input, call workflow_engine, render the result.
    - NO authorization here; the engine authorizes every operation and
      reports denials in its result, rendered through ``failure_response``.
"""

import logging

from flask import Blueprint, g, jsonify, request

from tracker.blueprints import int_arg, json_body
from tracker.middleware.jwt_auth import require_actor
from tracker.services import workflow_engine
from tracker.services.workflow_definitions import definition_for
from tracker.utils.errors import E, api_error, failure_response

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")

_BASE = "/projects/<int:project_id>/workflow/<kind>"


def _unknown_kind(kind):
    if definition_for(kind) is None:
        return api_error(E.NOT_FOUND, f"Unknown workflow kind '{kind}'")
    return None


def _render(result, status=200):
    if result.ok:
        return jsonify(result.to_dict()), status
    return failure_response(result.error)


@workflow_bp.route(_BASE, methods=["POST"])
@require_actor
def create_entity(project_id, kind):
    err = _unknown_kind(kind)
    if err:
        return err
    result = workflow_engine.create_entity(kind, project_id, g.actor_id, json_body())
    return _render(result, 201)


@workflow_bp.route(f"{_BASE}/<int:entity_id>", methods=["GET"])
@require_actor
def get_entity(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    entity, failure = workflow_engine.view_entity(kind, entity_id, g.actor_id, project_id=project_id)
    if failure:
        return failure_response(failure)
    return jsonify({
        "entity": entity.to_dict(),
        "available_actions": workflow_engine.available_actions(
            kind, entity_id, g.actor_id, project_id=project_id
        ),
    }), 200


@workflow_bp.route(f"{_BASE}/<int:entity_id>", methods=["PATCH"])
@require_actor
def update_entity(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    data = json_body()
    expected_version, err_msg = int_arg(data, "expected_version")
    if err_msg:
        return api_error(E.VALIDATION_INVALID, err_msg)
    fields = {k: v for k, v in data.items() if k != "expected_version"}
    if not fields:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")

    result = workflow_engine.update_entity(
        kind, entity_id, g.actor_id, fields,
        expected_version=expected_version, project_id=project_id,
    )
    return _render(result)


@workflow_bp.route(f"{_BASE}/<int:entity_id>/transition", methods=["POST"])
@require_actor
def transition_entity(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    data = json_body()
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "Field 'action' is required")
    expected_version, err_msg = int_arg(data, "expected_version")
    if err_msg:
        return api_error(E.VALIDATION_INVALID, err_msg)

    result = workflow_engine.transition(
        kind, entity_id, action, g.actor_id,
        reason=data.get("reason"),
        expected_version=expected_version,
        project_id=project_id,
    )
    return _render(result)


@workflow_bp.route(f"{_BASE}/batch-transition", methods=["POST"])
@require_actor
def batch_transition(project_id, kind):
    """Same action on several entities; each one succeeds or fails on its own."""
    err = _unknown_kind(kind)
    if err:
        return err
    data = json_body()
    action = (data.get("action") or "").strip()
    ids = data.get("ids")
    if not action or not isinstance(ids, list) or not ids:
        return api_error(E.VALIDATION_REQUIRED, "Fields 'action' and 'ids' (non-empty list) are required")
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        return api_error(E.VALIDATION_INVALID, "'ids' must be a list of integers")

    results = workflow_engine.batch_transition(
        kind, ids, action, g.actor_id,
        reason=data.get("reason"),
        project_id=project_id,
    )
    return jsonify(results), 200


@workflow_bp.route(f"{_BASE}/<int:entity_id>/reopen", methods=["POST"])
@require_actor
def reopen_entity(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    result = workflow_engine.reopen_as_new(kind, entity_id, g.actor_id, project_id=project_id)
    return _render(result, 201)


@workflow_bp.route(f"{_BASE}/<int:entity_id>", methods=["DELETE"])
@require_actor
def delete_entity(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    expected_version = request.args.get("expected_version", type=int)
    result = workflow_engine.delete_entity(
        kind, entity_id, g.actor_id,
        expected_version=expected_version, project_id=project_id,
    )
    return _render(result)


@workflow_bp.route(f"{_BASE}/<int:entity_id>/history", methods=["GET"])
@require_actor
def entity_history(project_id, kind, entity_id):
    err = _unknown_kind(kind)
    if err:
        return err
    _entity, failure = workflow_engine.view_entity(kind, entity_id, g.actor_id, project_id=project_id)
    if failure:
        return failure_response(failure)
    return jsonify(workflow_engine.entity_history(kind, entity_id)), 200
