"""
Role Registry — static catalogue of roles and the capabilities they grant.

SINGLE SOURCE OF TRUTH for role-based permissions. No code path decides
access by comparing role names; every decision goes through
``capabilities_for`` (via the permission evaluator).

Roles live in two independent scopes:
  - organisation: org_owner, org_admin, org_member
  - project:      admin, supplier_pm, supplier_finance, customer_pm,
                  customer_finance, contributor, viewer

``rank`` gives a display-only seniority order. Capability sets are not
nested (supplier_finance and customer_finance are incomparable), so rank
must never be used to authorize anything.

The table is built once at import from grouped grants and frozen into a
read-only mapping. ``verify_table`` checks exhaustiveness: every role has an
entry and every workflow action of every workflow kind is granted to at
least one role.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from tracker.core.exceptions import UnknownRole


class Scope(str, Enum):
    ORGANISATION = "organisation"
    PROJECT = "project"


class Role(str, Enum):
    # Organisation scope
    ORG_OWNER = "org_owner"
    ORG_ADMIN = "org_admin"
    ORG_MEMBER = "org_member"
    # Project scope
    ADMIN = "admin"
    SUPPLIER_PM = "supplier_pm"
    SUPPLIER_FINANCE = "supplier_finance"
    CUSTOMER_PM = "customer_pm"
    CUSTOMER_FINANCE = "customer_finance"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    CREATE_FOR_OTHERS = "create_for_others"
    EDIT = "edit"
    DELETE = "delete"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    START = "start"
    START_REVIEW = "start_review"
    REQUEST_REWORK = "request_rework"
    RESUME = "resume"
    SIGN_AS_SUPPLIER = "sign_as_supplier"
    SIGN_AS_CUSTOMER = "sign_as_customer"
    APPLY = "apply"
    VIEW_COSTS = "view_costs"
    GENERATE = "generate"
    SEND = "send"
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    MANAGE = "manage"
    INVITE = "invite"
    REMOVE = "remove"
    CHANGE_ROLE = "change_role"
    ASSIGN_MEMBERS = "assign_members"
    ACCESS_ALL_PROJECTS = "access_all_projects"


class ResourceKind(str, Enum):
    TIMESHEET = "timesheet"
    EXPENSE = "expense"
    DELIVERABLE = "deliverable"
    MILESTONE_CERTIFICATE = "milestone_certificate"
    VARIATION = "variation"
    RESOURCE = "resource"
    PARTNER = "partner"
    PARTNER_INVOICE = "partner_invoice"
    PROJECT_MEMBERS = "project_members"
    # Organisation scope
    ORGANISATION = "organisation"
    ORG_MEMBERS = "org_members"
    ORG_PROJECTS = "org_projects"


class Qualifier(str, Enum):
    OWN_DRAFT = "own_draft"              # creator only, while still editable
    COST_FIELDS = "cost_fields"          # financial visibility
    CHARGEABLE = "chargeable"            # customer-side validation
    NON_CHARGEABLE = "non_chargeable"    # supplier-side validation


@dataclass(frozen=True)
class Capability:
    action: Action
    resource_kind: ResourceKind
    qualifier: Qualifier | None = None

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "resource_kind": self.resource_kind.value,
            "qualifier": self.qualifier.value if self.qualifier else None,
        }


ORGANISATION_ROLES = frozenset({Role.ORG_OWNER, Role.ORG_ADMIN, Role.ORG_MEMBER})
PROJECT_ROLES = frozenset(r for r in Role if r not in ORGANISATION_ROLES)

# Display-only seniority (higher = more senior within its scope)
_RANK = {
    Role.ORG_OWNER: 300,
    Role.ORG_ADMIN: 200,
    Role.ORG_MEMBER: 100,
    Role.ADMIN: 70,
    Role.SUPPLIER_PM: 60,
    Role.SUPPLIER_FINANCE: 50,
    Role.CUSTOMER_PM: 40,
    Role.CUSTOMER_FINANCE: 30,
    Role.CONTRIBUTOR: 20,
    Role.VIEWER: 10,
}

ROLE_LABELS = {
    Role.ORG_OWNER: "Organisation Owner",
    Role.ORG_ADMIN: "Organisation Admin",
    Role.ORG_MEMBER: "Organisation Member",
    Role.ADMIN: "Admin",
    Role.SUPPLIER_PM: "Supplier PM",
    Role.SUPPLIER_FINANCE: "Supplier Finance",
    Role.CUSTOMER_PM: "Customer PM",
    Role.CUSTOMER_FINANCE: "Customer Finance",
    Role.CONTRIBUTOR: "Contributor",
    Role.VIEWER: "Viewer",
}

# Role with full access inside a project (granted implicitly to holders of
# ACCESS_ALL_PROJECTS on the owning organisation)
TOP_PROJECT_ROLE = Role.ADMIN


# ═══════════════════════════════════════════════════════════════
# Grant table
# ═══════════════════════════════════════════════════════════════

# Shorthand for common project role groupings
_ALL = (Role.ADMIN, Role.SUPPLIER_PM, Role.SUPPLIER_FINANCE, Role.CUSTOMER_PM,
        Role.CUSTOMER_FINANCE, Role.CONTRIBUTOR, Role.VIEWER)
_MANAGERS = (Role.ADMIN, Role.SUPPLIER_PM, Role.CUSTOMER_PM)
_SUPPLIER_SIDE = (Role.ADMIN, Role.SUPPLIER_PM, Role.SUPPLIER_FINANCE)
_CUSTOMER_SIDE = (Role.ADMIN, Role.CUSTOMER_PM, Role.CUSTOMER_FINANCE)
_WORKERS = (Role.ADMIN, Role.SUPPLIER_PM, Role.SUPPLIER_FINANCE,
            Role.CUSTOMER_FINANCE, Role.CONTRIBUTOR)
_SELF_SERVICE = (Role.CUSTOMER_FINANCE, Role.CONTRIBUTOR)
_DELIVERY_TEAM = (Role.ADMIN, Role.SUPPLIER_PM)
_ADMIN_ONLY = (Role.ADMIN,)

_ORG_ALL = (Role.ORG_OWNER, Role.ORG_ADMIN, Role.ORG_MEMBER)
_ORG_ADMINS = (Role.ORG_OWNER, Role.ORG_ADMIN)
_ORG_OWNER_ONLY = (Role.ORG_OWNER,)

_OWN = Qualifier.OWN_DRAFT
_CHG = Qualifier.CHARGEABLE
_NON = Qualifier.NON_CHARGEABLE

# (kind, action, roles, qualifier)
_GRANTS: tuple[tuple[ResourceKind, Action, tuple[Role, ...], Qualifier | None], ...] = (
    # Timesheets
    (ResourceKind.TIMESHEET, Action.VIEW, _ALL, None),
    (ResourceKind.TIMESHEET, Action.CREATE, _WORKERS, None),
    (ResourceKind.TIMESHEET, Action.CREATE_FOR_OTHERS, _SUPPLIER_SIDE, None),
    (ResourceKind.TIMESHEET, Action.EDIT, _SUPPLIER_SIDE, None),
    (ResourceKind.TIMESHEET, Action.EDIT, _SELF_SERVICE, _OWN),
    (ResourceKind.TIMESHEET, Action.DELETE, _SUPPLIER_SIDE, None),
    (ResourceKind.TIMESHEET, Action.DELETE, _SELF_SERVICE, _OWN),
    (ResourceKind.TIMESHEET, Action.SUBMIT, _SUPPLIER_SIDE, None),
    (ResourceKind.TIMESHEET, Action.SUBMIT, _SELF_SERVICE, _OWN),
    (ResourceKind.TIMESHEET, Action.APPROVE, _CUSTOMER_SIDE, _CHG),
    (ResourceKind.TIMESHEET, Action.APPROVE, _SUPPLIER_SIDE, _NON),
    (ResourceKind.TIMESHEET, Action.REJECT, _CUSTOMER_SIDE, _CHG),
    (ResourceKind.TIMESHEET, Action.REJECT, _SUPPLIER_SIDE, _NON),
    # Expenses
    (ResourceKind.EXPENSE, Action.VIEW, _ALL, None),
    (ResourceKind.EXPENSE, Action.CREATE, _WORKERS, None),
    (ResourceKind.EXPENSE, Action.CREATE_FOR_OTHERS, _SUPPLIER_SIDE, None),
    (ResourceKind.EXPENSE, Action.EDIT, _SUPPLIER_SIDE, None),
    (ResourceKind.EXPENSE, Action.EDIT, _SELF_SERVICE, _OWN),
    (ResourceKind.EXPENSE, Action.DELETE, _SUPPLIER_SIDE, None),
    (ResourceKind.EXPENSE, Action.DELETE, _SELF_SERVICE, _OWN),
    (ResourceKind.EXPENSE, Action.SUBMIT, _SUPPLIER_SIDE, None),
    (ResourceKind.EXPENSE, Action.SUBMIT, _SELF_SERVICE, _OWN),
    (ResourceKind.EXPENSE, Action.APPROVE, _CUSTOMER_SIDE, _CHG),
    (ResourceKind.EXPENSE, Action.APPROVE, _SUPPLIER_SIDE, _NON),
    (ResourceKind.EXPENSE, Action.REJECT, _CUSTOMER_SIDE, _CHG),
    (ResourceKind.EXPENSE, Action.REJECT, _SUPPLIER_SIDE, _NON),
    # Deliverables
    (ResourceKind.DELIVERABLE, Action.VIEW, _ALL, None),
    (ResourceKind.DELIVERABLE, Action.CREATE, _DELIVERY_TEAM + (Role.CONTRIBUTOR,), None),
    (ResourceKind.DELIVERABLE, Action.EDIT, _DELIVERY_TEAM, None),
    (ResourceKind.DELIVERABLE, Action.EDIT, (Role.CONTRIBUTOR,), _OWN),
    (ResourceKind.DELIVERABLE, Action.DELETE, _SUPPLIER_SIDE, None),
    (ResourceKind.DELIVERABLE, Action.START, _DELIVERY_TEAM, None),
    (ResourceKind.DELIVERABLE, Action.START, (Role.CONTRIBUTOR,), _OWN),
    (ResourceKind.DELIVERABLE, Action.SUBMIT, _DELIVERY_TEAM, None),
    (ResourceKind.DELIVERABLE, Action.SUBMIT, (Role.CONTRIBUTOR,), _OWN),
    (ResourceKind.DELIVERABLE, Action.RESUME, _DELIVERY_TEAM, None),
    (ResourceKind.DELIVERABLE, Action.RESUME, (Role.CONTRIBUTOR,), _OWN),
    (ResourceKind.DELIVERABLE, Action.START_REVIEW, _CUSTOMER_SIDE, None),
    (ResourceKind.DELIVERABLE, Action.REQUEST_REWORK, _CUSTOMER_SIDE, None),
    (ResourceKind.DELIVERABLE, Action.SIGN_AS_SUPPLIER, _DELIVERY_TEAM, None),
    (ResourceKind.DELIVERABLE, Action.SIGN_AS_CUSTOMER, _CUSTOMER_SIDE, None),
    # Milestone certificates
    (ResourceKind.MILESTONE_CERTIFICATE, Action.VIEW, _MANAGERS, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.CREATE, _MANAGERS, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.EDIT, _MANAGERS, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.DELETE, _ADMIN_ONLY, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.SUBMIT, _SUPPLIER_SIDE, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.SIGN_AS_SUPPLIER, _SUPPLIER_SIDE, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.SIGN_AS_CUSTOMER, _CUSTOMER_SIDE, None),
    (ResourceKind.MILESTONE_CERTIFICATE, Action.REJECT, _MANAGERS, None),
    # Variations
    (ResourceKind.VARIATION, Action.VIEW, _ALL, None),
    (ResourceKind.VARIATION, Action.CREATE, _SUPPLIER_SIDE, None),
    (ResourceKind.VARIATION, Action.EDIT, _SUPPLIER_SIDE, None),
    (ResourceKind.VARIATION, Action.DELETE, _SUPPLIER_SIDE, None),
    (ResourceKind.VARIATION, Action.SUBMIT, _SUPPLIER_SIDE, None),
    (ResourceKind.VARIATION, Action.SIGN_AS_SUPPLIER, _SUPPLIER_SIDE, None),
    (ResourceKind.VARIATION, Action.SIGN_AS_CUSTOMER, _CUSTOMER_SIDE, None),
    (ResourceKind.VARIATION, Action.REJECT, _MANAGERS, None),
    (ResourceKind.VARIATION, Action.APPLY, _SUPPLIER_SIDE, None),
    # Resources
    (ResourceKind.RESOURCE, Action.VIEW, _ALL, None),
    (ResourceKind.RESOURCE, Action.VIEW_COSTS, _SUPPLIER_SIDE, Qualifier.COST_FIELDS),
    (ResourceKind.RESOURCE, Action.MANAGE, _SUPPLIER_SIDE, None),
    # Partners
    (ResourceKind.PARTNER, Action.VIEW, _SUPPLIER_SIDE, None),
    (ResourceKind.PARTNER, Action.MANAGE, _SUPPLIER_SIDE, None),
    # Partner invoices
    (ResourceKind.PARTNER_INVOICE, Action.VIEW, _MANAGERS + (Role.SUPPLIER_FINANCE,), None),
    (ResourceKind.PARTNER_INVOICE, Action.VIEW_COSTS, _SUPPLIER_SIDE, Qualifier.COST_FIELDS),
    (ResourceKind.PARTNER_INVOICE, Action.GENERATE, _SUPPLIER_SIDE, None),
    (ResourceKind.PARTNER_INVOICE, Action.SEND, _SUPPLIER_SIDE, None),
    (ResourceKind.PARTNER_INVOICE, Action.MARK_PAID, _SUPPLIER_SIDE, None),
    (ResourceKind.PARTNER_INVOICE, Action.CANCEL, _SUPPLIER_SIDE, None),
    # Project team
    (ResourceKind.PROJECT_MEMBERS, Action.VIEW, _SUPPLIER_SIDE, None),
    (ResourceKind.PROJECT_MEMBERS, Action.MANAGE, _ADMIN_ONLY, None),
    # Organisation scope
    (ResourceKind.ORGANISATION, Action.VIEW, _ORG_ALL, None),
    (ResourceKind.ORGANISATION, Action.EDIT, _ORG_ADMINS, None),
    (ResourceKind.ORGANISATION, Action.DELETE, _ORG_OWNER_ONLY, None),
    (ResourceKind.ORG_MEMBERS, Action.VIEW, _ORG_ALL, None),
    (ResourceKind.ORG_MEMBERS, Action.INVITE, _ORG_ADMINS, None),
    (ResourceKind.ORG_MEMBERS, Action.REMOVE, _ORG_ADMINS, None),
    (ResourceKind.ORG_MEMBERS, Action.CHANGE_ROLE, _ORG_ADMINS, None),
    (ResourceKind.ORG_PROJECTS, Action.VIEW, _ORG_ALL, None),
    (ResourceKind.ORG_PROJECTS, Action.CREATE, _ORG_ADMINS, None),
    (ResourceKind.ORG_PROJECTS, Action.DELETE, _ORG_ADMINS, None),
    (ResourceKind.ORG_PROJECTS, Action.ASSIGN_MEMBERS, _ORG_ADMINS, None),
    (ResourceKind.ORG_PROJECTS, Action.ACCESS_ALL_PROJECTS, _ORG_ADMINS, None),
)

ORGANISATION_KINDS = frozenset({
    ResourceKind.ORGANISATION,
    ResourceKind.ORG_MEMBERS,
    ResourceKind.ORG_PROJECTS,
})


def _build_table(grants) -> MappingProxyType:
    table: dict[Role, set[Capability]] = {role: set() for role in Role}
    for kind, action, roles, qualifier in grants:
        for role in roles:
            table[role].add(Capability(action, kind, qualifier))
    return MappingProxyType({role: frozenset(caps) for role, caps in table.items()})


CAPABILITY_TABLE = _build_table(_GRANTS)


def verify_table(required_actions: dict[ResourceKind, set[Action]] | None = None) -> None:
    """Check the grant table is exhaustive and respects scope boundaries.

    Args:
        required_actions: kind → actions that must be granted to at least one
            role (the workflow definitions pass their transition actions).

    Raises:
        RuntimeError: naming the first gap or scope violation found.
    """
    for role in Role:
        if role not in CAPABILITY_TABLE:
            raise RuntimeError(f"Role {role.value} has no capability entry")
        if role not in _RANK:
            raise RuntimeError(f"Role {role.value} has no display rank")
        for cap in CAPABILITY_TABLE[role]:
            org_kind = cap.resource_kind in ORGANISATION_KINDS
            if org_kind != (role in ORGANISATION_ROLES):
                raise RuntimeError(
                    f"Role {role.value} is granted {cap.action.value} on "
                    f"{cap.resource_kind.value} outside its scope"
                )
    granted = {(c.resource_kind, c.action) for caps in CAPABILITY_TABLE.values() for c in caps}
    for kind, actions in (required_actions or {}).items():
        for action in actions:
            if (kind, action) not in granted:
                raise RuntimeError(f"No role is granted {action.value} on {kind.value}")


# ═══════════════════════════════════════════════════════════════
# Public lookups
# ═══════════════════════════════════════════════════════════════

def role_from_value(value) -> Role:
    """Coerce a stored role string (or Role) into a Role, or raise UnknownRole."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise UnknownRole(value) from None


def capabilities_for(role) -> frozenset[Capability]:
    """Return the capability set granted by ``role``."""
    return CAPABILITY_TABLE[role_from_value(role)]


def rank(role) -> int:
    """Display-only seniority. Never use for authorization."""
    return _RANK[role_from_value(role)]


def scope_of(role) -> Scope:
    role = role_from_value(role)
    return Scope.ORGANISATION if role in ORGANISATION_ROLES else Scope.PROJECT


def matching_capabilities(role, action: Action, kind: ResourceKind) -> list[Capability]:
    """Capabilities of ``role`` for (action, kind), unqualified first.

    Ordering is deterministic so denial reasons are stable.
    """
    caps = [c for c in capabilities_for(role) if c.action == action and c.resource_kind == kind]
    return sorted(caps, key=lambda c: (c.qualifier is not None, c.qualifier.value if c.qualifier else ""))


def roles_with(action: Action, kind: ResourceKind) -> list[Role]:
    """All roles holding any capability for (action, kind), most senior first."""
    roles = [
        role for role, caps in CAPABILITY_TABLE.items()
        if any(c.action == action and c.resource_kind == kind for c in caps)
    ]
    return sorted(roles, key=lambda r: -_RANK[r])


def role_options(scope: Scope = Scope.PROJECT) -> list[dict]:
    """Role choices for a scope, most senior first, for role pickers."""
    roles = ORGANISATION_ROLES if scope is Scope.ORGANISATION else PROJECT_ROLES
    return [
        {"value": r.value, "label": ROLE_LABELS[r], "rank": _RANK[r]}
        for r in sorted(roles, key=lambda r: -_RANK[r])
    ]
