"""Role-based access policy.

One table decides, for every resource, which rows a requester may see and
which actions they may perform. Services receive the policy as a parameter
(routes inject it via the ``Policy`` dependency) instead of re-deriving role
checks.

| Role                   | Scope    | Approved-only | Actions                         |
|------------------------|----------|---------------|---------------------------------|
| brand_agent            | own org  | yes           | create                          |
| internal_field_manager | own org  | no            | create, update, approve         |
| organization_admin     | own org  | no            | + delete, administer            |
| super_admin            | all      | no            | + platform (org create/delete)  |
| anything else          | own org  | yes           | none                            |

Resources describe themselves with a ``Visibility``: which column holds the
organization, which status value counts as "approved", and (optionally) which
column names the owning user for resources restricted to their owner for
approved-only roles.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy import ColumnElement, false
from sqlalchemy.orm import InstrumentedAttribute

from core.auth import Requester
from models import Role
from services.errors import PermissionDeniedError, ValidationError


class Action(str, Enum):
    """Mutations gated by role."""

    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    DELETE = "delete"
    ADMINISTER = "administer"
    PLATFORM = "platform"


@dataclass(frozen=True)
class RoleGrant:
    """Visibility scope and permitted actions for one role."""

    all_organizations: bool
    approved_only: bool
    actions: frozenset[Action] = field(default_factory=frozenset)

    def allows(self, action: Action) -> bool:
        return action in self.actions


@dataclass(frozen=True)
class Visibility:
    """How a resource maps onto the policy.

    Attributes:
        organization: Column holding the owning organization id.
        status: Column compared against ``approved_value`` for approved-only
            roles. None means the resource has no approval concept.
        approved_value: Value of ``status`` that approved-only roles may see.
        owner: Column naming the owning user. When set, approved-only roles
            see only their own rows instead of filtering on status.
    """

    organization: InstrumentedAttribute[Any]
    status: InstrumentedAttribute[Any] | None = None
    approved_value: Any = None
    owner: InstrumentedAttribute[Any] | None = None


DEFAULT_GRANT = RoleGrant(all_organizations=False, approved_only=True)

ROLE_GRANTS: Mapping[str, RoleGrant] = {
    Role.BRAND_AGENT.value: RoleGrant(
        all_organizations=False,
        approved_only=True,
        actions=frozenset({Action.CREATE}),
    ),
    Role.INTERNAL_FIELD_MANAGER.value: RoleGrant(
        all_organizations=False,
        approved_only=False,
        actions=frozenset({Action.CREATE, Action.UPDATE, Action.APPROVE}),
    ),
    Role.ORGANIZATION_ADMIN.value: RoleGrant(
        all_organizations=False,
        approved_only=False,
        actions=frozenset(
            {
                Action.CREATE,
                Action.UPDATE,
                Action.APPROVE,
                Action.DELETE,
                Action.ADMINISTER,
            }
        ),
    ),
    Role.SUPER_ADMIN.value: RoleGrant(
        all_organizations=True,
        approved_only=False,
        actions=frozenset(Action),
    ),
}


class AccessPolicy:
    """Deny-by-default role policy shared by every service."""

    def __init__(
        self,
        grants: Mapping[str, RoleGrant] = ROLE_GRANTS,
        default: RoleGrant = DEFAULT_GRANT,
    ):
        self._grants = dict(grants)
        self._default = default

    def grant_for(self, role: str | None) -> RoleGrant:
        """Grant for a role string; unknown roles fall back to the default."""
        if not role:
            return self._default
        return self._grants.get(role, self._default)

    def has_global_scope(self, requester: Requester) -> bool:
        return self.grant_for(requester.role).all_organizations

    def can(self, requester: Requester, action: Action) -> bool:
        return self.grant_for(requester.role).allows(action)

    def require(self, requester: Requester, action: Action, code: str) -> None:
        """Raise PermissionDeniedError(code) unless the role grants the action."""
        if not self.can(requester, action):
            raise PermissionDeniedError(
                f"Role '{requester.role or 'unknown'}' may not "
                f"{action.value} this resource",
                code,
            )

    def target_organization(
        self, requester: Requester, requested: str | None = None
    ) -> str:
        """Organization that new records belong to.

        Global roles may name any organization; everyone else is pinned to
        their own.
        """
        if requested and requested != requester.organization_id:
            if not self.has_global_scope(requester):
                raise PermissionDeniedError(
                    "Cannot create records in another organization"
                )
            return requested
        if requester.organization_id is None:
            raise ValidationError(
                "An organization is required",
                "ORGANIZATION_REQUIRED",
                details=[{"field": "organization_id", "message": "required"}],
            )
        return requester.organization_id

    def ensure_same_organization(
        self, requester: Requester, organization_id: str | None
    ) -> None:
        """Non-global roles may only act inside their own organization."""
        if self.has_global_scope(requester):
            return
        if (
            requester.organization_id is None
            or organization_id != requester.organization_id
        ):
            raise PermissionDeniedError()

    def filter_for_role(
        self,
        requester: Requester,
        visibility: Visibility,
        base_conditions: list[ColumnElement[bool]] | None = None,
    ) -> list[ColumnElement[bool]]:
        """Narrow a list query to what the requester may see.

        Returns the base conditions plus the role's scope conditions, to be
        combined with AND.
        """
        conditions = list(base_conditions or [])
        grant = self.grant_for(requester.role)

        if not grant.all_organizations:
            if requester.organization_id is None:
                conditions.append(false())
                return conditions
            conditions.append(visibility.organization == requester.organization_id)

        if grant.approved_only:
            if visibility.owner is not None:
                conditions.append(visibility.owner == requester.user_id)
            elif visibility.status is not None:
                conditions.append(visibility.status == visibility.approved_value)

        return conditions

    def can_access(
        self, requester: Requester, visibility: Visibility, entity: Any
    ) -> bool:
        """Same policy as filter_for_role, applied to a loaded entity."""
        grant = self.grant_for(requester.role)

        if not grant.all_organizations:
            organization_id = getattr(entity, visibility.organization.key)
            if (
                requester.organization_id is None
                or organization_id != requester.organization_id
            ):
                return False

        if grant.approved_only:
            if visibility.owner is not None:
                return getattr(entity, visibility.owner.key) == requester.user_id
            if visibility.status is not None:
                status = getattr(entity, visibility.status.key)
                return status == visibility.approved_value

        return True

    def ensure_access(
        self, requester: Requester, visibility: Visibility, entity: Any
    ) -> None:
        if not self.can_access(requester, visibility, entity):
            raise PermissionDeniedError()


ACCESS_POLICY = AccessPolicy()


def get_access_policy() -> AccessPolicy:
    """FastAPI dependency; override in tests to swap the policy."""
    return ACCESS_POLICY


Policy = Annotated[AccessPolicy, Depends(get_access_policy)]
