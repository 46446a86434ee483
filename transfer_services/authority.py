"""
transfer_services.authority -- permission checks at the workflow boundary.

Responsibility:
    Maps workflow actions to permissions and asks an ``AuthorizationPolicy``
    whether the acting user holds them.  The policy itself is external; a
    role-based implementation driven by configuration is provided.

Architecture position:
    Services layer.  Called by the workflow service before loading the
    aggregate.  The kernel stays actor-agnostic.

Invariants:
    - Every workflow action maps to exactly one permission.
    - A denied check raises PermissionDeniedError; nothing is written.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Protocol

from transfer_kernel.exceptions import PermissionDeniedError

CREATE = "store_request.create"
UPDATE = "store_request.update"
DELETE = "store_request.delete"
SUBMIT = "store_request.submit"
APPROVE = "store_request.approve"
REJECT = "store_request.reject"
ISSUE = "store_request.issue"
RECEIVE = "store_request.receive"
CANCEL = "store_request.cancel"
READ = "store_request.read"

# workflow action -> permission
ACTION_TO_PERMISSION: dict[str, str] = {
    "create": CREATE,
    "update": UPDATE,
    "delete": DELETE,
    "submit": SUBMIT,
    "approve": APPROVE,
    "reject": REJECT,
    "issue": ISSUE,
    "receive": RECEIVE,
    "cancel": CANCEL,
    "read": READ,
}


def get_permission_for_action(action: str) -> str:
    """Permission required for a workflow action; KeyError if unknown."""
    return ACTION_TO_PERMISSION[action]


class AuthorizationPolicy(Protocol):
    def is_permitted(self, actor_id: str, permission: str) -> bool:
        ...


class AllowAllPolicy:
    """Grants everything. For tests and single-user tooling."""

    def is_permitted(self, actor_id: str, permission: str) -> bool:
        return True


class RoleBasedPolicy:
    """
    Static role-based policy.

    ``role_permissions`` maps role -> granted permissions ("*" grants all);
    ``actor_roles`` maps actor -> roles.  Actors with no roles are denied.
    """

    def __init__(
        self,
        role_permissions: Mapping[str, Iterable[str]],
        actor_roles: Mapping[str, Iterable[str]] | None = None,
    ):
        self._role_permissions = {
            role: frozenset(perms) for role, perms in role_permissions.items()
        }
        self._actor_roles: dict[str, frozenset[str]] = {
            actor: frozenset(roles) for actor, roles in (actor_roles or {}).items()
        }

    def assign(self, actor_id: str, *roles: str) -> None:
        unknown = [r for r in roles if r not in self._role_permissions]
        if unknown:
            raise ValueError(f"Unknown role(s): {', '.join(unknown)}")
        self._actor_roles[actor_id] = self._actor_roles.get(actor_id, frozenset()) | set(roles)

    def permissions_of(self, actor_id: str) -> frozenset[str]:
        granted: set[str] = set()
        for role in self._actor_roles.get(actor_id, ()):
            granted |= self._role_permissions.get(role, frozenset())
        return frozenset(granted)

    def is_permitted(self, actor_id: str, permission: str) -> bool:
        granted = self.permissions_of(actor_id)
        return "*" in granted or permission in granted


def require_permission(policy: AuthorizationPolicy, actor_id: str, action: str) -> str:
    """Raise PermissionDeniedError unless ``actor_id`` may perform ``action``."""
    permission = get_permission_for_action(action)
    if not policy.is_permitted(actor_id, permission):
        raise PermissionDeniedError(str(actor_id), permission)
    return permission
