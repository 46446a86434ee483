"""Tests for action-to-permission mapping and the role-based policy."""

import pytest

from transfer_kernel.exceptions import PermissionDeniedError
from transfer_services.authority import (
    ACTION_TO_PERMISSION,
    APPROVE,
    READ,
    AllowAllPolicy,
    RoleBasedPolicy,
    get_permission_for_action,
    require_permission,
)
from transfer_config.schema import PERMISSIONS


class TestPermissionMapping:
    def test_every_permission_is_reachable(self):
        assert set(ACTION_TO_PERMISSION.values()) == set(PERMISSIONS)

    def test_unknown_action(self):
        with pytest.raises(KeyError):
            get_permission_for_action("teleport")


class TestRoleBasedPolicy:
    @pytest.fixture
    def policy(self):
        return RoleBasedPolicy(
            {"approver": [APPROVE, READ], "admin": ["*"]},
            {"ann": ["approver"]},
        )

    def test_granted_through_role(self, policy):
        assert policy.is_permitted("ann", APPROVE)
        assert not policy.is_permitted("ann", "store_request.issue")

    def test_wildcard(self, policy):
        policy.assign("root", "admin")
        assert policy.is_permitted("root", "store_request.issue")

    def test_actor_without_roles_denied(self, policy):
        assert not policy.is_permitted("nobody", READ)
        assert policy.permissions_of("nobody") == frozenset()

    def test_assign_accumulates_roles(self, policy):
        policy.assign("ann", "admin")
        assert policy.is_permitted("ann", "store_request.cancel")
        assert APPROVE in policy.permissions_of("ann")

    def test_assign_unknown_role(self, policy):
        with pytest.raises(ValueError, match="Unknown role"):
            policy.assign("ann", "wizard")


class TestRequirePermission:
    def test_returns_permission(self):
        assert require_permission(AllowAllPolicy(), "anyone", "approve") == APPROVE

    def test_denied(self):
        policy = RoleBasedPolicy({}, {})
        with pytest.raises(PermissionDeniedError) as exc_info:
            require_permission(policy, "bob", "read")
        assert exc_info.value.code == "PERMISSION_DENIED"
        assert exc_info.value.permission == READ
        assert exc_info.value.actor_id == "bob"
