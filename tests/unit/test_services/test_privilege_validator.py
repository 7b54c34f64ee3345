"""Tests for privilege escalation and bulk operation validation."""

import uuid

import pytest

from portal_rbac.models.role import Role
from portal_rbac.services.privilege_validator import (
    ESCALATION_CHECKS,
    ActorStanding,
    EscalationRequest,
    PrivilegeValidator,
    evaluate_bulk,
    evaluate_escalation,
    evaluate_target_standing,
)
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor, DenialReason, RiskLevel

MAX_LEVEL = 4


def _role(level: int, name: str | None = None) -> Role:
    return Role(id=uuid.uuid4(), name=name or f"role{level}", level=level)


def _standing(level: int, actor_id: str = "actor", has_role: bool = True) -> ActorStanding:
    return ActorStanding(actor_id=actor_id, level=level, has_role=has_role, max_level=MAX_LEVEL)


def _evaluate(actor_level: int, target_level: int | None, target_user: str = "target"):
    role = _role(target_level) if target_level is not None else None
    return evaluate_escalation(
        EscalationRequest(standing=_standing(actor_level), target_user_id=target_user, target_role=role)
    )


class TestEvaluateEscalation:
    """Tests for the ordered escalation checks."""

    def test_checks_are_named_and_ordered(self) -> None:
        assert [name for name, _check in ESCALATION_CHECKS] == [
            "role_exists",
            "not_self_assignment",
            "below_actor_level",
        ]

    def test_missing_role_is_denied_first(self) -> None:
        result = _evaluate(MAX_LEVEL, None, target_user="actor")
        assert not result.valid
        assert result.reason == DenialReason.ROLE_NOT_FOUND

    @pytest.mark.parametrize("actor_level", [1, 2, 3, 4])
    @pytest.mark.parametrize("target_level", [1, 2, 3, 4])
    def test_self_assignment_always_denied(self, actor_level: int, target_level: int) -> None:
        result = _evaluate(actor_level, target_level, target_user="actor")
        assert not result.valid
        assert result.reason == DenialReason.SELF_ASSIGNMENT
        assert result.risk_level is RiskLevel.HIGH

    @pytest.mark.parametrize(
        ("actor_level", "target_level"),
        [(1, 1), (1, 2), (2, 2), (2, 3), (3, 3)],
    )
    def test_equal_or_higher_level_denied_high(self, actor_level: int, target_level: int) -> None:
        result = _evaluate(actor_level, target_level)
        assert not result.valid
        assert result.reason == DenialReason.LEVEL_TOO_HIGH_OR_EQUAL
        assert result.risk_level is RiskLevel.HIGH
        assert result.requires_approval is False

    @pytest.mark.parametrize("actor_level", [1, 2, 3])
    def test_granting_top_level_is_critical(self, actor_level: int) -> None:
        result = _evaluate(actor_level, MAX_LEVEL)
        assert not result.valid
        assert result.reason == DenialReason.LEVEL_TOO_HIGH_OR_EQUAL
        assert result.risk_level is RiskLevel.CRITICAL
        assert result.requires_approval is True

    def test_lower_level_allowed(self) -> None:
        for actor_level in range(2, MAX_LEVEL + 1):
            for target_level in range(1, actor_level):
                assert _evaluate(actor_level, target_level).valid

    def test_directly_below_is_moderate(self) -> None:
        result = _evaluate(3, 2)
        assert result.valid
        assert result.risk_level is RiskLevel.MODERATE
        assert result.requires_approval is False

    def test_further_below_is_low(self) -> None:
        result = _evaluate(3, 1)
        assert result.valid
        assert result.risk_level is RiskLevel.LOW

    def test_top_level_actor_may_grant_any_role(self) -> None:
        for target_level in range(1, MAX_LEVEL + 1):
            assert _evaluate(MAX_LEVEL, target_level).valid

    def test_roleless_actor_cannot_grant(self) -> None:
        standing = _standing(0, has_role=False)
        result = evaluate_escalation(EscalationRequest(standing=standing, target_user_id="t", target_role=_role(1)))
        assert not result.valid
        assert result.reason == DenialReason.LEVEL_TOO_HIGH_OR_EQUAL


class TestEvaluateTargetStanding:
    """Tests for the change/removal guard."""

    def test_self_target_denied(self) -> None:
        result = evaluate_target_standing(_standing(MAX_LEVEL), "actor", _role(1))
        assert result.reason == DenialReason.SELF_ASSIGNMENT

    def test_peer_cannot_be_changed(self) -> None:
        result = evaluate_target_standing(_standing(3), "other", _role(3))
        assert not result.valid
        assert result.reason == DenialReason.TARGET_OUTRANKS_ACTOR

    def test_top_level_holder_is_critical(self) -> None:
        result = evaluate_target_standing(_standing(3), "other", _role(MAX_LEVEL))
        assert result.risk_level is RiskLevel.CRITICAL

    def test_lower_target_allowed(self) -> None:
        assert evaluate_target_standing(_standing(3), "other", _role(2)).valid

    def test_top_level_actor_may_change_peer(self) -> None:
        assert evaluate_target_standing(_standing(MAX_LEVEL), "other", _role(MAX_LEVEL)).valid


class TestEvaluateBulk:
    """Tests for the batch size gate."""

    @pytest.mark.parametrize("count", [1, 10, 20])
    def test_small_batches_low_risk(self, count: int) -> None:
        result = evaluate_bulk(count)
        assert result.valid
        assert result.risk_level is RiskLevel.LOW
        assert result.requires_approval is False

    @pytest.mark.parametrize("count", [21, 35, 50])
    def test_medium_batches_need_approval(self, count: int) -> None:
        result = evaluate_bulk(count)
        assert result.valid
        assert result.risk_level is RiskLevel.HIGH
        assert result.requires_approval is True

    @pytest.mark.parametrize("count", [51, 60, 500])
    def test_oversized_batches_denied(self, count: int) -> None:
        result = evaluate_bulk(count)
        assert not result.valid
        assert result.reason == DenialReason.BATCH_TOO_LARGE

    def test_custom_limits(self) -> None:
        assert not evaluate_bulk(6, max_items=5, approval_threshold=2).valid
        assert evaluate_bulk(3, max_items=5, approval_threshold=2).requires_approval


class TestPrivilegeValidator:
    """Tests for the catalog-backed validator."""

    async def test_resolve_standing(self, async_session, roles, admin) -> None:
        validator = PrivilegeValidator(RoleCatalog(async_session))
        standing = await validator.resolve_standing(admin)
        assert standing == ActorStanding(actor_id="admin-1", level=3, has_role=True, max_level=4)
        assert not standing.is_super

    async def test_standing_for_user_without_role(self, async_session, roles) -> None:
        validator = PrivilegeValidator(RoleCatalog(async_session))
        standing = await validator.resolve_standing(Actor(id="nobody"))
        assert standing.has_role is False
        assert standing.level == 0

    async def test_admin_granting_superadmin_is_critical(self, async_session, roles, admin) -> None:
        validator = PrivilegeValidator(RoleCatalog(async_session))
        result = await validator.validate_privilege_escalation(admin, "u-1", roles["superadmin"].id)
        assert not result.valid
        assert result.risk_level is RiskLevel.CRITICAL
        assert result.requires_approval is True

    async def test_unknown_role(self, async_session, roles, admin) -> None:
        validator = PrivilegeValidator(RoleCatalog(async_session))
        result = await validator.validate_privilege_escalation(admin, "u-1", uuid.uuid4())
        assert result.reason == DenialReason.ROLE_NOT_FOUND

    def test_validate_bulk_operation_uses_configured_limits(self) -> None:
        validator = PrivilegeValidator(RoleCatalog(None), batch_max_items=10, batch_approval_threshold=5)  # type: ignore[arg-type]
        actor = Actor(id="a")
        assert validator.validate_bulk_operation(actor, "role_assignment", 5).requires_approval is False
        assert validator.validate_bulk_operation(actor, "role_assignment", 6).requires_approval is True
        denied = validator.validate_bulk_operation(actor, "role_assignment", 11, {"source": "test"})
        assert denied.reason == DenialReason.BATCH_TOO_LARGE
