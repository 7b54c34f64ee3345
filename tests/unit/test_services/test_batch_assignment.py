"""Tests for batch role assignment."""

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from portal_rbac.core.errors import PermissionDenied, ValidationError
from portal_rbac.models.audit_log import ATTEMPT_FAILED, BLOCKED, AuditLog
from portal_rbac.models.user_role import UserRole
from portal_rbac.schemas.roles import BatchAssignmentItem
from portal_rbac.services.assignment_service import AssignmentEngine
from portal_rbac.services.types import DenialReason, ItemOutcome


def _item(user_id: str, role_id: uuid.UUID, reason: str = "batch") -> BatchAssignmentItem:
    return BatchAssignmentItem(target_user_id=user_id, target_role_id=role_id, reason=reason)


async def _snapshot(session) -> tuple[set[tuple[str, uuid.UUID]], int]:
    rows = (await session.execute(select(UserRole.user_id, UserRole.role_id))).all()
    audit_count = (await session.execute(select(func.count()).select_from(AuditLog))).scalar_one()
    return {(r.user_id, r.role_id) for r in rows}, audit_count


class TestBatchGate:
    """Tests for the size gate that runs before any validation."""

    async def test_sixty_items_rejected_before_validation(self, async_session, roles, superadmin) -> None:
        engine = AssignmentEngine(async_session)
        engine.validator.validate_privilege_escalation = AsyncMock()  # type: ignore[method-assign]
        items = [_item(f"u-{i}", roles["student"].id) for i in range(60)]

        with pytest.raises(ValidationError) as exc_info:
            await engine.assign_roles_batch(superadmin, items)

        assert exc_info.value.code == DenialReason.BATCH_TOO_LARGE
        assert exc_info.value.status_code == 400
        engine.validator.validate_privilege_escalation.assert_not_awaited()
        assert await _snapshot(async_session) == ({("super-1", roles["superadmin"].id)}, 0)

    async def test_over_approval_threshold_blocked_and_audited(self, async_session, roles, superadmin) -> None:
        engine = AssignmentEngine(async_session)
        items = [_item(f"u-{i}", roles["student"].id) for i in range(21)]

        with pytest.raises(PermissionDenied) as exc_info:
            await engine.assign_roles_batch(superadmin, items)

        exc = exc_info.value
        assert exc.code == DenialReason.BATCH_REQUIRES_APPROVAL
        assert exc.requires_approval is True
        assert exc.risk_level == "high"

        entries = (await async_session.execute(select(AuditLog))).scalars().all()
        assert len(entries) == 1
        assert entries[0].role_after == BLOCKED
        assert entries[0].entry_metadata["item_count"] == 21
        assert await engine.find_assignment("u-0") is None

    async def test_configured_threshold(self, async_session, roles, superadmin) -> None:
        engine = AssignmentEngine(async_session, batch_max_items=3, batch_approval_threshold=2)
        items = [_item(f"u-{i}", roles["student"].id) for i in range(4)]
        with pytest.raises(ValidationError):
            await engine.assign_roles_batch(superadmin, items)


class TestBatchExecution:
    """Tests for Phase 1 pre-validation and Phase 2 execution."""

    async def test_all_valid_items_commit(self, async_session, roles, superadmin) -> None:
        engine = AssignmentEngine(async_session)
        items = [_item(f"u-{i}", roles["student"].id) for i in range(5)]

        result = await engine.assign_roles_batch(superadmin, items, metadata={"source": "import"})

        assert result.committed is True
        assert result.total_attempted == 5
        assert result.valid_count == result.executed_count == result.succeeded_count == 5
        assert result.invalid_count == result.failed_count == 0
        assert [d.index for d in result.per_item_detail] == list(range(5))
        assert all(d.outcome is ItemOutcome.SUCCEEDED for d in result.per_item_detail)
        assert all(d.audit_log_id is not None for d in result.per_item_detail)

        assignments, total = await engine.list_assignments(role_id=roles["student"].id)
        assert total == 5
        assert all(a.assignment_metadata["batch_id"] == str(result.batch_id) for a in assignments)

    async def test_invalid_items_reported_in_input_order(self, async_session, roles, admin, grant_role) -> None:
        await grant_role("taken", "student")
        engine = AssignmentEngine(async_session)
        items = [
            _item("u-1", roles["student"].id),
            _item("admin-1", roles["student"].id),
            _item("taken", roles["student"].id),
            _item("u-1", roles["moderator"].id),
            _item("u-2", roles["superadmin"].id),
            _item("u-3", roles["moderator"].id),
        ]

        result = await engine.assign_roles_batch(admin, items)

        reasons = [d.reason for d in result.per_item_detail]
        assert reasons == [
            None,
            DenialReason.SELF_ASSIGNMENT,
            DenialReason.ALREADY_ASSIGNED,
            DenialReason.DUPLICATE_IN_BATCH,
            DenialReason.LEVEL_TOO_HIGH_OR_EQUAL,
            None,
        ]
        assert result.valid_count == 2
        assert result.invalid_count == 4
        assert result.succeeded_count == 2
        assert result.committed is True
        assert len(result.errors) == 4

        # Only the hierarchy denials are audited, next to the two successes.
        entries = (await async_session.execute(select(AuditLog))).scalars().all()
        denials = sorted(e.user_id for e in entries if e.role_after == ATTEMPT_FAILED)
        assert denials == ["admin-1", "u-2"]
        assert len(entries) == 4
        assert result.per_item_detail[4].audit_log_id is not None

    async def test_rejected_item_does_not_claim_its_target(self, async_session, roles, admin) -> None:
        engine = AssignmentEngine(async_session)
        items = [_item("u-1", roles["superadmin"].id), _item("u-1", roles["student"].id)]

        result = await engine.assign_roles_batch(admin, items)

        assert [(d.outcome, d.reason) for d in result.per_item_detail] == [
            (ItemOutcome.INVALID, DenialReason.LEVEL_TOO_HIGH_OR_EQUAL),
            (ItemOutcome.SUCCEEDED, None),
        ]
        assert result.succeeded_count == 1
        assignment = await engine.get_assignment("u-1")
        assert assignment.role_id == roles["student"].id

    async def test_no_valid_items(self, async_session, roles, admin) -> None:
        engine = AssignmentEngine(async_session)
        result = await engine.assign_roles_batch(admin, [_item("u-1", roles["admin"].id)])
        assert result.valid_count == 0
        assert result.executed_count == 0
        assert result.committed is False
        assert result.per_item_detail[0].outcome is ItemOutcome.INVALID

    async def test_write_time_conflict_fails_only_that_item(self, async_session, roles, superadmin, grant_role) -> None:
        await grant_role("u-2", "student")
        engine = AssignmentEngine(async_session)
        # Both phases miss the existing row, as if it was inserted concurrently.
        engine.find_assignment = AsyncMock(return_value=None)  # type: ignore[method-assign]
        items = [_item(f"u-{i}", roles["moderator"].id) for i in range(1, 4)]

        result = await engine.assign_roles_batch(superadmin, items)

        assert result.committed is True
        assert [d.outcome for d in result.per_item_detail] == [
            ItemOutcome.SUCCEEDED,
            ItemOutcome.FAILED,
            ItemOutcome.SUCCEEDED,
        ]
        assert result.per_item_detail[1].reason == DenialReason.ALREADY_ASSIGNED
        assert result.succeeded_count == 2
        assert result.failed_count == 1

        rows = dict((await async_session.execute(select(UserRole.user_id, UserRole.role_id))).all())
        assert rows["u-1"] == roles["moderator"].id
        assert rows["u-2"] == roles["student"].id
        assert rows["u-3"] == roles["moderator"].id

    async def test_storage_failure_rolls_back_whole_batch(self, async_session, roles, superadmin, monkeypatch) -> None:
        engine = AssignmentEngine(async_session)
        before = await _snapshot(async_session)
        items = [_item(f"u-{i}", roles["student"].id) for i in range(4)]

        original_flush = async_session.flush
        calls = 0

        async def flaky_flush(*args, **kwargs) -> None:
            nonlocal calls
            calls += 1
            if calls == 3:
                raise OperationalError("INSERT INTO user_roles", {}, Exception("disk I/O error"))
            await original_flush(*args, **kwargs)

        monkeypatch.setattr(async_session, "flush", flaky_flush)
        result = await engine.assign_roles_batch(superadmin, items)
        monkeypatch.undo()

        assert result.committed is False
        assert result.succeeded_count == 0
        assert all(d.outcome is ItemOutcome.ROLLED_BACK for d in result.per_item_detail)
        assert all(d.audit_log_id is None for d in result.per_item_detail)
        assert result.errors[-1]["error"] == "TransactionFailure"
        assert await _snapshot(async_session) == before
