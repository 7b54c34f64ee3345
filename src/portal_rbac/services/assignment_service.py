"""Role assignment engine.

Grants, changes and removes user roles. Every mutation commits together with
the audit entry that records it, and every hierarchy denial is audited before
the error is raised.
"""

import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.core.errors import Conflict, HierarchyViolation, NotFound, PermissionDenied, TransactionFailure
from portal_rbac.core.errors import ValidationError as RequestValidationError
from portal_rbac.models.audit_log import ATTEMPT_FAILED, BLOCKED, UNASSIGNED
from portal_rbac.models.user_role import UserRole
from portal_rbac.schemas.roles import BatchAssignmentItem
from portal_rbac.services.audit_service import AuditTrail
from portal_rbac.services.privilege_validator import (
    DEFAULT_BATCH_APPROVAL_THRESHOLD,
    DEFAULT_BATCH_MAX_ITEMS,
    ActorStanding,
    PrivilegeValidator,
    evaluate_target_standing,
)
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import (
    Actor,
    AssignmentOutcome,
    BatchItemResult,
    BatchResult,
    DenialReason,
    ItemOutcome,
    RequestContext,
    RiskLevel,
    ValidationResult,
)

BULK_ROLE_ASSIGNMENT = "role_assignment"
SYSTEM_ACTOR = "system"

# Phase-1 denials that are hierarchy decisions and therefore audited.
_AUDITED_BATCH_DENIALS = frozenset({DenialReason.SELF_ASSIGNMENT, DenialReason.LEVEL_TOO_HIGH_OR_EQUAL})


@dataclass
class _PlannedItem:
    index: int
    item: BatchAssignmentItem
    role_id: uuid.UUID
    role_name: str
    validation: ValidationResult


class AssignmentEngine:
    """Applies role changes for one request against one storage session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        batch_max_items: int = DEFAULT_BATCH_MAX_ITEMS,
        batch_approval_threshold: int = DEFAULT_BATCH_APPROVAL_THRESHOLD,
    ) -> None:
        self._session = session
        self.catalog = RoleCatalog(session)
        self.audit = AuditTrail(session)
        self.validator = PrivilegeValidator(
            self.catalog,
            batch_max_items=batch_max_items,
            batch_approval_threshold=batch_approval_threshold,
        )

    # -- reads ---------------------------------------------------------

    async def find_assignment(self, user_id: str) -> UserRole | None:
        """Return the user's current assignment, or None."""
        result = await self._session.execute(select(UserRole).where(UserRole.user_id == user_id))
        return result.unique().scalar_one_or_none()

    async def get_assignment(self, user_id: str) -> UserRole:
        """Return the user's current assignment.

        Raises:
            NotFound: If the user holds no role.
        """
        assignment = await self.find_assignment(user_id)
        if assignment is None:
            msg = f"User {user_id} has no role assigned"
            raise NotFound(msg, code="AssignmentNotFound")
        return assignment

    async def list_assignments(
        self,
        *,
        role_id: uuid.UUID | None = None,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[UserRole], int]:
        """List assignments, most recent first.

        Args:
            role_id: Only assignments of this role.
            page: Page number (1-based).
            page_size: Items per page.

        Returns:
            Tuple of (assignments, total count).
        """
        conditions = [UserRole.role_id == role_id] if role_id is not None else []
        total = (await self._session.execute(select(func.count(UserRole.id)).where(*conditions))).scalar_one()
        query = (
            select(UserRole)
            .where(*conditions)
            .order_by(UserRole.assigned_at.desc(), UserRole.user_id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._session.execute(query)
        return list(result.unique().scalars().all()), total

    # -- single assignment ---------------------------------------------

    async def _deny(
        self,
        actor: Actor,
        target_user_id: str,
        validation: ValidationResult,
        *,
        operation: str,
        context: RequestContext | None,
        metadata: dict[str, Any] | None = None,
    ) -> HierarchyViolation:
        """Audit a hierarchy denial and build the error to raise."""
        await self.audit.record_denial(
            actor_id=actor.id,
            target_user_id=target_user_id,
            sentinel=ATTEMPT_FAILED,
            reason=f"{operation} denied: {validation.reason}",
            validation=validation,
            context=context,
            metadata={"operation": operation, **(metadata or {})},
        )
        return HierarchyViolation(
            f"{operation} denied: {validation.reason}",
            risk_level=validation.risk_level.value,
            requires_approval=validation.requires_approval,
            extra={"reason": validation.reason},
        )

    @asynccontextmanager
    async def _write(self, target_user_id: str, operation: str) -> AsyncIterator[None]:
        """Run the writes in the block and commit them, mapping storage errors."""
        try:
            yield
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            logger.info(f"{operation} for {target_user_id} lost a uniqueness race")
            msg = f"User {target_user_id} already has a role assigned"
            raise Conflict(msg, code="AlreadyAssigned") from e
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.exception(f"{operation} for {target_user_id} failed and was rolled back")
            msg = f"{operation} failed and was rolled back"
            raise TransactionFailure(msg) from e

    async def validate_assignment(self, actor: Actor, target_user_id: str, role_id: uuid.UUID) -> ValidationResult:
        """Dry run of ``assign_role``'s hierarchy checks. No side effects."""
        return await self.validator.validate_privilege_escalation(actor, target_user_id, role_id)

    async def assign_role(
        self,
        actor: Actor,
        target_user_id: str,
        role_id: uuid.UUID,
        reason: str,
        *,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AssignmentOutcome:
        """Grant ``role_id`` to a user who holds no role.

        Args:
            actor: The acting user.
            target_user_id: The user receiving the role.
            role_id: The role to grant.
            reason: Why the role is granted.
            context: Request transport details for the audit entry.
            metadata: Extra metadata stored with the assignment and its entry.

        Returns:
            The committed assignment with its audit entry ID.

        Raises:
            NotFound: The role does not exist (nothing is written).
            HierarchyViolation: Self-assignment or a role at or above the
                actor's level (a denial entry is written first).
            Conflict: The user already holds a role.
            TransactionFailure: The write failed and was rolled back.
        """
        validation = await self.validator.validate_privilege_escalation(actor, target_user_id, role_id)
        if not validation.valid:
            if validation.reason == DenialReason.ROLE_NOT_FOUND:
                msg = f"Role {role_id} not found"
                raise NotFound(msg, code="RoleNotFound")
            raise await self._deny(
                actor,
                target_user_id,
                validation,
                operation="assign_role",
                context=context,
                metadata={"attempted_role_id": str(role_id)},
            )

        role = await self.catalog.get_role(role_id)
        if await self.find_assignment(target_user_id) is not None:
            msg = f"User {target_user_id} already has a role assigned"
            raise Conflict(msg, code="AlreadyAssigned")

        async with self._write(target_user_id, "assign_role"):
            assignment = UserRole(
                user_id=target_user_id,
                role_id=role.id,
                assigned_by=actor.id,
                reason=reason,
                assignment_metadata=metadata,
            )
            self._session.add(assignment)
            entry = self.audit.stage(
                user_id=target_user_id,
                role_before=None,
                role_after=role.name,
                performed_by=actor.id,
                reason=reason,
                context=context,
                metadata={"role_id": str(role.id), "risk_level": validation.risk_level.value, **(metadata or {})},
            )
            await self._session.flush()

        logger.info(f"{actor.id} assigned {role.name} to {target_user_id} (risk {validation.risk_level})")
        return AssignmentOutcome(
            user_id=target_user_id,
            role_id=role.id,
            role_name=role.name,
            assigned_by=actor.id,
            reason=reason,
            assigned_at=assignment.assigned_at,
            audit_log_id=entry.id,
            risk_level=validation.risk_level,
        )

    async def _check_target(
        self,
        actor: Actor,
        standing: ActorStanding,
        current: UserRole,
        *,
        operation: str,
        context: RequestContext | None,
    ) -> None:
        verdict = evaluate_target_standing(standing, current.user_id, current.role)
        if not verdict.valid:
            raise await self._deny(
                actor,
                current.user_id,
                verdict,
                operation=operation,
                context=context,
                metadata={"current_role": current.role.name},
            )

    async def change_role(
        self,
        actor: Actor,
        target_user_id: str,
        role_id: uuid.UUID,
        reason: str,
        *,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AssignmentOutcome:
        """Replace the role a user holds.

        The actor must outrank the current role and be allowed to grant the
        new one. The old row is deleted and the new one inserted in the same
        transaction; the audit entry records the previous role name.

        Raises:
            NotFound: The user holds no role, or the new role does not exist.
            HierarchyViolation: Either hierarchy check failed (audited).
            Conflict: The user already holds the requested role.
            TransactionFailure: The write failed and was rolled back.
        """
        current = await self.get_assignment(target_user_id)
        standing = await self.validator.resolve_standing(actor)
        await self._check_target(actor, standing, current, operation="change_role", context=context)

        validation = await self.validator.validate_privilege_escalation(
            actor, target_user_id, role_id, standing=standing
        )
        if not validation.valid:
            if validation.reason == DenialReason.ROLE_NOT_FOUND:
                msg = f"Role {role_id} not found"
                raise NotFound(msg, code="RoleNotFound")
            raise await self._deny(
                actor,
                target_user_id,
                validation,
                operation="change_role",
                context=context,
                metadata={"attempted_role_id": str(role_id), "current_role": current.role.name},
            )
        if current.role_id == role_id:
            msg = f"User {target_user_id} already holds role {current.role.name}"
            raise Conflict(msg, code="RoleUnchanged")

        role = await self.catalog.get_role(role_id)
        previous_name = current.role.name
        async with self._write(target_user_id, "change_role"):
            # The delete must reach the store before the insert reuses user_id.
            await self._session.delete(current)
            await self._session.flush()
            assignment = UserRole(
                user_id=target_user_id,
                role_id=role.id,
                assigned_by=actor.id,
                reason=reason,
                assignment_metadata=metadata,
            )
            self._session.add(assignment)
            entry = self.audit.stage(
                user_id=target_user_id,
                role_before=previous_name,
                role_after=role.name,
                performed_by=actor.id,
                reason=reason,
                context=context,
                metadata={"role_id": str(role.id), "risk_level": validation.risk_level.value, **(metadata or {})},
            )
            await self._session.flush()

        logger.info(f"{actor.id} changed {target_user_id} from {previous_name} to {role.name}")
        return AssignmentOutcome(
            user_id=target_user_id,
            role_id=role.id,
            role_name=role.name,
            assigned_by=actor.id,
            reason=reason,
            assigned_at=assignment.assigned_at,
            audit_log_id=entry.id,
            role_before=previous_name,
            risk_level=validation.risk_level,
        )

    async def unassign_role(
        self,
        actor: Actor,
        target_user_id: str,
        reason: str,
        *,
        context: RequestContext | None = None,
    ) -> AssignmentOutcome:
        """Remove a user's role, recording ``role_after = unassigned``.

        Raises:
            NotFound: The user holds no role.
            HierarchyViolation: Self-targeting or the current role is not
                below the actor (audited).
            TransactionFailure: The write failed and was rolled back.
        """
        current = await self.get_assignment(target_user_id)
        standing = await self.validator.resolve_standing(actor)
        await self._check_target(actor, standing, current, operation="unassign_role", context=context)

        previous_name = current.role.name
        previous_id = current.role_id
        async with self._write(target_user_id, "unassign_role"):
            await self._session.delete(current)
            entry = self.audit.stage(
                user_id=target_user_id,
                role_before=previous_name,
                role_after=UNASSIGNED,
                performed_by=actor.id,
                reason=reason,
                context=context,
                metadata={"role_id": str(previous_id)},
            )
            await self._session.flush()

        logger.info(f"{actor.id} removed {previous_name} from {target_user_id}")
        return AssignmentOutcome(
            user_id=target_user_id,
            role_id=None,
            role_name=UNASSIGNED,
            assigned_by=actor.id,
            reason=reason,
            assigned_at=entry.timestamp,
            audit_log_id=entry.id,
            role_before=previous_name,
        )

    # -- batch ---------------------------------------------------------

    async def _gate_batch(
        self,
        actor: Actor,
        items: Sequence[BatchAssignmentItem],
        batch_id: uuid.UUID,
        context: RequestContext | None,
    ) -> None:
        count = len(items)
        gate = self.validator.validate_bulk_operation(
            actor, BULK_ROLE_ASSIGNMENT, count, {"batch_id": str(batch_id)}
        )
        if not gate.valid:
            msg = f"Batch of {count} items exceeds the limit"
            raise RequestValidationError(
                msg,
                code=DenialReason.BATCH_TOO_LARGE.value,
                risk_level=gate.risk_level.value,
                requires_approval=gate.requires_approval,
                extra={"item_count": count},
            )
        if gate.requires_approval:
            await self.audit.record_denial(
                actor_id=actor.id,
                target_user_id=f"batch:{batch_id}",
                sentinel=BLOCKED,
                reason=f"Batch of {count} role assignments requires approval",
                validation=gate,
                context=context,
                metadata={
                    "operation": BULK_ROLE_ASSIGNMENT,
                    "batch_id": str(batch_id),
                    "item_count": count,
                    "target_user_ids": [item.target_user_id for item in items],
                },
            )
            msg = f"Batch of {count} items requires approval"
            raise PermissionDenied(
                msg,
                code=DenialReason.BATCH_REQUIRES_APPROVAL.value,
                risk_level=gate.risk_level.value,
                requires_approval=True,
                extra={"batch_id": str(batch_id), "item_count": count},
            )

    async def _prevalidate(
        self,
        actor: Actor,
        items: Sequence[BatchAssignmentItem],
        result: BatchResult,
    ) -> tuple[list[_PlannedItem], list[tuple[BatchItemResult, ValidationResult]]]:
        """Phase 1: read-only checks in input order.

        Returns:
            The executable items and the hierarchy denials to audit.
        """
        standing = await self.validator.resolve_standing(actor)
        seen: set[str] = set()
        planned: list[_PlannedItem] = []
        audited: list[tuple[BatchItemResult, ValidationResult]] = []

        for index, item in enumerate(items):
            detail = BatchItemResult(
                index=index,
                target_user_id=item.target_user_id,
                target_role_id=item.target_role_id,
                outcome=ItemOutcome.INVALID,
            )
            result.per_item_detail.append(detail)

            if item.target_user_id == actor.id:
                validation = ValidationResult.deny(DenialReason.SELF_ASSIGNMENT, RiskLevel.HIGH)
            elif await self.find_assignment(item.target_user_id) is not None:
                validation = ValidationResult.deny(DenialReason.ALREADY_ASSIGNED, RiskLevel.LOW)
            elif item.target_user_id in seen:
                validation = ValidationResult.deny(DenialReason.DUPLICATE_IN_BATCH, RiskLevel.LOW)
            else:
                validation = await self.validator.validate_privilege_escalation(
                    actor, item.target_user_id, item.target_role_id, standing=standing
                )

            detail.risk_level = validation.risk_level
            if not validation.valid:
                detail.reason = validation.reason
                result.invalid_count += 1
                result.errors.append({"index": index, "target_user_id": item.target_user_id, "error": validation.reason})
                if validation.reason in _AUDITED_BATCH_DENIALS:
                    audited.append((detail, validation))
                continue

            seen.add(item.target_user_id)
            role = await self.catalog.get_role(item.target_role_id)
            planned.append(
                _PlannedItem(index=index, item=item, role_id=role.id, role_name=role.name, validation=validation)
            )
            result.valid_count += 1

        return planned, audited

    async def _execute(
        self,
        actor: Actor,
        planned: list[_PlannedItem],
        result: BatchResult,
        context: RequestContext | None,
        metadata: dict[str, Any] | None,
    ) -> None:
        """Phase 2: every planned item in one transaction, a savepoint per item."""
        batch_meta = {"batch_id": str(result.batch_id), **(metadata or {})}
        try:
            for plan in planned:
                detail = result.per_item_detail[plan.index]
                item = plan.item
                result.executed_count += 1
                if await self.find_assignment(item.target_user_id) is not None:
                    detail.outcome = ItemOutcome.FAILED
                    detail.reason = DenialReason.ALREADY_ASSIGNED.value
                    result.failed_count += 1
                    continue
                try:
                    async with self._session.begin_nested():
                        self._session.add(
                            UserRole(
                                user_id=item.target_user_id,
                                role_id=plan.role_id,
                                assigned_by=actor.id,
                                reason=item.reason,
                                assignment_metadata=batch_meta,
                            )
                        )
                        entry = self.audit.stage(
                            user_id=item.target_user_id,
                            role_before=None,
                            role_after=plan.role_name,
                            performed_by=actor.id,
                            reason=item.reason,
                            context=context,
                            metadata={
                                **batch_meta,
                                "batch_index": plan.index,
                                "role_id": str(plan.role_id),
                                "risk_level": plan.validation.risk_level.value,
                            },
                        )
                        await self._session.flush()
                except IntegrityError:
                    logger.info(f"Batch {result.batch_id} item {plan.index}: {item.target_user_id} assigned concurrently")
                    detail.outcome = ItemOutcome.FAILED
                    detail.reason = DenialReason.ALREADY_ASSIGNED.value
                    result.failed_count += 1
                    continue
                detail.outcome = ItemOutcome.SUCCEEDED
                detail.audit_log_id = entry.id
                result.succeeded_count += 1
            await self._session.commit()
            result.committed = True
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.exception(f"Batch {result.batch_id} failed; all writes rolled back")
            for plan in planned:
                detail = result.per_item_detail[plan.index]
                if detail.outcome in (ItemOutcome.INVALID, ItemOutcome.SUCCEEDED):
                    detail.outcome = ItemOutcome.ROLLED_BACK
                    detail.audit_log_id = None
            result.succeeded_count = 0
            result.committed = False
            result.errors.append({"error": TransactionFailure.default_code, "detail": str(e)})

    async def assign_roles_batch(
        self,
        actor: Actor,
        items: Sequence[BatchAssignmentItem],
        *,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BatchResult:
        """Assign roles to many users as one unit.

        The bulk gate runs first. Phase 1 then validates every item without
        writing; Phase 2 writes all valid items in a single transaction. A
        uniqueness conflict found at write time fails only that item; any
        other storage failure rolls back the whole batch.

        Args:
            actor: The acting user.
            items: Ordered batch items.
            context: Request transport details for the audit entries.
            metadata: Extra metadata stored with every assignment and entry.

        Returns:
            The batch summary with a per-item breakdown in input order.

        Raises:
            ValidationError: More items than the hard cap (nothing written).
            PermissionDenied: The batch needs approval (one ``blocked`` entry
                is written).
        """
        batch_id = uuid.uuid4()
        await self._gate_batch(actor, items, batch_id, context)

        result = BatchResult(batch_id=batch_id, total_attempted=len(items))
        planned, audited = await self._prevalidate(actor, items, result)
        if planned:
            await self._execute(actor, planned, result, context, metadata)
        else:
            # Release the read transaction opened by Phase 1.
            await self._session.rollback()

        if audited:
            for detail, validation in audited:
                entry = self.audit.stage_denial(
                    actor_id=actor.id,
                    target_user_id=detail.target_user_id,
                    sentinel=ATTEMPT_FAILED,
                    reason=f"batch assign_role denied: {validation.reason}",
                    validation=validation,
                    context=context,
                    metadata={
                        "operation": BULK_ROLE_ASSIGNMENT,
                        "batch_id": str(batch_id),
                        "batch_index": detail.index,
                        "attempted_role_id": str(detail.target_role_id),
                    },
                )
                detail.audit_log_id = entry.id
            await self._session.commit()

        logger.info(
            f"Batch {batch_id} by {actor.id}: {result.succeeded_count}/{result.total_attempted} succeeded, "
            f"{result.invalid_count} invalid, {result.failed_count} failed, committed={result.committed}"
        )
        return result

    # -- bootstrap -----------------------------------------------------

    async def bootstrap_superuser(self, user_id: str, *, reason: str = "bootstrap") -> AssignmentOutcome:
        """Grant the top role to the first super user, bypassing the hierarchy.

        Only possible while nobody holds the top role; audited as performed
        by ``system``.

        Raises:
            NotFound: The catalog is empty.
            Conflict: The top role is already held, or the user has a role.
        """
        roles = await self.catalog.list_roles()
        if not roles:
            msg = "No roles defined; seed the catalog first"
            raise NotFound(msg, code="RoleNotFound")
        top = roles[-1]
        holders = (
            await self._session.execute(select(func.count(UserRole.id)).where(UserRole.role_id == top.id))
        ).scalar_one()
        if holders:
            msg = f"Role {top.name} is already held; use assign_role"
            raise Conflict(msg, code="AlreadyBootstrapped")
        if await self.find_assignment(user_id) is not None:
            msg = f"User {user_id} already has a role assigned"
            raise Conflict(msg, code="AlreadyAssigned")

        async with self._write(user_id, "bootstrap"):
            assignment = UserRole(user_id=user_id, role_id=top.id, assigned_by=SYSTEM_ACTOR, reason=reason)
            self._session.add(assignment)
            entry = self.audit.stage(
                user_id=user_id,
                role_before=None,
                role_after=top.name,
                performed_by=SYSTEM_ACTOR,
                reason=reason,
                metadata={"role_id": str(top.id), "operation": "bootstrap"},
            )
            await self._session.flush()

        logger.warning(f"Bootstrapped {user_id} as {top.name}")
        return AssignmentOutcome(
            user_id=user_id,
            role_id=top.id,
            role_name=top.name,
            assigned_by=SYSTEM_ACTOR,
            reason=reason,
            assigned_at=assignment.assigned_at,
            audit_log_id=entry.id,
            risk_level=RiskLevel.CRITICAL,
        )
