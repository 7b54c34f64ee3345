"""Privilege escalation and bulk operation validation.

The decision logic is pure: ``evaluate_escalation`` walks an ordered list of
named checks and stops at the first one that returns a denial.
``PrivilegeValidator`` only adds the catalog lookups needed to build the
input for those checks.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from portal_rbac.models.role import Role
from portal_rbac.services.role_catalog import RoleCatalog
from portal_rbac.services.types import Actor, DenialReason, RiskLevel, ValidationResult

DEFAULT_BATCH_MAX_ITEMS = 50
DEFAULT_BATCH_APPROVAL_THRESHOLD = 20


@dataclass(frozen=True)
class ActorStanding:
    """Where the actor sits in the hierarchy at decision time."""

    actor_id: str
    level: int
    has_role: bool
    max_level: int

    @property
    def is_super(self) -> bool:
        return self.has_role and self.level >= self.max_level


@dataclass(frozen=True)
class EscalationRequest:
    """Input to the escalation checks."""

    standing: ActorStanding
    target_user_id: str
    target_role: Role | None


EscalationCheck = Callable[[EscalationRequest], ValidationResult | None]


def _check_role_exists(request: EscalationRequest) -> ValidationResult | None:
    if request.target_role is None:
        return ValidationResult.deny(DenialReason.ROLE_NOT_FOUND, RiskLevel.HIGH)
    return None


def _check_not_self(request: EscalationRequest) -> ValidationResult | None:
    if request.standing.actor_id == request.target_user_id:
        return ValidationResult.deny(DenialReason.SELF_ASSIGNMENT, RiskLevel.HIGH)
    return None


def _check_below_actor_level(request: EscalationRequest) -> ValidationResult | None:
    standing = request.standing
    if request.target_role is None:
        return None
    target_level = request.target_role.level
    if not standing.is_super and target_level >= standing.level:
        risk = RiskLevel.CRITICAL if target_level == standing.max_level else RiskLevel.HIGH
        return ValidationResult.deny(DenialReason.LEVEL_TOO_HIGH_OR_EQUAL, risk)
    return None


ESCALATION_CHECKS: tuple[tuple[str, EscalationCheck], ...] = (
    ("role_exists", _check_role_exists),
    ("not_self_assignment", _check_not_self),
    ("below_actor_level", _check_below_actor_level),
)


def evaluate_escalation(request: EscalationRequest) -> ValidationResult:
    """Decide whether the actor may grant ``target_role`` to ``target_user_id``.

    Args:
        request: Actor standing, target user and the resolved target role.

    Returns:
        The first denial produced by ``ESCALATION_CHECKS``, or an approval whose
        risk is ``moderate`` when the role sits directly below the actor and
        ``low`` otherwise.
    """
    for _name, check in ESCALATION_CHECKS:
        outcome = check(request)
        if outcome is not None:
            return outcome
    target_role = request.target_role
    if target_role is not None and target_role.level == request.standing.level - 1:
        return ValidationResult.allow(RiskLevel.MODERATE)
    return ValidationResult.allow(RiskLevel.LOW)


def evaluate_target_standing(standing: ActorStanding, target_user_id: str, current_role: Role) -> ValidationResult:
    """Decide whether the actor may change or remove a role the target already holds.

    Self-targeting is refused; otherwise a non-super actor must strictly
    outrank the role being taken away.
    """
    if standing.actor_id == target_user_id:
        return ValidationResult.deny(DenialReason.SELF_ASSIGNMENT, RiskLevel.HIGH)
    if not standing.is_super and current_role.level >= standing.level:
        risk = RiskLevel.CRITICAL if current_role.level == standing.max_level else RiskLevel.HIGH
        return ValidationResult.deny(DenialReason.TARGET_OUTRANKS_ACTOR, risk)
    return ValidationResult.allow(RiskLevel.LOW)


def evaluate_bulk(
    item_count: int,
    *,
    max_items: int = DEFAULT_BATCH_MAX_ITEMS,
    approval_threshold: int = DEFAULT_BATCH_APPROVAL_THRESHOLD,
) -> ValidationResult:
    """Size gate for bulk operations."""
    if item_count > max_items:
        return ValidationResult.deny(DenialReason.BATCH_TOO_LARGE, RiskLevel.HIGH)
    if item_count > approval_threshold:
        return ValidationResult.allow(RiskLevel.HIGH, requires_approval=True)
    return ValidationResult.allow(RiskLevel.LOW)


class PrivilegeValidator:
    """Resolves hierarchy facts from the catalog and applies the pure checks."""

    def __init__(
        self,
        catalog: RoleCatalog,
        *,
        batch_max_items: int = DEFAULT_BATCH_MAX_ITEMS,
        batch_approval_threshold: int = DEFAULT_BATCH_APPROVAL_THRESHOLD,
    ) -> None:
        self._catalog = catalog
        self._batch_max_items = batch_max_items
        self._batch_approval_threshold = batch_approval_threshold

    async def resolve_standing(self, actor: Actor) -> ActorStanding:
        """Read the actor's current level and the top of the hierarchy."""
        actor_role = await self._catalog.get_actor_role(actor)
        return ActorStanding(
            actor_id=actor.id,
            level=actor_role.level if actor_role is not None else 0,
            has_role=actor_role is not None,
            max_level=await self._catalog.max_level(),
        )

    async def validate_privilege_escalation(
        self,
        actor: Actor,
        target_user_id: str,
        target_role_id: uuid.UUID,
        *,
        standing: ActorStanding | None = None,
    ) -> ValidationResult:
        """May ``actor`` grant ``target_role_id`` to ``target_user_id``?

        Args:
            actor: The acting user.
            target_user_id: The user who would receive the role.
            target_role_id: The role to grant.
            standing: Pre-resolved actor standing (batch pre-validation reuses one).

        Returns:
            The validation result; never raises for a denial.
        """
        if standing is None:
            standing = await self.resolve_standing(actor)
        target_role = await self._catalog.find_role(target_role_id)
        result = evaluate_escalation(
            EscalationRequest(standing=standing, target_user_id=target_user_id, target_role=target_role)
        )
        if not result.valid:
            logger.debug(
                f"Escalation check denied actor={actor.id} target={target_user_id} "
                f"role={target_role_id}: {result.reason} ({result.risk_level})"
            )
        return result

    def validate_bulk_operation(
        self,
        actor: Actor,
        operation_type: str,
        item_count: int,
        context: dict[str, Any] | None = None,
    ) -> ValidationResult:
        """Apply the batch size gate.

        Args:
            actor: The acting user.
            operation_type: Kind of bulk operation (e.g. ``role_assignment``).
            item_count: Number of items in the request.
            context: Free-form request context, logged only.

        Returns:
            ``BatchTooLarge`` denial above the hard cap, an approval flagged
            ``requires_approval`` above the approval threshold, otherwise a
            low-risk approval.
        """
        result = evaluate_bulk(
            item_count,
            max_items=self._batch_max_items,
            approval_threshold=self._batch_approval_threshold,
        )
        logger.debug(
            f"Bulk {operation_type} by {actor.id}: {item_count} items -> "
            f"valid={result.valid} risk={result.risk_level} context={context or {}}"
        )
        return result
