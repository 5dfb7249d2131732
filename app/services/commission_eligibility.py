"""Which commission plans a creator currently qualifies for. Advisory only, never issues grants."""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from app.models.commission import CommissionPlan, PlanStatus, PlanTargetUserType, PlanTriggerType


@dataclass(frozen=True)
class CreatorSnapshot:
    id: str
    workflow_count: int
    assigned_plan_ids: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class EligiblePlan:
    plan: CommissionPlan
    reason: str


def _value(field) -> Optional[str]:
    return field.value if hasattr(field, "value") else field


def _trigger_reason(plan: CommissionPlan, creator: CreatorSnapshot) -> Optional[str]:
    trigger = _value(plan.trigger_type)
    if trigger == PlanTriggerType.MANUAL.value:
        return "Manual plan, available at admin discretion"

    if trigger == PlanTriggerType.WORKFLOW_THRESHOLD.value:
        if plan.workflow_threshold is None:
            return None
        if creator.workflow_count >= plan.workflow_threshold:
            return (
                f"Workflow count ({creator.workflow_count}) reached threshold ({plan.workflow_threshold})"
            )
        return None

    return None


def evaluate_plan(plan: CommissionPlan, creator: CreatorSnapshot) -> Optional[str]:
    """Return the eligibility reason, or None when the creator does not qualify."""
    if _value(plan.status) != PlanStatus.ACTIVE.value:
        return None

    reason = _trigger_reason(plan, creator)
    if reason is None:
        return None

    if _value(plan.target_user_type) == PlanTargetUserType.SPECIFIC.value:
        if plan.id not in creator.assigned_plan_ids:
            return None
        reason = f"{reason}; creator is assigned to this plan"

    return reason


def eligible_plans(plans: Iterable[CommissionPlan], creator: CreatorSnapshot) -> List[EligiblePlan]:
    """
    Filter plans to those the creator qualifies for.

    Highest workflow threshold first so the best tier is presented first;
    plans without a threshold come last.
    """
    matches = []
    for plan in plans:
        reason = evaluate_plan(plan, creator)
        if reason is not None:
            matches.append(EligiblePlan(plan=plan, reason=reason))

    matches.sort(
        key=lambda m: (
            m.plan.workflow_threshold is None,
            -(m.plan.workflow_threshold or 0),
            m.plan.name or "",
        )
    )
    return matches
