from app.models.commission import CommissionPlan, PlanStatus, PlanTargetUserType, PlanTriggerType
from app.services.commission_eligibility import CreatorSnapshot, eligible_plans, evaluate_plan


def make_plan(
    name,
    trigger=PlanTriggerType.WORKFLOW_THRESHOLD,
    threshold=None,
    status=PlanStatus.ACTIVE,
    target=PlanTargetUserType.ALL,
):
    return CommissionPlan(
        id=f"plan-{name}",
        name=name,
        trigger_type=trigger,
        workflow_threshold=threshold,
        status=status,
        target_user_type=target,
    )


def test_threshold_is_inclusive():
    plan = make_plan("ten", threshold=10)

    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=10)) is not None
    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=9)) is None


def test_manual_plans_are_always_eligible():
    plan = make_plan("manual", trigger=PlanTriggerType.MANUAL)

    reason = evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=0))

    assert reason is not None
    assert "Manual" in reason


def test_inactive_plans_are_excluded():
    plans = [
        make_plan("inactive", threshold=1, status=PlanStatus.INACTIVE),
        make_plan("inactive-manual", trigger=PlanTriggerType.MANUAL, status=PlanStatus.INACTIVE),
    ]

    assert eligible_plans(plans, CreatorSnapshot(id="42", workflow_count=100)) == []


def test_threshold_plan_without_threshold_is_not_eligible():
    plan = make_plan("broken", threshold=None)

    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=100)) is None


def test_unknown_trigger_type_is_not_eligible():
    plan = make_plan("future", trigger="referral_count", threshold=1)

    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=100)) is None


def test_plain_string_values_are_accepted():
    plan = make_plan("strings", trigger="workflow_threshold", threshold=3, status="active")

    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=3)) is not None


def test_results_ordered_by_threshold_descending_then_name():
    plans = [
        make_plan("bronze", threshold=5),
        make_plan("manual-bonus", trigger=PlanTriggerType.MANUAL),
        make_plan("gold", threshold=20),
        make_plan("silver-b", threshold=10),
        make_plan("silver-a", threshold=10),
        make_plan("platinum", threshold=50),
    ]

    matches = eligible_plans(plans, CreatorSnapshot(id="42", workflow_count=25))

    assert [m.plan.name for m in matches] == ["gold", "silver-a", "silver-b", "bronze", "manual-bonus"]
    assert "25" in matches[0].reason and "20" in matches[0].reason


def test_specific_plans_require_assignment():
    plan = make_plan("vip", trigger=PlanTriggerType.MANUAL, target=PlanTargetUserType.SPECIFIC)

    assert evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=0)) is None

    reason = evaluate_plan(plan, CreatorSnapshot(id="42", workflow_count=0, assigned_plan_ids=frozenset({"plan-vip"})))
    assert reason is not None
    assert "assigned" in reason


def test_assignment_does_not_bypass_threshold():
    plan = make_plan("vip-tier", threshold=50, target=PlanTargetUserType.SPECIFIC)
    creator = CreatorSnapshot(id="42", workflow_count=10, assigned_plan_ids=frozenset({"plan-vip-tier"}))

    assert evaluate_plan(plan, creator) is None
