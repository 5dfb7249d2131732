import random
from datetime import timedelta

import pytest

from app.api.deps import AuthenticatedUser, get_current_user
from app.core.security import create_access_token
from app.main import app
from app.services.wallet_ledger import WalletLedgerRejectedError
from app.utils.clock import utc_today

ADMIN_API = "/api/admin/commission"


async def issue(client, user_id="42", total_amount=1000, days=10, **extra):
    return await client.post(
        f"{ADMIN_API}/issue-by-days",
        json={"user_id": user_id, "total_amount": total_amount, "days": days, **extra},
    )


async def issue_due_now(store, user_id="42", total=300, days=3):
    record, _ = await store.create_record(
        user_id, total, days, start_date=utc_today() - timedelta(days=days - 1), rng=random.Random(5)
    )
    return record


# =============================================================================
# Issuance
# =============================================================================


async def test_issue_by_days_returns_daily_schedule(client, creator):
    response = await issue(client, reason="Top creator of the month")

    assert response.status_code == 201
    body = response.json()
    assert body["user_id"] == "42"
    assert body["total_amount"] == 1000
    assert body["days"] == 10
    assert [item["day"] for item in body["daily_schedule"]] == list(range(1, 11))
    assert sum(item["amount"] for item in body["daily_schedule"]) == 1000
    assert body["daily_schedule"][0]["scheduled_date"] == (utc_today() + timedelta(days=1)).isoformat()


@pytest.mark.parametrize(
    "total_amount,days,reason",
    [
        (1000, 0, "InvalidScheduleInput"),
        (1000, 366, "InvalidScheduleInput"),
        (-100, 5, "InvalidScheduleInput"),
        (10.5, 3, "InvalidScheduleInput"),
        (5, 10, "InsufficientAmountForDays"),
        (10**19, 1, "InvalidScheduleInput"),
    ],
)
async def test_issue_rejects_bad_schedules(client, creator, total_amount, days, reason):
    response = await issue(client, total_amount=total_amount, days=days)

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == reason

    records = await client.get(f"{ADMIN_API}/records")
    assert records.json()["items"] == []


async def test_issue_requires_known_plan(client, creator):
    response = await issue(client, source_plan_id="missing-plan")

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "UnknownCommissionPlan"


async def test_issue_to_unknown_or_non_creator_user_is_404(client, make_creator):
    await make_creator("7", role="admin")

    assert (await issue(client, user_id="999")).status_code == 404
    assert (await issue(client, user_id="7")).status_code == 404


async def test_issue_with_missing_fields_is_422(client, creator):
    response = await client.post(f"{ADMIN_API}/issue-by-days", json={"user_id": "42", "total_amount": 100})

    assert response.status_code == 422


async def test_batch_issue_reports_per_creator_results(client, creator, make_creator):
    await make_creator("43")

    response = await client.post(
        f"{ADMIN_API}/batch-issue-by-days",
        json={"user_ids": ["42", "43", "999", "42"], "total_amount": 1000, "days": 10, "reason": "Launch week"},
    )

    assert response.status_code == 200
    body = response.json()
    assert [item["user_id"] for item in body["succeeded"]] == ["42", "43"]
    assert body["failed"] == [{"user_id": "999", "reason": "CreatorNotFound", "message": "Creator 999 not found"}]

    records = (await client.get(f"{ADMIN_API}/records")).json()
    assert records["pagination"]["total"] == 2
    assert {r["id"] for r in records["items"]} == {item["commission_record_id"] for item in body["succeeded"]}
    assert all(r["total_amount"] == 1000 and r["reason"] == "Launch week" for r in records["items"])


@pytest.mark.parametrize(
    "extra,reason",
    [
        ({"days": 0}, "InvalidScheduleInput"),
        ({"total_amount": 5}, "InsufficientAmountForDays"),
        ({"source_plan_id": "missing-plan"}, "UnknownCommissionPlan"),
    ],
)
async def test_batch_issue_rejects_bad_input_for_everyone(client, creator, extra, reason):
    payload = {"user_ids": ["42"], "total_amount": 1000, "days": 10, **extra}

    response = await client.post(f"{ADMIN_API}/batch-issue-by-days", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == reason
    assert (await client.get(f"{ADMIN_API}/records")).json()["items"] == []


async def test_batch_issue_needs_users(client):
    response = await client.post(
        f"{ADMIN_API}/batch-issue-by-days", json={"user_ids": [], "total_amount": 1000, "days": 10}
    )

    assert response.status_code == 422


async def test_validation_errors_are_documented(client):
    schema = (await client.get("/openapi.json")).json()

    for path, method in (("/issue-by-days", "post"), ("/batch-issue-by-days", "post"), ("/plans", "post")):
        documented = schema["paths"][f"{ADMIN_API}{path}"][method]["responses"]["400"]
        ref = documented["content"]["application/json"]["schema"]["$ref"]
        assert ref.endswith("/CommissionErrorResponse")

    detail = schema["components"]["schemas"]["CommissionErrorDetail"]
    assert set(detail["required"]) == {"reason", "message"}


# =============================================================================
# Authentication
# =============================================================================


async def test_creators_cannot_use_admin_routes(client, creator, current_user):
    current_user.user = AuthenticatedUser(id="42", role="creator")

    assert (await issue(client)).status_code == 403
    assert (await client.get(f"{ADMIN_API}/stats")).status_code == 403


async def test_missing_credentials_are_rejected(client):
    app.dependency_overrides.pop(get_current_user)

    assert (await client.get(f"{ADMIN_API}/stats")).status_code == 401

    response = await client.get(f"{ADMIN_API}/stats", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


async def test_bearer_and_cookie_tokens_are_accepted(client):
    app.dependency_overrides.pop(get_current_user)
    token = create_access_token("admin-9", "admin")

    response = await client.get(f"{ADMIN_API}/stats", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200

    client.cookies.set("access_token", token)
    assert (await client.get(f"{ADMIN_API}/stats")).status_code == 200


# =============================================================================
# Creator views
# =============================================================================


async def test_creator_earnings_history_is_paginated_newest_first(client, creator, current_user):
    assert (await issue(client, total_amount=1000, days=10)).status_code == 201

    current_user.user = AuthenticatedUser(id="42", role="creator")
    response = await client.get("/api/creator/earnings-history", params={"pageSize": 4})

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 1, "pageSize": 4, "total": 10, "totalPages": 3}
    assert [item["day_number"] for item in body["items"]] == [10, 9, 8, 7]
    assert all(item["status"] == "pending" for item in body["items"])
    assert body["items"][0]["total_amount"] == 1000


async def test_admin_can_filter_history_by_status(client, creator, store, ledger):
    await issue_due_now(store, days=3)
    await client.post(f"{ADMIN_API}/process-payouts")

    completed = await client.get(f"{ADMIN_API}/users/42/earnings-history", params={"status": "completed"})
    pending = await client.get(f"{ADMIN_API}/users/42/earnings-history", params={"status": "pending"})

    assert completed.json()["pagination"]["total"] == 3
    assert all(item["transaction_id"] for item in completed.json()["items"])
    assert pending.json()["items"] == []


async def test_eligible_plans_for_creator(client, creator):
    for plan in (
        {"name": "Gold", "trigger_type": "workflow_threshold", "workflow_threshold": 10, "amount_value": "50"},
        {"name": "Platinum", "trigger_type": "workflow_threshold", "workflow_threshold": 50},
        {"name": "Spot bonus", "trigger_type": "manual"},
        {"name": "Retired", "trigger_type": "manual", "status": "inactive"},
    ):
        assert (await client.post(f"{ADMIN_API}/plans", json=plan)).status_code == 201

    response = await client.get(f"{ADMIN_API}/users/42/eligible-plans")

    assert response.status_code == 200
    body = response.json()
    assert body["creatorWorkflowCount"] == 12
    assert [p["name"] for p in body["plans"]] == ["Gold", "Spot bonus"]
    assert all(p["eligibility_reason"] for p in body["plans"])


async def test_creator_list_shows_commission_totals(client, creator, make_creator, store):
    await make_creator("43")
    await make_creator("7", role="admin")
    await issue_due_now(store, total=300, days=3)
    await issue(client, total_amount=1000, days=10)
    await client.post(f"{ADMIN_API}/process-payouts")
    await client.put(f"{ADMIN_API}/users/43/status", json={"is_active": False})

    response = await client.get(f"{ADMIN_API}/users")

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"]["total"] == 2
    by_id = {item["id"]: item for item in body["items"]}
    assert set(by_id) == {"42", "43"}
    assert by_id["42"]["record_count"] == 2
    assert by_id["42"]["total_issued_amount"] == 1300
    assert by_id["42"]["paid_amount"] == 300
    assert by_id["42"]["workflow_count"] == 12
    assert by_id["43"]["record_count"] == 0
    assert by_id["43"]["commission_active"] is False

    searched = (await client.get(f"{ADMIN_API}/users", params={"search": "USER43"})).json()
    assert [item["id"] for item in searched["items"]] == ["43"]

    admins = (await client.get(f"{ADMIN_API}/users", params={"role": "admin"})).json()
    assert [item["id"] for item in admins["items"]] == ["7"]


async def test_eligible_plans_for_unknown_user_is_404(client):
    assert (await client.get(f"{ADMIN_API}/users/nobody/eligible-plans")).status_code == 404


# =============================================================================
# Payout administration
# =============================================================================


async def test_suspended_creator_is_skipped_until_resumed(client, creator, store, ledger):
    await issue_due_now(store, days=2)

    response = await client.put(f"{ADMIN_API}/users/42/status", json={"is_active": False})
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert response.json()["deactivated_at"] is not None

    run = await client.post(f"{ADMIN_API}/process-payouts")
    assert run.json()["due"] == 0
    assert ledger.calls == []

    await client.put(f"{ADMIN_API}/users/42/status", json={"is_active": True})
    run = await client.post(f"{ADMIN_API}/process-payouts")
    assert run.json()["completed"] == 2
    assert len(ledger.calls) == 2


async def test_cancel_record_stops_pending_entries(client, creator):
    record_id = (await issue(client)).json()["commission_record_id"]

    response = await client.put(f"{ADMIN_API}/records/{record_id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"record_id": record_id, "cancelled_entries": 10}

    detail = (await client.get(f"{ADMIN_API}/records/{record_id}")).json()
    assert detail["progress"]["status"] == "cancelled"
    assert detail["progress"]["cancelled_entries"] == 10
    assert detail["progress"]["failed_entries"] == 0
    assert detail["progress"]["remaining_amount"] == 1000
    assert all(e["status"] == "failed" and e["failure_reason"] == "cancelled" for e in detail["entries"])

    again = await client.put(f"{ADMIN_API}/records/{record_id}/cancel")
    assert again.json()["cancelled_entries"] == 0


async def test_unknown_record_is_404(client):
    assert (await client.get(f"{ADMIN_API}/records/missing")).status_code == 404
    assert (await client.put(f"{ADMIN_API}/records/missing/cancel")).status_code == 404


async def test_records_list_shows_progress(client, creator, make_creator, store):
    await make_creator("43")
    await issue_due_now(store, days=3)
    await issue(client, user_id="43", total_amount=500, days=5)
    await client.post(f"{ADMIN_API}/process-payouts")

    everything = (await client.get(f"{ADMIN_API}/records")).json()
    assert everything["pagination"]["total"] == 2

    mine = (await client.get(f"{ADMIN_API}/records", params={"user_id": "42"})).json()
    assert len(mine["items"]) == 1
    progress = mine["items"][0]["progress"]
    assert progress["status"] == "completed"
    assert progress["paid_amount"] == 300
    assert progress["remaining_amount"] == 0


async def test_retry_failed_entry(client, creator, store, ledger):
    record = await issue_due_now(store, total=100, days=1)
    ledger.errors = [WalletLedgerRejectedError("wallet frozen", status_code=409)]
    await client.post(f"{ADMIN_API}/process-payouts")

    entry = (await client.get(f"{ADMIN_API}/records/{record.id}")).json()["entries"][0]
    assert entry["status"] == "failed"
    assert entry["failure_reason"] == "rejected: wallet frozen"

    retried = await client.put(f"{ADMIN_API}/entries/{entry['id']}/retry")
    assert retried.status_code == 200
    assert retried.json()["status"] == "pending"

    run = await client.post(f"{ADMIN_API}/process-payouts")
    assert run.json()["completed"] == 1


async def test_retry_refuses_entries_that_are_not_failed(client, creator):
    record_id = (await issue(client, days=2, total_amount=20)).json()["commission_record_id"]
    entry_id = (await client.get(f"{ADMIN_API}/records/{record_id}")).json()["entries"][0]["id"]

    assert (await client.put(f"{ADMIN_API}/entries/{entry_id}/retry")).status_code == 409

    await client.put(f"{ADMIN_API}/records/{record_id}/cancel")
    assert (await client.put(f"{ADMIN_API}/entries/{entry_id}/retry")).status_code == 409
    assert (await client.put(f"{ADMIN_API}/entries/missing/retry")).status_code == 404


async def test_stats_summarise_payouts(client, creator, store):
    await issue_due_now(store, total=300, days=3)
    await issue(client, total_amount=1000, days=10)
    await client.post(f"{ADMIN_API}/process-payouts")
    await client.put(f"{ADMIN_API}/users/43/status", json={"is_active": False})

    stats = (await client.get(f"{ADMIN_API}/stats")).json()

    assert stats["total_records"] == 2
    assert stats["total_issued_amount"] == 1300
    assert stats["paid_amount"] == 300
    assert stats["pending_amount"] == 1000
    assert stats["entry_counts"]["completed"] == 3
    assert stats["entry_counts"]["pending"] == 10
    assert stats["failed_count"] == 0
    assert stats["suspended_users"] == 1


async def test_stale_sweep_endpoint(client):
    response = await client.post(f"{ADMIN_API}/sweep-stale-claims")

    assert response.status_code == 200
    assert response.json() == {"reclaimed": 0}


# =============================================================================
# Plans
# =============================================================================


async def test_plan_crud(client):
    created = await client.post(
        f"{ADMIN_API}/plans",
        json={"name": "Launch bonus", "description": "First month", "amount_value": "25.00"},
    )
    assert created.status_code == 201
    plan = created.json()
    assert plan["trigger_type"] == "manual"
    assert plan["status"] == "active"
    assert plan["created_by"] == "admin-1"

    fetched = await client.get(f"{ADMIN_API}/plans/{plan['id']}")
    assert fetched.json()["name"] == "Launch bonus"

    updated = await client.put(f"{ADMIN_API}/plans/{plan['id']}", json={"name": "Launch week bonus"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Launch week bonus"
    assert updated.json()["description"] == "First month"

    listed = (await client.get(f"{ADMIN_API}/plans", params={"status": "active"})).json()
    assert [p["id"] for p in listed["items"]] == [plan["id"]]

    assert (await client.delete(f"{ADMIN_API}/plans/{plan['id']}")).status_code == 204
    assert (await client.get(f"{ADMIN_API}/plans/{plan['id']}")).status_code == 404


async def test_threshold_plan_needs_threshold(client):
    response = await client.post(f"{ADMIN_API}/plans", json={"name": "Broken", "trigger_type": "workflow_threshold"})

    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "InvalidPlan"


async def test_plan_in_use_cannot_be_deleted_or_repriced(client, creator):
    plan_id = (await client.post(f"{ADMIN_API}/plans", json={"name": "Referral", "amount_value": "10"})).json()["id"]
    assert (await issue(client, source_plan_id=plan_id)).status_code == 201

    assert (await client.delete(f"{ADMIN_API}/plans/{plan_id}")).status_code == 409

    repriced = await client.put(f"{ADMIN_API}/plans/{plan_id}", json={"amount_value": "20"})
    assert repriced.status_code == 400
    assert repriced.json()["detail"]["reason"] == "PlanInUse"

    deactivated = await client.put(f"{ADMIN_API}/plans/{plan_id}", json={"status": "inactive"})
    assert deactivated.status_code == 200
    assert deactivated.json()["status"] == "inactive"


async def test_missing_plan_is_404(client):
    assert (await client.get(f"{ADMIN_API}/plans/missing")).status_code == 404
    assert (await client.put(f"{ADMIN_API}/plans/missing", json={"name": "x"})).status_code == 404
    assert (await client.delete(f"{ADMIN_API}/plans/missing")).status_code == 404


async def test_specific_plan_is_offered_only_to_assigned_creators(client, creator, make_creator):
    await make_creator("43")
    plan = (
        await client.post(f"{ADMIN_API}/plans", json={"name": "Invite only", "target_user_type": "specific"})
    ).json()
    assert plan["target_user_type"] == "specific"

    eligible = (await client.get(f"{ADMIN_API}/users/42/eligible-plans")).json()
    assert eligible["plans"] == []

    assigned = await client.post(f"{ADMIN_API}/plans/{plan['id']}/assign", json={"user_id": "42"})
    assert assigned.status_code == 201
    assert assigned.json()["user_id"] == "42"
    assert assigned.json()["assigned_by"] == "admin-1"

    eligible = (await client.get(f"{ADMIN_API}/users/42/eligible-plans")).json()
    assert [p["name"] for p in eligible["plans"]] == ["Invite only"]
    assert (await client.get(f"{ADMIN_API}/users/43/eligible-plans")).json()["plans"] == []

    assignees = (await client.get(f"{ADMIN_API}/users", params={"plan_id": plan["id"]})).json()
    assert [item["id"] for item in assignees["items"]] == ["42"]

    again = await client.post(f"{ADMIN_API}/plans/{plan['id']}/assign", json={"user_id": "42"})
    assert again.status_code == 409

    assert (await client.delete(f"{ADMIN_API}/plans/{plan['id']}/users/42")).status_code == 204
    assert (await client.delete(f"{ADMIN_API}/plans/{plan['id']}/users/42")).status_code == 404
    assert (await client.get(f"{ADMIN_API}/users/42/eligible-plans")).json()["plans"] == []


async def test_assignment_to_missing_plan_or_creator_is_404(client, creator):
    plan_id = (await client.post(f"{ADMIN_API}/plans", json={"name": "Invite only"})).json()["id"]

    assert (await client.post(f"{ADMIN_API}/plans/missing/assign", json={"user_id": "42"})).status_code == 404
    assert (await client.post(f"{ADMIN_API}/plans/{plan_id}/assign", json={"user_id": "nobody"})).status_code == 404


async def test_healthz(client):
    response = await client.get("/api/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
