from sqlalchemy import func, select

from stockledger.core.security import create_access_token
from stockledger.models.audit_log import AuditLog
from stockledger.models.ledger import LedgerEntry


def _auth_headers(role: str = "admin", subject: str | None = None) -> dict[str, str]:
    token = create_access_token(subject or f"{role}-user", role=role)
    return {"Authorization": f"Bearer {token}"}


def _bootstrap(client) -> dict[str, str]:
    ensure_res = client.post("/locations/ensure-core", headers=_auth_headers("admin"))
    assert ensure_res.status_code == 200, ensure_res.text
    locations = {row["kind"]: row["id"] for row in ensure_res.json()["locations"]}

    vehicle_res = client.post(
        "/locations/owners",
        json={"kind": "vehicle", "owner_reference": "vehicle-7", "display_name": "Van 7"},
        headers=_auth_headers("manager"),
    )
    assert vehicle_res.status_code == 200, vehicle_res.text
    locations["vehicle"] = vehicle_res.json()["location"]["id"]

    item_res = client.post(
        "/items",
        json={"name": "15A breaker", "sku": "cb-15a"},
        headers=_auth_headers("manager"),
    )
    assert item_res.status_code == 200, item_res.text
    assert item_res.json()["sku"] == "CB-15A"
    locations["item"] = item_res.json()["id"]
    return locations


def test_requests_without_token_are_rejected(test_context):
    client, _ = test_context

    res = client.get("/locations")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "unauthorized"


def test_technicians_cannot_run_admin_operations(test_context):
    client, _ = test_context

    res = client.post("/locations/ensure-core", headers=_auth_headers("technician"))
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "forbidden"


def test_ensure_core_is_idempotent_over_http(test_context):
    client, _ = test_context

    missing = client.get("/integrity/core-locations", headers=_auth_headers("technician"))
    assert missing.status_code == 409
    assert missing.json()["error"]["code"] == "missing_core_location"
    assert missing.json()["error"]["context"]["missing_kinds"] == ["warehouse", "loading_bay"]

    first = client.post("/locations/ensure-core", headers=_auth_headers("admin"))
    second = client.post("/locations/ensure-core", headers=_auth_headers("admin"))
    assert first.json()["created_kinds"] == ["warehouse", "loading_bay"]
    assert second.json()["created_kinds"] == []
    assert sorted(row["kind"] for row in second.json()["locations"]) == ["loading_bay", "warehouse"]

    ok = client.get("/integrity/core-locations", headers=_auth_headers("technician"))
    assert ok.status_code == 200
    assert ok.json()["ok"] is True


def test_movement_flow_and_replay(test_context):
    client, session_local = test_context
    ids = _bootstrap(client)
    tech = _auth_headers("technician", "tech-42")

    adjust = client.post(
        "/movements/adjust",
        json={
            "item_id": ids["item"],
            "location_id": ids["warehouse"],
            "delta": 10,
            "note": "Opening count",
            "idempotency_key": "K1",
        },
        headers=tech,
    )
    assert adjust.status_code == 200, adjust.text
    assert adjust.json()["entries"][0]["actor"] == "tech-42"

    transfer_payload = {
        "item_id": ids["item"],
        "from_location_id": ids["warehouse"],
        "to_location_id": ids["vehicle"],
        "qty": 4,
        "idempotency_key": "K2",
    }
    transfer = client.post("/movements/transfer", json=transfer_payload, headers=tech)
    assert transfer.status_code == 200, transfer.text
    body = transfer.json()
    assert body["replayed"] is False
    assert {row["location_id"]: row["quantity_on_hand"] for row in body["balances"]} == {
        ids["warehouse"]: 6,
        ids["vehicle"]: 4,
    }

    replay = client.post("/movements/transfer", json=transfer_payload, headers=tech)
    assert replay.status_code == 200, replay.text
    assert replay.json()["replayed"] is True
    assert [row["id"] for row in replay.json()["entries"]] == [row["id"] for row in body["entries"]]

    warehouse_balance = client.get(f"/balances/{ids['item']}/{ids['warehouse']}", headers=tech)
    assert warehouse_balance.json()["quantity_on_hand"] == 6
    item_balances = client.get("/balances", params={"item_id": ids["item"]}, headers=tech)
    assert item_balances.json()["total_on_hand"] == 10

    history = client.get("/movements", params={"item_id": ids["item"]}, headers=tech)
    assert [row["reason"] for row in history.json()["items"]] == ["adjustment", "transfer_out", "transfer_in"]

    db = session_local()
    try:
        assert db.execute(select(func.count(LedgerEntry.id))).scalar_one() == 3
    finally:
        db.close()


def test_ledger_errors_render_with_context(test_context):
    client, session_local = test_context
    ids = _bootstrap(client)
    tech = _auth_headers("technician")

    short = client.post(
        "/movements/transfer",
        json={
            "item_id": ids["item"],
            "from_location_id": ids["warehouse"],
            "to_location_id": ids["vehicle"],
            "qty": 1,
            "idempotency_key": "K-short",
        },
        headers=tech,
    )
    assert short.status_code == 400
    error = short.json()["error"]
    assert error["code"] == "insufficient_stock"
    assert error["context"]["location_id"] == ids["warehouse"]
    assert error["context"]["on_hand"] == 0
    assert error["context"]["requested"] == 1
    assert short.headers["X-Request-ID"] == error["request_id"]

    client.post(
        "/movements/adjust",
        json={"item_id": ids["item"], "location_id": ids["warehouse"], "delta": 3, "idempotency_key": "K1"},
        headers=tech,
    )
    conflict = client.post(
        "/movements/adjust",
        json={"item_id": ids["item"], "location_id": ids["warehouse"], "delta": 4, "idempotency_key": "K1"},
        headers=tech,
    )
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "idempotency_conflict"

    override = client.post(
        "/movements/adjust",
        json={
            "item_id": ids["item"],
            "location_id": ids["warehouse"],
            "delta": -5,
            "idempotency_key": "K-neg",
            "allow_negative": True,
        },
        headers=tech,
    )
    assert override.status_code == 403

    zero = client.post(
        "/movements/adjust",
        json={"item_id": ids["item"], "location_id": ids["warehouse"], "delta": 0, "idempotency_key": "K0"},
        headers=tech,
    )
    assert zero.status_code == 422
    assert zero.json()["error"]["code"] == "validation_error"

    missing_item = client.get("/items/does-not-exist", headers=tech)
    assert missing_item.status_code == 404
    assert missing_item.json()["error"]["code"] == "item_not_found"

    db = session_local()
    try:
        assert db.execute(select(func.count(LedgerEntry.id))).scalar_one() == 1
    finally:
        db.close()


def test_receive_and_consume_over_http(test_context):
    client, _ = test_context
    ids = _bootstrap(client)
    tech = _auth_headers("technician")

    receipt_payload = {
        "po_id": "PO-2210",
        "lines": [{"line_id": "1", "item_id": ids["item"], "qty": 24}],
    }
    receipt = client.post("/movements/receive", json=receipt_payload, headers=tech)
    assert receipt.status_code == 200, receipt.text
    assert receipt.json()["balances"][0]["location_id"] == ids["loading_bay"]
    assert receipt.json()["balances"][0]["quantity_on_hand"] == 24

    replay = client.post("/movements/receive", json=receipt_payload, headers=tech)
    assert replay.json()["replayed"] is True
    assert replay.json()["balances"][0]["quantity_on_hand"] == 24

    client.post(
        "/movements/transfer",
        json={
            "item_id": ids["item"],
            "from_location_id": ids["loading_bay"],
            "to_location_id": ids["vehicle"],
            "qty": 5,
            "idempotency_key": "load-van-7",
        },
        headers=tech,
    )
    consume = client.post(
        "/movements/consume",
        json={
            "item_id": ids["item"],
            "location_id": ids["vehicle"],
            "project_id": "job-1042",
            "qty": 2,
            "idempotency_key": "use-job-1042",
        },
        headers=tech,
    )
    assert consume.status_code == 200, consume.text
    assert consume.json()["entries"][0]["reference"] == "job-1042"
    assert consume.json()["balances"][0]["quantity_on_hand"] == 3

    by_project = client.get("/movements", params={"reference": "job-1042"}, headers=tech)
    assert len(by_project.json()["items"]) == 1


def test_baseline_flow_over_http(test_context):
    client, session_local = test_context
    ids = _bootstrap(client)
    admin = _auth_headers("admin", "admin-1")

    status_before = client.get("/baseline/status", headers=_auth_headers("technician"))
    assert status_before.json()["state"] == "NOT_RUN"

    proposal = client.post(
        "/baseline/propose",
        json={
            "stocktakeCounts": [
                {"item_id": ids["item"], "location_id": ids["warehouse"], "countedQty": 12},
                {"item_id": ids["item"], "location_id": ids["vehicle"], "counted_qty": 0},
            ]
        },
        headers=_auth_headers("manager"),
    )
    assert proposal.status_code == 200, proposal.text
    changes = proposal.json()["changes"]
    assert changes == [
        {
            "item_id": ids["item"],
            "location_id": ids["warehouse"],
            "counted_qty": 12,
            "current_qty": 0,
            "delta": 12,
        }
    ]

    forbidden = client.post("/baseline/execute", json={"changes": changes}, headers=_auth_headers("manager"))
    assert forbidden.status_code == 403

    executed = client.post("/baseline/execute", json={"changes": changes}, headers=admin)
    assert executed.status_code == 200, executed.text
    assert executed.json()["run"]["sequence"] == 1
    assert executed.json()["run"]["executed_by"] == "admin-1"

    again = client.post("/baseline/execute", json={"changes": changes}, headers=admin)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "already_executed"

    no_reason = client.post(
        "/baseline/execute",
        json={"changes": changes, "allow_rerun": True},
        headers=admin,
    )
    assert no_reason.status_code == 400
    assert no_reason.json()["error"]["code"] == "missing_override_reason"

    status_after = client.get("/baseline/status", headers=_auth_headers("technician"))
    assert status_after.json()["state"] == "RUN"
    assert len(status_after.json()["runs"]) == 1

    db = session_local()
    try:
        assert db.execute(select(func.count(LedgerEntry.id))).scalar_one() == 1
        actions = db.execute(select(AuditLog.action)).scalars().all()
        assert "baseline.execute" in actions
    finally:
        db.close()


def test_integrity_endpoints(test_context):
    client, _ = test_context
    ids = _bootstrap(client)
    admin = _auth_headers("admin")

    report = client.get("/integrity/report", headers=_auth_headers("manager"))
    assert report.status_code == 200, report.text
    assert report.json()["status"] == "PASS"
    assert report.json()["summary"]["vehicle_location_count"] == 1

    dry_run = client.post("/integrity/repair-duplicates", params={"dry_run": True}, headers=admin)
    assert dry_run.status_code == 200
    assert dry_run.json() == {"dry_run": True, "planned": [], "results": []}

    rebuilt = client.post("/integrity/rebuild-projection", headers=admin)
    assert rebuilt.status_code == 200
    assert rebuilt.json() == {"repaired": []}

    dedup = client.post(
        "/locations/deduplicate",
        json={"kind": "vehicle", "owner_reference": "vehicle-7"},
        headers=admin,
    )
    assert dedup.status_code == 200, dedup.text
    assert dedup.json()["changed"] is False
    assert dedup.json()["kept_location_id"] == ids["vehicle"]

    retire = client.post(
        "/locations/owners/retire",
        json={"kind": "vehicle", "owner_reference": "vehicle-7"},
        headers=admin,
    )
    assert retire.status_code == 200, retire.text
    assert retire.json()["retired"][0]["is_active"] is False

    listed = client.get("/locations", params={"kind": "vehicle"}, headers=_auth_headers("technician"))
    assert listed.json()["items"] == []
    with_inactive = client.get(
        "/locations",
        params={"kind": "vehicle", "include_inactive": True},
        headers=_auth_headers("technician"),
    )
    assert with_inactive.json()["pagination"]["total"] == 1
