import json
from pathlib import Path

from stockledger.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_ledger_errors_are_documented_with_context():
    schema = app.openapi()
    transfer_responses = schema["paths"]["/movements/transfer"]["post"]["responses"]
    assert {"400", "409"} <= set(transfer_responses)
    error_detail = schema["components"]["schemas"]["ErrorDetailOut"]
    assert "context" in error_detail["properties"]


def test_error_examples_name_the_ledger_errors_each_route_raises():
    schema = app.openapi()
    transfer = schema["paths"]["/movements/transfer"]["post"]["responses"]
    transfer_400 = transfer["400"]["content"]["application/json"]["examples"]
    assert {"insufficient_stock", "invalid_location", "item_not_tracked"} <= set(transfer_400)
    assert transfer_400["insufficient_stock"]["value"]["error"]["code"] == "insufficient_stock"
    assert "idempotency_conflict" in transfer["409"]["content"]["application/json"]["examples"]

    execute_409 = schema["paths"]["/baseline/execute"]["post"]["responses"]["409"]
    assert set(execute_409["content"]["application/json"]["examples"]) == {"already_executed"}

    dedup_400 = schema["paths"]["/locations/deduplicate"]["post"]["responses"]["400"]
    assert dedup_400["content"]["application/json"]["example"]["error"]["code"] == "ledger_error"
