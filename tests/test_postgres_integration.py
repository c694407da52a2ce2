import os
import threading
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker

from stockledger.core.errors import InsufficientStock
from stockledger.core.id_utils import generate_shortuuid
from stockledger.db.base import Base
from stockledger.models.item import StockItem
from stockledger.services import balance_projector, location_registry, movement_service


def _test_pg_url() -> str | None:
    return os.getenv("TEST_POSTGRES_DATABASE_URL")


@pytest.mark.integration
def test_postgres_connection_and_core_tables():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_engine(url, pool_pre_ping=True)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1

    Base.metadata.create_all(bind=engine)
    table_names = set(inspect(engine).get_table_names())
    assert "stock_locations" in table_names
    assert "ledger_entries" in table_names
    assert "balances" in table_names


@pytest.mark.integration
def test_concurrent_transfers_serialize_on_balance_row():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_engine(url, pool_pre_ping=True, pool_size=5)
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_local()
    try:
        location_registry.ensure_core_locations(setup)
        warehouse = location_registry.resolve_active_location(setup, kind="warehouse")
        item = StockItem(id=generate_shortuuid(), name="Concurrency breaker")
        setup.add(item)
        setup.flush()
        targets = []
        for owner in (f"van-{generate_shortuuid()}", f"van-{generate_shortuuid()}"):
            van, _ = location_registry.ensure_owner_location(setup, kind="vehicle", owner_reference=owner)
            targets.append(van.id)
        movement_service.adjust(
            setup,
            item_id=item.id,
            location_id=warehouse.id,
            delta=5,
            idempotency_key=f"seed-{item.id}",
            actor="integration",
        )
        setup.commit()
        item_id, warehouse_id = item.id, warehouse.id
    finally:
        setup.close()

    barrier = threading.Barrier(len(targets))
    outcomes: list[str] = []
    lock = threading.Lock()

    def _move(target_id: str) -> None:
        db = session_local()
        try:
            barrier.wait()
            movement_service.transfer(
                db,
                item_id=item_id,
                from_location_id=warehouse_id,
                to_location_id=target_id,
                qty=4,
                idempotency_key=f"race-{target_id}",
                actor="integration",
            )
            db.commit()
            result = "ok"
        except InsufficientStock:
            db.rollback()
            result = "insufficient"
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_move, args=(target_id,)) for target_id in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["insufficient", "ok"]
    check = session_local()
    try:
        assert balance_projector.balance_of(check, item_id=item_id, location_id=warehouse_id) == 1
        assert balance_projector.total_on_hand(check, item_id) == 5
    finally:
        check.close()


@pytest.mark.integration
def test_concurrent_first_use_creates_one_owner_location():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_engine(url, pool_pre_ping=True, pool_size=5)
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    owner_reference = f"van-{generate_shortuuid()}"

    workers = 2
    barrier = threading.Barrier(workers)
    created_flags: list[bool] = []
    lock = threading.Lock()

    def _first_use() -> None:
        db = session_local()
        try:
            barrier.wait()
            location_registry.ensure_core_locations(db, actor="integration")
            _, created = location_registry.ensure_owner_location(
                db, kind="vehicle", owner_reference=owner_reference, actor="integration"
            )
            db.commit()
        finally:
            db.close()
        with lock:
            created_flags.append(created)

    threads = [threading.Thread(target=_first_use) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(created_flags) == [False, True]
    check = session_local()
    try:
        vans = location_registry.active_locations(check, kind="vehicle", owner_reference=owner_reference)
        assert len(vans) == 1
        assert len(location_registry.active_locations(check, kind="warehouse", owner_reference=None)) == 1
        assert len(location_registry.active_locations(check, kind="loading_bay", owner_reference=None)) == 1
    finally:
        check.close()


@pytest.mark.integration
def test_alembic_upgrade_downgrade_smoke():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run migration smoke tests.")
    if os.getenv("ALLOW_DESTRUCTIVE_MIGRATION_TESTS") != "1":
        pytest.skip("Set ALLOW_DESTRUCTIVE_MIGRATION_TESTS=1 for downgrade smoke test.")

    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))

    previous_database_url = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = url
    try:
        command.upgrade(alembic_cfg, "head")
        command.downgrade(alembic_cfg, "base")
        command.upgrade(alembic_cfg, "head")
    finally:
        if previous_database_url is None:
            os.environ.pop("DATABASE_URL", None)
        else:
            os.environ["DATABASE_URL"] = previous_database_url
