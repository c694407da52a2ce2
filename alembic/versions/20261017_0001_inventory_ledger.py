"""inventory ledger tables

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

entry_id_type = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "stock_locations"):
        op.create_table(
            "stock_locations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("owner_reference", sa.String(length=64), nullable=True),
            sa.Column("display_name", sa.String(length=120), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deactivation_reason", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(
                "kind IN ('warehouse', 'loading_bay', 'vehicle', 'project')",
                name="ck_stock_locations_kind",
            ),
            sa.CheckConstraint(
                "(kind IN ('vehicle', 'project') AND owner_reference IS NOT NULL) "
                "OR (kind IN ('warehouse', 'loading_bay') AND owner_reference IS NULL)",
                name="ck_stock_locations_owner_reference",
            ),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_stock_locations_kind_owner_active",
            "stock_locations",
            ["kind", "owner_reference", "is_active"],
            unique=False,
        )

    if not _table_exists(inspector, "stock_items"):
        op.create_table(
            "stock_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=True),
            sa.Column("unit", sa.String(length=20), nullable=False, server_default="each"),
            sa.Column("tracks_inventory", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sku"),
        )

    if not _table_exists(inspector, "ledger_entries"):
        op.create_table(
            "ledger_entries",
            sa.Column("id", entry_id_type, autoincrement=True, nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("quantity_delta", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(length=20), nullable=False),
            sa.Column("reference", sa.String(length=120), nullable=True),
            sa.Column("correlation_id", sa.String(length=36), nullable=False),
            sa.Column("note", sa.String(length=255), nullable=True),
            sa.Column("actor", sa.String(length=120), nullable=False),
            sa.Column("idempotency_key", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("quantity_delta <> 0", name="ck_ledger_entries_nonzero_delta"),
            sa.CheckConstraint(
                "reason IN ('adjustment', 'transfer_out', 'transfer_in', 'consumption', 'receipt', 'baseline_seed')",
                name="ck_ledger_entries_reason",
            ),
            sa.ForeignKeyConstraint(["item_id"], ["stock_items.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("idempotency_key"),
        )
        op.create_index("ix_ledger_entries_correlation_id", "ledger_entries", ["correlation_id"], unique=False)
        op.create_index(
            "ix_ledger_entries_item_location_id",
            "ledger_entries",
            ["item_id", "location_id", "id"],
            unique=False,
        )
        op.create_index("ix_ledger_entries_location_id", "ledger_entries", ["location_id", "id"], unique=False)
        op.create_index("ix_ledger_entries_reference", "ledger_entries", ["reference"], unique=False)

    if not _table_exists(inspector, "balances"):
        op.create_table(
            "balances",
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("quantity_on_hand", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("as_of_entry_id", entry_id_type, nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["item_id"], ["stock_items.id"]),
            sa.PrimaryKeyConstraint("item_id", "location_id"),
        )
        op.create_index("ix_balances_location_id", "balances", ["location_id"], unique=False)

    if not _table_exists(inspector, "baseline_seed_runs"):
        op.create_table(
            "baseline_seed_runs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("seed_batch_id", sa.String(length=64), nullable=False),
            sa.Column("executed_by", sa.String(length=120), nullable=False),
            sa.Column("override_reason", sa.String(length=500), nullable=True),
            sa.Column("changes_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("units_delta", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sequence"),
            sa.UniqueConstraint("seed_batch_id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor", sa.String(length=120), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=64), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"], unique=False)
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
        op.create_index("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"], unique=False)
        op.create_index(
            "ix_audit_logs_target_created_at",
            "audit_logs",
            ["target_type", "target_id", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "audit_logs",
        "baseline_seed_runs",
        "balances",
        "ledger_entries",
        "stock_items",
        "stock_locations",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
