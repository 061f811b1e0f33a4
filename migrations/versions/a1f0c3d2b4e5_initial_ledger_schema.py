"""initial ledger schema

Revision ID: a1f0c3d2b4e5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "a1f0c3d2b4e5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _get_inspector():
    conn = op.get_bind()
    return conn, sa.inspect(conn)


def _table_exists(inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    _, inspector = _get_inspector()

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("utorid", sa.String(length=8), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True, unique=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="regular"),
            sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("verified_student", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_suspicious", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_users_utorid", "users", ["utorid"], unique=True)

    if not _table_exists(inspector, "events"):
        op.create_table(
            "events",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("location", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("start_time", sa.DateTime(), nullable=False),
            sa.Column("end_time", sa.DateTime(), nullable=False),
            sa.Column("capacity", sa.Integer(), nullable=True),
            sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("points_remain", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("points_awarded", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("points_remain >= 0", name="ck_events_points_remain_non_negative"),
            sa.CheckConstraint("points_remain <= total_points", name="ck_events_points_remain_within_total"),
        )

    if not _table_exists(inspector, "transfers"):
        op.create_table(
            "transfers",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("sender_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("receiver_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("points", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_transfers_sender_id", "transfers", ["sender_id"])
        op.create_index("ix_transfers_receiver_id", "transfers", ["receiver_id"])
        op.create_index("ix_transfers_created_at", "transfers", ["created_at"])

    if not _table_exists(inspector, "promotions"):
        op.create_table(
            "promotions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("start_time", sa.DateTime(), nullable=False),
            sa.Column("end_time", sa.DateTime(), nullable=False),
            sa.Column("min_spend", sa.Numeric(12, 2), nullable=True),
            sa.Column("rate", sa.Float(), nullable=True),
            sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("manager_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_promotions_start_time", "promotions", ["start_time"])
        op.create_index("ix_promotions_end_time", "promotions", ["end_time"])

    if not _table_exists(inspector, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("points", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="approved"),
            sa.Column("needs_verification", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("spent", sa.Numeric(12, 2), nullable=True),
            sa.Column("remark", sa.Text(), nullable=False, server_default=""),
            sa.Column("related_transaction_id", sa.String(length=36), sa.ForeignKey("transactions.id"), nullable=True),
            sa.Column("related_event_id", sa.String(length=36), sa.ForeignKey("events.id"), nullable=True),
            sa.Column("related_user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("transfer_id", sa.String(length=36), sa.ForeignKey("transfers.id"), nullable=True),
            sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("processed_by", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(
                "(CASE WHEN related_transaction_id IS NULL THEN 0 ELSE 1 END)"
                " + (CASE WHEN related_event_id IS NULL THEN 0 ELSE 1 END)"
                " + (CASE WHEN related_user_id IS NULL THEN 0 ELSE 1 END) <= 1",
                name="ck_transactions_single_related_ref",
            ),
        )
        op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
        op.create_index("ix_transactions_type", "transactions", ["type"])
        op.create_index("ix_transactions_related_event_id", "transactions", ["related_event_id"])
        op.create_index("ix_transactions_created_at", "transactions", ["created_at"])

    if not _table_exists(inspector, "promotion_uses"):
        op.create_table(
            "promotion_uses",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column(
                "promotion_id", sa.String(length=36),
                sa.ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("transaction_id", sa.String(length=36), sa.ForeignKey("transactions.id"), nullable=False),
            sa.Column("is_one_time", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_promotion_uses_user_id", "promotion_uses", ["user_id"])
        op.create_index("ix_promotion_uses_promotion_id", "promotion_uses", ["promotion_id"])
        op.create_index("ix_promotion_uses_transaction_id", "promotion_uses", ["transaction_id"])
        op.create_index(
            "uq_promotion_uses_one_time",
            "promotion_uses",
            ["user_id", "promotion_id"],
            unique=True,
            postgresql_where=sa.text("is_one_time"),
            sqlite_where=sa.text("is_one_time"),
        )

    for table_name, constraint in (
        ("event_guests", "uq_event_guests_event_user"),
        ("event_organizers", "uq_event_organizers_event_user"),
    ):
        if _table_exists(inspector, table_name):
            continue
        op.create_table(
            table_name,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "event_id", sa.String(length=36),
                sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("event_id", "user_id", name=constraint),
        )
        op.create_index(f"ix_{table_name}_event_id", table_name, ["event_id"])
        op.create_index(f"ix_{table_name}_user_id", table_name, ["user_id"])


def downgrade() -> None:
    for table_name in (
        "event_organizers",
        "event_guests",
        "promotion_uses",
        "transactions",
        "promotions",
        "transfers",
        "events",
        "users",
    ):
        op.drop_table(table_name)
