"""Initial schema: agents, quotas, corporate agreements, pool accounts, orders, price monitors

Revision ID: skyhotel_001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "skyhotel_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- system_users ---
    op.create_table(
        "system_users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), server_default="USER"),
        sa.Column("status", sa.String(20), server_default="ACTIVE"),
        sa.Column("last_login_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- corporate_agreements ---
    op.create_table(
        "corporate_agreements",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("enabled", sa.Boolean, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- agent_channel_quotas ---
    op.create_table(
        "agent_channel_quotas",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("allowed", sa.Boolean, server_default="false"),
        sa.Column("daily_limit", sa.Integer, server_default="0"),
        sa.Column("quota_balance", sa.Integer, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "channel", name="uq_agent_channel"),
    )

    # --- agent_corporate_grants ---
    op.create_table(
        "agent_corporate_grants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agreement_id", UUID(as_uuid=True), sa.ForeignKey("corporate_agreements.id", ondelete="CASCADE"), nullable=False),
        sa.Column("daily_limit", sa.Integer),
        sa.Column("quota_balance", sa.Integer),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "agreement_id", name="uq_agent_agreement"),
    )

    # --- pool_accounts ---
    op.create_table(
        "pool_accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("phone", sa.String(30), nullable=False, unique=True),
        sa.Column("remark", sa.Text),
        sa.Column("is_online", sa.Boolean, server_default="true"),
        sa.Column("is_new_user", sa.Boolean, server_default="false"),
        sa.Column("is_platinum", sa.Boolean, server_default="false"),
        sa.Column("points", sa.Integer, server_default="0"),
        sa.Column("breakfast_coupons", sa.Integer, server_default="0"),
        sa.Column("upgrade_coupons", sa.Integer, server_default="0"),
        sa.Column("late_checkout_coupons", sa.Integer, server_default="0"),
        sa.Column("slippers_coupons", sa.Integer, server_default="0"),
        sa.Column("daily_orders_left", sa.Integer, server_default="0"),
        sa.Column("last_execution", JSONB, server_default="{}"),
        sa.Column("last_result", JSONB, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "pool_account_agreements",
        sa.Column("pool_account_id", UUID(as_uuid=True), sa.ForeignKey("pool_accounts.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("agreement_id", UUID(as_uuid=True), sa.ForeignKey("corporate_agreements.id", ondelete="CASCADE"), primary_key=True),
    )

    # --- order_groups ---
    op.create_table(
        "order_groups",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("biz_order_no", sa.String(40), nullable=False, unique=True),
        sa.Column("chain_id", sa.String(50), nullable=False),
        sa.Column("hotel_name", sa.String(300), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("corporate_agreement_id", UUID(as_uuid=True), sa.ForeignKey("corporate_agreements.id")),
        sa.Column("customer_name", sa.String(100), nullable=False),
        sa.Column("contact_phone", sa.String(30)),
        sa.Column("check_in_date", sa.Date, nullable=False),
        sa.Column("check_out_date", sa.Date, nullable=False),
        sa.Column("total_nights", sa.Integer, nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="CNY"),
        sa.Column("status", sa.String(20), server_default="PROCESSING"),
        sa.Column("payment_status", sa.String(20), server_default="UNPAID"),
        sa.Column("creator_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id"), nullable=False),
        sa.Column("creator_name", sa.String(100), nullable=False),
        sa.Column("remark", sa.Text),
        sa.Column("business_date", sa.Date, nullable=False),
        sa.Column("split_count", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_order_groups_daily", "order_groups", ["creator_id", "channel", "business_date"])

    # --- order_split_items ---
    op.create_table(
        "order_split_items",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("group_id", UUID(as_uuid=True), sa.ForeignKey("order_groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider_order_id", sa.String(100)),
        sa.Column("room_type", sa.String(200), nullable=False),
        sa.Column("room_count", sa.Integer, server_default="1"),
        sa.Column("rate_code", sa.String(100)),
        sa.Column("account_id", UUID(as_uuid=True), sa.ForeignKey("pool_accounts.id", ondelete="SET NULL")),
        sa.Column("account_phone", sa.String(30)),
        sa.Column("check_in_date", sa.Date, nullable=False),
        sa.Column("check_out_date", sa.Date, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), server_default="PROCESSING"),
        sa.Column("payment_status", sa.String(20), server_default="UNPAID"),
        sa.Column("execution_status", sa.String(20), nullable=False),
        sa.Column("split_index", sa.Integer, nullable=False),
        sa.Column("split_total", sa.Integer, nullable=False),
        sa.Column("payment_link", sa.Text),
        sa.Column("detail_url", sa.Text),
        sa.Column("failure_code", sa.String(50)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("last_error", sa.Text),
        sa.Column("submit_attempts", sa.Integer, server_default="0"),
        sa.Column("submitting_since", sa.DateTime(timezone=True)),
        sa.Column("daily_slot_reserved", sa.Boolean, server_default="false"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_split_items_execution", "order_split_items", ["execution_status"])

    # --- quota_ledger_entries ---
    op.create_table(
        "quota_ledger_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("agreement_id", UUID(as_uuid=True), sa.ForeignKey("corporate_agreements.id")),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("order_group_id", UUID(as_uuid=True), sa.ForeignKey("order_groups.id", ondelete="SET NULL")),
        sa.Column("actor_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id")),
        sa.Column("note", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_quota_ledger_user", "quota_ledger_entries", ["user_id", "created_at"])

    # --- system_config ---
    op.create_table(
        "system_config",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("site_name", sa.String(100), server_default="SkyHotel Agent Pro"),
        sa.Column("support_contact", sa.String(200), server_default=""),
        sa.Column("maintenance_mode", sa.Boolean, server_default="false"),
        sa.Column("maintenance_message", sa.Text, server_default=""),
        sa.Column("enable_new_user", sa.Boolean, server_default="true"),
        sa.Column("enable_platinum", sa.Boolean, server_default="true"),
        sa.Column("enable_corporate", sa.Boolean, server_default="true"),
        sa.Column("disabled_corporate_names", JSONB, server_default="[]"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- price_monitor_tasks ---
    op.create_table(
        "price_monitor_tasks",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chain_id", sa.String(50), nullable=False),
        sa.Column("hotel_name", sa.String(300), nullable=False),
        sa.Column("room_type", sa.String(200), nullable=False),
        sa.Column("check_in", sa.Date, nullable=False),
        sa.Column("check_out", sa.Date, nullable=False),
        sa.Column("target_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("current_price", sa.Numeric(10, 2), server_default="0"),
        sa.Column("has_inventory", sa.Boolean, server_default="false"),
        sa.Column("status", sa.String(20), server_default="MONITORING"),
        sa.Column("history_daily", JSONB, server_default="[]"),
        sa.Column("history_intraday", JSONB, server_default="[]"),
        sa.Column("day_candle", JSONB),
        sa.Column("note", sa.Text, server_default=""),
        sa.Column("last_snapshot_at", sa.DateTime(timezone=True)),
        sa.Column("reached_at", sa.DateTime(timezone=True)),
        sa.Column("reached_count", sa.Integer, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_price_monitors_user", "price_monitor_tasks", ["user_id"])
    op.create_index("idx_price_monitors_status", "price_monitor_tasks", ["status"])

    # --- hotel_blacklist_records ---
    op.create_table(
        "hotel_blacklist_records",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("chain_id", sa.String(50), nullable=False),
        sa.Column("hotel_name", sa.String(300), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("tags", JSONB, server_default="[]"),
        sa.Column("status", sa.String(10), server_default="ACTIVE"),
        sa.Column("reported_by", sa.String(100), nullable=False),
        sa.Column("reporter_id", UUID(as_uuid=True), sa.ForeignKey("system_users.id", ondelete="SET NULL")),
        sa.Column("source", sa.String(50), server_default="manual"),
        sa.Column("reported_on", sa.Date, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_blacklist_chain", "hotel_blacklist_records", ["chain_id"])
    op.create_index("idx_blacklist_status", "hotel_blacklist_records", ["status"])


def downgrade() -> None:
    op.drop_table("hotel_blacklist_records")
    op.drop_table("price_monitor_tasks")
    op.drop_table("system_config")
    op.drop_table("quota_ledger_entries")
    op.drop_table("order_split_items")
    op.drop_table("order_groups")
    op.drop_table("pool_account_agreements")
    op.drop_table("pool_accounts")
    op.drop_table("agent_corporate_grants")
    op.drop_table("agent_channel_quotas")
    op.drop_table("corporate_agreements")
    op.drop_table("system_users")
