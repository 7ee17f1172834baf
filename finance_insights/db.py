from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from finance_insights.config import SYSTEM_DEFAULT_CURRENCY

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("balance", Numeric(14, 2), nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False, server_default=SYSTEM_DEFAULT_CURRENCY),
    Column("is_default", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

categories = Table(
    "categories",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("color_value", BigInteger, nullable=False),
    Column("icon", String(100)),
    Column("is_system", Boolean, nullable=False, server_default="0"),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3)),
    Column("type", String(20), nullable=False),
    Column("category_id", String(64)),
    Column("account_id", String(36)),
    Column("bill_id", String(36)),
    Column("transaction_date", DateTime, nullable=False),
    Column("is_cleared", Boolean, nullable=False, server_default="1"),
    Column("is_balance_adjustment", Boolean, nullable=False, server_default="0"),
    Column("notes", String(500)),
)

bills = Table(
    "bills",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("type", String(20), nullable=False, server_default="bill"),
    Column("next_due_date", Date),
    Column("reminder_enabled", Boolean, nullable=False, server_default="1"),
    Column("reminder_days_before", Integer, nullable=False, server_default="3"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("category_id", String(64)),
)

recurring_incomes = Table(
    "recurring_incomes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("category_id", String(64), nullable=False),
    Column("frequency", String(20), nullable=False, server_default="monthly"),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("account_id", String(36)),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

bill_notification_profiles = Table(
    "bill_notification_profiles",
    metadata,
    Column("bill_id", String(36), primary_key=True),
    Column("payload", Text, nullable=False),
)

scheduled_notifications = Table(
    "scheduled_notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("logical_key", String(255), nullable=False, unique=True),
    Column("section", String(50), nullable=False),
    Column("entity_id", String(36), nullable=False),
    Column("type_key", String(100), nullable=False),
    Column("template_key", String(100)),
    Column("channel_key", String(100)),
    Column("sound_key", String(100)),
    Column("title", String(255), nullable=False),
    Column("scheduled_at", DateTime, nullable=False),
)

security_secrets = Table(
    "security_secrets",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
