"""
Tables of HubPanel's own metadata database
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

connections_table = Table(
    "database_connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False, unique=True),
    Column("host", Text, nullable=False),
    Column("port", Integer, nullable=False, server_default="5432"),
    Column("username", Text, nullable=False),
    Column("password", Text, nullable=False),
    Column("database", Text, nullable=False),
    Column("db_type", Text, nullable=False, server_default="postgresql"),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

activity_table = Table(
    "hubpanel_logs",
    metadata,
    # SQLite only autoincrements INTEGER primary keys
    Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
    Column("timestamp", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("user_email", Text, nullable=False),
    Column("database_name", Text, nullable=False),
    Column("operation", Text, nullable=False),
    Column("details", Text),
    Column("sql_query", Text),
    Index("idx_hubpanel_logs_timestamp", "timestamp"),
)


def create_metadata_engine(url: str) -> Engine:
    """Small pool for the metadata database"""
    return create_engine(url, pool_size=3, max_overflow=2, pool_pre_ping=True)
