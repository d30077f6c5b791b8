"""
Shared helpers for the SQLAlchemy repositories.
"""
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(db: AsyncSession, model):
    """
    INSERT construct with on_conflict_do_nothing() support for the bound dialect.
    PostgreSQL in production, SQLite in tests.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")
    return insert(model)
