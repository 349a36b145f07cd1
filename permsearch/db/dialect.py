"""
Dialect Helpers
INSERT ... ON CONFLICT constructs for the supported backends
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific insert() supporting on_conflict_* clauses"""
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Unsupported database dialect: {dialect_name}")
    return insert(model)
