"""SQL helpers shared by services"""

from typing import Any, Sequence

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def insert_if_absent(
    db: AsyncSession,
    table: Table,
    values: dict,
    conflict_columns: Sequence[str],
    returning: Any,
) -> Any:
    """
    INSERT .. ON CONFLICT (conflict_columns) DO NOTHING RETURNING returning.

    Returns the returned value when the row was inserted and None when a row
    with the same key already existed. The unique key makes this a single
    atomic "append if absent", safe under concurrent deliveries.
    """
    dialect = db.get_bind().dialect.name
    try:
        insert = _INSERT_BY_DIALECT[dialect]
    except KeyError:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}") from None

    stmt = (
        insert(table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(returning)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
