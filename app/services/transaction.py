"""
Transaction scope for multi-entity workflow steps.

Usage:
    async with transaction_scope(self.db):
        grn = await self._lock_goods_receipt(grn_id)
        ...                       # ledger movements, status changes
    # committed here; on any exception everything is rolled back

Row locks taken inside the scope (``with_for_update``) are held until the
commit, which is what serialises two concurrent approvals of the same GRN
or two refunds against the same sale. Inside a step, locks are taken in
this order: workflow entity, related PO or sale, document sequence,
inventory rows sorted by product id.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@asynccontextmanager
async def transaction_scope(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit once on success, roll back and re-raise on any failure."""
    try:
        yield db
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.info("Transaction rolled back: %s: %s", type(e).__name__, e)
        raise


async def insert_if_missing(db: AsyncSession, model, conflict_columns: Sequence[str], **values) -> None:
    """
    Insert a row unless one with the same ``conflict_columns`` exists.

    A plain INSERT of a row another open transaction is also creating
    fails on the unique key; ON CONFLICT DO NOTHING instead waits for that
    transaction and then skips, so the caller can go on to lock the row.
    """
    dialect = db.get_bind().dialect.name
    if dialect not in _CONFLICT_INSERTS:
        raise RuntimeError(f"No conflict-ignoring insert for the {dialect} dialect")

    statement = (
        _CONFLICT_INSERTS[dialect](model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    await db.execute(statement)
