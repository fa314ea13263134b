"""
Load normalized ingredients into PostgreSQL with upsert logic (idempotency)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import UpsertError
from models.ingredient import Ingredient
from schemas.ingredient import NormalizedIngredient

logger = logging.getLogger(__name__)

CONFLICT_FIELDS = ["fdc_id"]
IMMUTABLE_COLUMNS = {"fdc_id", "created_at"}


@dataclass
class LoadResult:
    """
    Outcome of one upsert call.

    written counts rows confirmed by the sink, including rows found already
    stored (no-op writes). duplicates counts records absorbed without a
    write of their own. A partial failure is reported through error, never
    raised.
    """
    written: int = 0
    duplicates: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IngredientLoader:
    """
    Load ingredients with idempotent upsert operations.

    Ensures:
    - No duplicate rows on repeated runs (keyed by fdc_id)
    - Updates existing rows when the source data changes
    - A failed batch never raises; its records stay with the caller
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def upsert(self, batch: List[NormalizedIngredient]) -> LoadResult:
        """
        INSERT ... ON CONFLICT (fdc_id) DO UPDATE for the whole batch.

        A record repeated inside the batch is collapsed first (last wins),
        since PostgreSQL refuses to update the same row twice in one
        statement.
        """
        if not batch:
            return LoadResult()

        rows, collapsed = self._dedupe(batch)

        async with self.session_maker() as session:
            try:
                result = await session.execute(self._upsert_statement(rows))
                written = len(result.fetchall())
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(
                    f"Batch upsert of {len(rows)} ingredients hit a constraint "
                    f"violation, falling back to per-record writes: {e.orig}"
                )
                result = await self._upsert_each(session, rows)
                result.duplicates += collapsed
                return result
            except SQLAlchemyError as e:
                await session.rollback()
                error = UpsertError(
                    "Batch upsert failed",
                    context={"batch_size": len(rows), "conflict_fields": CONFLICT_FIELDS},
                    original_exception=e,
                )
                logger.error(str(error), extra={"error_context": error.to_dict()})
                return LoadResult(error=f"Batch upsert of {len(rows)} ingredients failed: {type(e).__name__}")

        logger.info(f"Upserted {written} ingredients ({collapsed} collapsed duplicates)")
        return LoadResult(written=written, duplicates=collapsed)

    async def _upsert_each(self, session: AsyncSession, rows: List[Dict[str, Any]]) -> LoadResult:
        """
        Per-record fallback. A row already stored under the same fdc_id or
        name counts as a successful no-op; anything else is upserted inside
        its own savepoint so one bad row cannot undo the rest.
        """
        result = LoadResult()
        failed: List[int] = []

        try:
            for row in rows:
                existing = await session.execute(
                    select(Ingredient.id)
                    .where(or_(Ingredient.fdc_id == row["fdc_id"], Ingredient.name == row["name"]))
                    .limit(1)
                )
                if existing.scalar_one_or_none() is not None:
                    result.written += 1
                    result.duplicates += 1
                    continue

                try:
                    async with session.begin_nested():
                        await session.execute(self._upsert_statement([row]))
                    result.written += 1
                except IntegrityError as e:
                    logger.warning(f"Could not upsert ingredient {row['fdc_id']}: {e.orig}")
                    failed.append(row["fdc_id"])

            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Per-record fallback aborted: {e}")
            return LoadResult(error=f"Per-record upsert of {len(rows)} ingredients failed: {type(e).__name__}")

        if failed:
            result.error = f"{len(failed)} ingredients not written: fdc_id {failed[:10]}"
        return result

    @staticmethod
    def _dedupe(batch: List[NormalizedIngredient]) -> Tuple[List[Dict[str, Any]], int]:
        by_id: Dict[int, Dict[str, Any]] = {}
        for item in batch:
            by_id[item.fdc_id] = item.to_row()
        return list(by_id.values()), len(batch) - len(by_id)

    @staticmethod
    def _upsert_statement(rows: List[Dict[str, Any]]):
        stmt = insert(Ingredient).values(rows)
        update_columns = {
            column: stmt.excluded[column]
            for column in rows[0]
            if column not in IMMUTABLE_COLUMNS
        }
        update_columns["updated_at"] = func.now()
        return (
            stmt.on_conflict_do_update(index_elements=CONFLICT_FIELDS, set_=update_columns)
            .returning(Ingredient.id)
        )
