"""Optimistic concurrency primitives.

Every lease and schedule-item mutation is a version-checked UPDATE. A write
that matches zero rows lost the race: the whole unit of work is rolled back
and the operation runs again from a fresh read, so business preconditions are
re-validated instead of the same mutation being replayed.
"""

import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from lease_engine.core.clock import utcnow
from lease_engine.core.errors import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StaleWriteError(Exception):
    """A compare-and-swap matched no row. Internal, never surfaced."""


async def compare_and_swap(db: AsyncSession, instance: Any, **values: Any) -> None:
    """UPDATE ``instance``'s row only if it is still at the version we read.

    On success the version is bumped and the new values are written onto the
    loaded instance without marking it dirty. Raises ``StaleWriteError`` when
    another writer got there first.
    """
    model = type(instance)
    expected_version = instance.version
    if hasattr(model, "updated_at"):
        values.setdefault("updated_at", utcnow())
    result = await db.execute(
        update(model)
        .where(model.id == instance.id, model.version == expected_version)
        .values(version=expected_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleWriteError(f"{model.__tablename__}:{instance.id}@{expected_version}")

    set_committed_value(instance, "version", expected_version + 1)
    for key, value in values.items():
        set_committed_value(instance, key, value)


async def run_optimistic(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    label: str,
) -> T:
    """Run ``operation`` as one transaction, retrying lost CAS rounds.

    ``operation`` must re-read everything it validates. Domain errors roll
    back and propagate untouched; only ``StaleWriteError`` is retried.
    """
    for attempt in range(1, max_retries + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except StaleWriteError as e:
            await db.rollback()
            logger.info(f"[CAS] {label}: lost race on {e} (attempt {attempt}/{max_retries})")
        except Exception:
            await db.rollback()
            raise

    logger.warning(f"[CAS] {label}: retries exhausted after {max_retries} attempts")
    raise ConcurrencyError(f"{label} could not be applied due to concurrent updates; retry the request")
