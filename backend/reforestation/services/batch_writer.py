"""Batch-then-row fallback writer shared by the bulk ingestion stages."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# purpose: persist a stage of ORM rows as one flush, degrading to per-row savepoints on failure
# status: active

T = TypeVar("T")


@dataclass
class BatchOutcome(Generic[T]):
    succeeded: list[T] = field(default_factory=list)
    failed: list[tuple[T, str]] = field(default_factory=list)


def describe_failure(exc: Exception) -> str:
    """Return a non-empty, single-line message for a storage failure."""

    cause = getattr(exc, "orig", None) or exc
    message = str(cause).strip().splitlines()
    if message and message[0]:
        return message[0]
    return type(cause).__name__


class BatchWriter(Generic[T]):
    """Write ``items`` in one savepoint, retrying row by row when the batch fails.

    Each call commits the stage it writes; failed rows are expunged from the
    session by the savepoint rollback and reported with their error message.
    """

    def __init__(
        self,
        db: Session,
        *,
        label: str,
        key: Callable[[T], str] | None = None,
    ) -> None:
        self.db = db
        self.label = label
        self.key = key or (lambda item: repr(item))

    def write(self, items: Sequence[T]) -> BatchOutcome[T]:
        outcome: BatchOutcome[T] = BatchOutcome()
        if not items:
            return outcome
        try:
            with self.db.begin_nested():
                self.db.add_all(items)
                self.db.flush()
        except SQLAlchemyError as exc:
            logger.warning(
                "bulk insert of %d %s rows failed (%s); falling back to per-row inserts",
                len(items),
                self.label,
                describe_failure(exc),
            )
            outcome = self._write_each(items)
        else:
            outcome.succeeded.extend(items)
        self.db.commit()
        return outcome

    def _write_each(self, items: Sequence[T]) -> BatchOutcome[T]:
        outcome: BatchOutcome[T] = BatchOutcome()
        for item in items:
            try:
                with self.db.begin_nested():
                    self.db.add(item)
                    self.db.flush()
            except SQLAlchemyError as exc:
                error = describe_failure(exc)
                logger.info("%s row %s rejected: %s", self.label, self.key(item), error)
                outcome.failed.append((item, error))
            else:
                outcome.succeeded.append(item)
        return outcome
