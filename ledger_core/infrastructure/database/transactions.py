"""Atomic transactions and batched writes on top of SQLAlchemy sessions"""

import logging
from typing import Callable, Hashable, List, TypeVar

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ledger_core.domain.exceptions import ConcurrentModificationError
from ledger_core.infrastructure.observability.metrics import transaction_conflict_counter

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_transaction(
    session_factory: sessionmaker,
    fn: Callable[[Session], T],
    max_attempts: int = 5,
) -> T:
    """
    Run ``fn`` in one all-or-nothing transaction and return its result.

    ``fn`` reads the rows it needs, validates, mutates and returns. Writes are
    versioned compare-and-swaps, so if another transaction committed to the
    same rows in between, the commit raises ``StaleDataError``; the whole
    function is then re-run on a fresh session so that it re-reads the
    committed values before deciding again.

    Raises:
        ConcurrentModificationError: still conflicting after max_attempts
        Anything raised by ``fn``, after rolling back
    """
    attempt = 0
    while True:
        attempt += 1
        session = session_factory()
        try:
            result = fn(session)
            session.commit()
            return result
        except StaleDataError as e:
            session.rollback()
            transaction_conflict_counter.inc()
            if attempt >= max_attempts:
                raise ConcurrentModificationError(
                    f"Transaction still conflicting after {attempt} attempts"
                ) from e
            logger.warning(
                "Transaction conflict, retrying",
                extra={"attempt": attempt, "max_attempts": max_attempts},
            )
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class BatchCommitError(Exception):
    """A batch failed to commit; none of its staged records were written"""

    def __init__(self, keys: List[Hashable], cause: Exception):
        super().__init__(f"Batch of {len(keys)} record(s) failed to commit: {cause}")
        self.keys = keys
        self.cause = cause


class BatchWriter:
    """
    Groups record-level writes into batches committed together.

    A record is staged by applying its mutations to the writer's session;
    the caller reports how many write operations it contributed. Once the
    count reaches ``batch_size`` the caller commits. A batch commits as a
    whole or not at all; there is no atomicity across batches.
    """

    def __init__(self, session_factory: sessionmaker, batch_size: int = 400):
        self.session: Session = session_factory()
        self.batch_size = batch_size
        self._operations = 0
        self._keys: List[Hashable] = []

    @property
    def is_full(self) -> bool:
        return self._operations >= self.batch_size

    @property
    def pending(self) -> int:
        return self._operations

    def stage(self, key: Hashable, operations: int = 1) -> None:
        """Record that ``key`` added ``operations`` writes to the current batch"""
        self._keys.append(key)
        self._operations += operations

    def commit(self) -> List[Hashable]:
        """
        Commit staged writes and return the keys that were committed.

        Raises:
            BatchCommitError: the commit failed and was rolled back
        """
        keys, self._keys = self._keys, []
        self._operations = 0
        if not keys:
            return []

        logger.info("Committing batch", extra={"records": len(keys)})
        try:
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise BatchCommitError(keys, e) from e
        return keys

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "BatchWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.session.rollback()
        self.close()
