"""Ledger of payment references that have already been fanned out.

A reference moves through two states: ``in_flight`` from the moment it is
admitted by ``try_begin`` and ``committed`` once fan-out has been attempted.
Reserving at admission time means a second request for the same reference
is rejected while the first one is still running, not only after it has
finished. Committed entries are never removed.
"""

from datetime import datetime, timezone
from threading import Lock
from typing import Literal, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from paycomplete.models.processed_reference import ProcessedReference

ReferenceState = Literal["in_flight", "committed"]

IN_FLIGHT: ReferenceState = "in_flight"
COMMITTED: ReferenceState = "committed"


class ReferenceGuard(Protocol):
    def try_begin(self, reference: str) -> bool:
        ...

    def commit(self, reference: str) -> None:
        ...

    def release(self, reference: str) -> None:
        ...

    def state_of(self, reference: str) -> ReferenceState | None:
        ...


class InMemoryReferenceGuard:
    """Process-local ledger. History is lost on restart."""

    def __init__(self) -> None:
        self._states: dict[str, ReferenceState] = {}
        self._lock = Lock()

    def try_begin(self, reference: str) -> bool:
        with self._lock:
            if reference in self._states:
                return False
            self._states[reference] = IN_FLIGHT
            return True

    def commit(self, reference: str) -> None:
        with self._lock:
            self._states[reference] = COMMITTED

    def release(self, reference: str) -> None:
        with self._lock:
            if self._states.get(reference) == IN_FLIGHT:
                del self._states[reference]

    def state_of(self, reference: str) -> ReferenceState | None:
        with self._lock:
            return self._states.get(reference)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class SqlReferenceGuard:
    """Ledger shared by every instance pointing at the same database.

    The primary key on ``processed_references.reference`` makes the
    reservation atomic across processes.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def try_begin(self, reference: str) -> bool:
        db = self._session_factory()
        try:
            db.add(ProcessedReference(reference=reference, status=IN_FLIGHT))
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        finally:
            db.close()
        return True

    def commit(self, reference: str) -> None:
        db = self._session_factory()
        try:
            result = db.execute(
                update(ProcessedReference)
                .where(ProcessedReference.reference == reference)
                .values(status=COMMITTED, committed_at=datetime.now(timezone.utc))
            )
            if result.rowcount == 0:
                db.add(
                    ProcessedReference(
                        reference=reference,
                        status=COMMITTED,
                        committed_at=datetime.now(timezone.utc),
                    )
                )
            db.commit()
        finally:
            db.close()

    def release(self, reference: str) -> None:
        db = self._session_factory()
        try:
            db.execute(
                delete(ProcessedReference).where(
                    ProcessedReference.reference == reference,
                    ProcessedReference.status == IN_FLIGHT,
                )
            )
            db.commit()
        finally:
            db.close()

    def state_of(self, reference: str) -> ReferenceState | None:
        db = self._session_factory()
        try:
            return db.execute(
                select(ProcessedReference.status).where(ProcessedReference.reference == reference)
            ).scalar_one_or_none()
        finally:
            db.close()
