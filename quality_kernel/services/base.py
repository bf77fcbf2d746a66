"""
BaseService -- common base for the quality services.

Responsibility:
    Holds the injected session, clock, settings and collaborators, and
    provides the transaction helpers every public mutating method uses.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Each public mutating method owns exactly one transaction: commit on
      success, rollback on any exception.  No partial writes survive.
    - Read-modify-write against a versioned row goes through
      ``_run_versioned``.  A StaleDataError (another writer committed
      first) rolls back and re-runs the whole unit of work from a fresh
      read, up to ``settings.max_write_attempts`` times, then raises
      ConcurrencyConflictError.

Failure modes:
    - ConcurrencyConflictError when every attempt lost the race.
    - Anything the unit of work raises propagates after rollback.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from quality_kernel.domain.clock import Clock, SystemClock
from quality_kernel.exceptions import ConcurrencyConflictError
from quality_kernel.logging_config import LogContext
from quality_kernel.services.collaborators import Notifier, NullNotifier
from quality_kernel.services.settings import WorkflowSettings

T = TypeVar("T")

_CONTEXT_FIELD = {"NCR": "ncr_id", "MRB": "mrb_id", "CAPA": "capa_id"}


class BaseService:
    """Session, clock and settings holder for kernel services."""

    logger: logging.Logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: WorkflowSettings | None = None,
        notifier: Notifier | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or WorkflowSettings()
        self.notifier = notifier or NullNotifier()

    def _run_in_transaction(self, unit: Callable[[], T]) -> T:
        """Run ``unit`` and commit; roll back if it raises."""
        try:
            result = unit()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return result

    def _run_versioned(
        self,
        unit: Callable[[], T],
        entity_type: str,
        entity_id: str,
    ) -> T:
        """Run a read-modify-write ``unit`` under optimistic concurrency.

        ``unit`` must re-read everything it depends on; it is called again
        from scratch after a lost race.
        """
        attempts = self.settings.max_write_attempts
        with LogContext.bind(**{_CONTEXT_FIELD[entity_type]: entity_id}):
            for attempt in range(1, attempts + 1):
                try:
                    result = unit()
                    self.session.commit()
                except StaleDataError:
                    self.session.rollback()
                    self.logger.info(
                        "optimistic_write_conflict",
                        extra={
                            "entity_type": entity_type,
                            "entity_id": entity_id,
                            "attempt": attempt,
                            "max_attempts": attempts,
                        },
                    )
                    continue
                except Exception:
                    self.session.rollback()
                    raise
                return result

            self.logger.warning(
                "optimistic_write_exhausted",
                extra={
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "attempts": attempts,
                },
            )
        raise ConcurrencyConflictError(entity_type, entity_id, attempts)
