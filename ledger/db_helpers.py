from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from ledger.errors import LedgerBusy, LedgerError


@contextmanager
def atomic() -> Iterator[Session]:
    """Run one ledger command as a single transaction.

    Commits when the block exits cleanly, rolls everything back otherwise.
    Lock-wait and statement timeouts come back as a retryable LedgerBusy.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except (LedgerError, StaleDataError):
        session.rollback()
        raise
    except OperationalError as exc:
        session.rollback()
        current_app.logger.warning("Ledger transaction aborted by the database: %s", exc.orig)
        raise LedgerBusy("database is busy, retry the operation", reason=str(exc.orig))
    except Exception:
        session.rollback()
        current_app.logger.exception("Ledger transaction rolled back")
        raise
