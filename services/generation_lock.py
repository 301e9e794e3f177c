"""Single-flight lock around a generation pass.

A pass acquires the lock without blocking. When another pass holds it the
new pass is refused with ConcurrentGenerationInProgress; the next scheduled
trigger retries.

Backends:
- ProcessGenerationLock: threading lock, one process
- DatabaseGenerationLock: row in `generation_locks`, shared by every process
  using the same database; a TTL lets a crashed holder's lock expire, and
  a live holder calls `renew()` between templates to keep it
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import GenerationLockRow
from utils.error_handler import ConcurrentGenerationInProgress, PersistenceFailure

logger = logging.getLogger("app")


def _utcnow() -> datetime:
    # Naive UTC, comparable with what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GenerationLock(ABC):
    @abstractmethod
    def try_acquire(self) -> bool:
        """Take the lock without waiting. Returns False when it is held elsewhere."""
        pass

    @abstractmethod
    def release(self) -> None:
        pass

    def renew(self) -> bool:
        """Extend the hold of a long-running pass. Returns False when the lock is no longer ours."""
        return True

    @contextmanager
    def hold(self):
        """Hold the lock for the duration of the block, released on every exit path."""
        if not self.try_acquire():
            raise ConcurrentGenerationInProgress()
        try:
            yield self
        finally:
            self.release()


class ProcessGenerationLock(GenerationLock):
    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()


class DatabaseGenerationLock(GenerationLock):
    """Lock held as a row keyed by `name`; insertion fails while another holder owns it.

    Attributes:
        session_factory: Callable returning a new SQLAlchemy session
        name: Lock name shared by all competing passes
        ttl_seconds: After this long a held lock is considered abandoned
    """

    def __init__(
        self,
        session_factory: Callable,
        name: str = "recurring-task-generation",
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._owner: Optional[str] = None

    def try_acquire(self) -> bool:
        owner = uuid4().hex
        now = self.clock()
        db = self.session_factory()
        try:
            expired = (
                db.query(GenerationLockRow)
                .filter(GenerationLockRow.name == self.name, GenerationLockRow.expires_at <= now)
                .delete(synchronize_session=False)
            )
            if expired:
                logger.warning(f"Generation lock '{self.name}' expired and was taken over")
            db.add(GenerationLockRow(
                name=self.name,
                owner=owner,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            ))
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Generation lock '{self.name}' is held by another pass")
            return False
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error acquiring generation lock '{self.name}': {e}")
            raise PersistenceFailure(f"Could not acquire generation lock '{self.name}': {e}") from e
        finally:
            db.close()

        self._owner = owner
        return True

    def renew(self) -> bool:
        """Push `expires_at` one TTL past now for the current owner.

        Returns False when the row is gone or belongs to someone else, i.e.
        the lock expired and was taken over, or when the update fails.
        """
        if self._owner is None:
            return False
        now = self.clock()
        db = self.session_factory()
        try:
            renewed = (
                db.query(GenerationLockRow)
                .filter(GenerationLockRow.name == self.name, GenerationLockRow.owner == self._owner)
                .update(
                    {GenerationLockRow.expires_at: now + timedelta(seconds=self.ttl_seconds)},
                    synchronize_session=False,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error renewing generation lock '{self.name}': {e}")
            return False
        finally:
            db.close()

        if not renewed:
            logger.warning(f"Generation lock '{self.name}' was lost by owner {self._owner}")
            return False
        return True

    def release(self) -> None:
        if self._owner is None:
            return
        db = self.session_factory()
        try:
            db.query(GenerationLockRow).filter(
                GenerationLockRow.name == self.name,
                GenerationLockRow.owner == self._owner,
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            # The TTL frees the row if this delete never lands
            logger.error(f"Error releasing generation lock '{self.name}': {e}")
        finally:
            db.close()
            self._owner = None
