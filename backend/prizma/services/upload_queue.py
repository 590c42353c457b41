"""
Upload Queue

Receipt submissions that could not be processed right away (provider down,
connection lost) are stored in the upload_queue table and processed FIFO by
a scheduled job.

Each entry moves:

    pending -> in_flight -> done     (row deleted)
                         -> failed   (retried after an exponential backoff)
                         -> error    (retries exhausted, kept with last_error)

Processing is skipped while offline and stops mid-run when the connection
drops, so work resumes on the next run after reconnecting.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

import httpx
from sqlalchemy import or_

from prizma.models import QueuedUpload

logger = logging.getLogger(__name__)


class UploadStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class QueueRunResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errored: int = 0
    skipped_offline: bool = False
    paused_offline: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def probe_connectivity(url: str, timeout: float = 5.0) -> bool:
    """Any HTTP response counts as online; only transport failures mean offline."""
    try:
        httpx.get(url, timeout=timeout)
        return True
    except httpx.HTTPError as e:
        logger.info(f"Connectivity check failed: {e}")
        return False


class UploadQueue:
    """Persistent FIFO retry queue driven by a scheduler."""

    def __init__(
        self,
        session_factory,
        max_retries: int = 3,
        backoff_seconds: float = 5.0,
        backoff_max_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_factory = session_factory
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.clock = clock or _utcnow

    def backoff_for(self, attempts: int) -> float:
        return min(self.backoff_seconds * (2 ** max(0, attempts - 1)), self.backoff_max_seconds)

    def enqueue(self, payload: dict, kind: str = "receipt") -> QueuedUpload:
        db = self.session_factory()
        try:
            entry = QueuedUpload(
                kind=kind,
                payload=payload,
                status=UploadStatus.PENDING.value,
                attempts=0,
                created_at=self.clock(),
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            logger.info(f"Queued upload {entry.id} ({kind})")
            return entry
        finally:
            db.close()

    def list_entries(self, statuses: Optional[list[str]] = None) -> list[QueuedUpload]:
        db = self.session_factory()
        try:
            query = db.query(QueuedUpload)
            if statuses:
                query = query.filter(QueuedUpload.status.in_(statuses))
            return query.order_by(QueuedUpload.id).all()
        finally:
            db.close()

    def requeue_in_flight(self) -> int:
        """Entries left in_flight by a crashed run go back to pending."""
        db = self.session_factory()
        try:
            count = db.query(QueuedUpload).filter(
                QueuedUpload.status == UploadStatus.IN_FLIGHT.value
            ).update({"status": UploadStatus.PENDING.value}, synchronize_session=False)
            db.commit()
            if count:
                logger.warning(f"Reset {count} interrupted uploads to pending")
            return count
        finally:
            db.close()

    def retry(self, entry_id: int) -> Optional[QueuedUpload]:
        """Manually put an errored or failed entry back in line."""
        db = self.session_factory()
        try:
            entry = db.query(QueuedUpload).filter(QueuedUpload.id == entry_id).first()
            if entry is None:
                return None
            if entry.status in (UploadStatus.ERROR.value, UploadStatus.FAILED.value):
                entry.status = UploadStatus.PENDING.value
                entry.attempts = 0
                entry.next_attempt_at = None
                db.commit()
                db.refresh(entry)
            return entry
        finally:
            db.close()

    def _claim_next(self, tried: set) -> Optional[tuple[int, dict, int]]:
        db = self.session_factory()
        try:
            query = db.query(QueuedUpload).filter(
                QueuedUpload.status.in_([UploadStatus.PENDING.value, UploadStatus.FAILED.value]),
                or_(QueuedUpload.next_attempt_at.is_(None), QueuedUpload.next_attempt_at <= self.clock()),
            )
            if tried:
                query = query.filter(QueuedUpload.id.notin_(tried))
            entry = query.order_by(QueuedUpload.id).first()
            if entry is None:
                return None
            entry.status = UploadStatus.IN_FLIGHT.value
            entry.attempts = (entry.attempts or 0) + 1
            db.commit()
            return entry.id, entry.payload, entry.attempts
        finally:
            db.close()

    def _finish(self, entry_id: int, attempts: int, error: Optional[Exception]) -> UploadStatus | None:
        db = self.session_factory()
        try:
            entry = db.query(QueuedUpload).filter(QueuedUpload.id == entry_id).first()
            if entry is None:
                return None
            if error is None:
                db.delete(entry)
                db.commit()
                return None

            entry.last_error = str(error)[:1000]
            if attempts >= self.max_retries:
                entry.status = UploadStatus.ERROR.value
                entry.next_attempt_at = None
            else:
                entry.status = UploadStatus.FAILED.value
                entry.next_attempt_at = self.clock() + timedelta(seconds=self.backoff_for(attempts))
            db.commit()
            return UploadStatus(entry.status)
        finally:
            db.close()

    def process(
        self,
        handler: Callable[[dict], object],
        is_online: Optional[Callable[[], bool]] = None,
        limit: Optional[int] = None,
    ) -> QueueRunResult:
        """
        Work through due entries in FIFO order.

        A handler exception fails only its own entry. Each entry is tried at
        most once per run.
        """
        result = QueueRunResult()
        if is_online is not None and not is_online():
            logger.info("Offline, upload queue run skipped")
            result.skipped_offline = True
            return result

        tried: set = set()
        while limit is None or result.processed < limit:
            claimed = self._claim_next(tried)
            if claimed is None:
                break
            entry_id, payload, attempts = claimed
            tried.add(entry_id)
            result.processed += 1

            error = None
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"Upload {entry_id} attempt {attempts} failed: {e}")
                error = e

            status = self._finish(entry_id, attempts, error)
            if error is None:
                result.succeeded += 1
                logger.info(f"Upload {entry_id} processed")
                continue

            if status is UploadStatus.ERROR:
                result.errored += 1
                logger.error(f"Upload {entry_id} gave up after {attempts} attempts")
            else:
                result.failed += 1

            if is_online is not None and not is_online():
                logger.info("Connection lost, upload queue paused")
                result.paused_offline = True
                break

        return result
