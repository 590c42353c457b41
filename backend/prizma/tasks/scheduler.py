"""
Scheduler for the receipt upload queue.

Polls the queue every UPLOAD_POLL_SECONDS. A run is skipped while the
connectivity probe fails, so queued receipts are picked up automatically
once the connection is back.
"""
import asyncio
import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from prizma.config import get_settings
from prizma.database import SessionLocal
from prizma.schemas.receipt import ReceiptProcessRequest
from prizma.services.ai_client import create_ai_client
from prizma.services.auto_categorizer import Categorizer
from prizma.services.product_repository import SqlAlchemyProductRepository
from prizma.services.receipt_processor import ReceiptProcessor
from prizma.services.upload_queue import UploadQueue, probe_connectivity

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

QUEUE_JOB_ID = "upload_queue"

scheduler = BackgroundScheduler()

# Outcome of the most recent run, reported by /scheduler/status
last_queue_run: dict = {"timestamp": None, "result": None}


def build_upload_queue() -> UploadQueue:
    settings = get_settings()
    return UploadQueue(
        SessionLocal,
        max_retries=settings.upload_max_retries,
        backoff_seconds=settings.upload_backoff_seconds,
        backoff_max_seconds=settings.upload_backoff_max_seconds,
    )


async def _process_receipt(payload: dict):
    settings = get_settings()
    request = ReceiptProcessRequest.model_validate(payload)
    ai_client = create_ai_client(settings)
    db = SessionLocal()
    try:
        categorizer = Categorizer(
            repository=SqlAlchemyProductRepository(db),
            ai_client=ai_client,
            correction_limit=settings.correction_context_limit,
            batch_size=settings.categorization_batch_size,
            ai_min_confidence=settings.ai_min_confidence,
        )
        processor = ReceiptProcessor(db, categorizer, tolerance_percent=settings.total_tolerance_percent)
        return await processor.process(request)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        if ai_client is not None:
            await ai_client.aclose()


def process_queued_receipt(payload: dict):
    """Queue handler: runs the async pipeline in this worker thread."""
    return asyncio.run(_process_receipt(payload))


def is_online() -> bool:
    return probe_connectivity(get_settings().connectivity_check_url)


def _record_run(started: datetime, result=None, error: str = None):
    global last_queue_run
    last_queue_run = {
        "timestamp": started.isoformat(),
        "duration_seconds": round((datetime.now() - started).total_seconds(), 3),
        "result": result.__dict__ if result is not None else None,
    }
    if error:
        last_queue_run["error"] = error


def run_upload_queue():
    """Drain due queue entries; exceptions are recorded, never raised into APScheduler."""
    started = datetime.now()
    try:
        result = build_upload_queue().process(process_queued_receipt, is_online=is_online)
    except Exception as e:
        logger.error(f"Upload queue run aborted: {e}")
        _record_run(started, error=str(e))
        return

    _record_run(started, result)
    if result.processed:
        logger.info(
            f"Upload queue run: {result.succeeded} processed, "
            f"{result.failed} failed, {result.errored} gave up"
        )


def start_scheduler():
    if scheduler.running:
        return

    # Entries left in flight by a crash go back to pending
    build_upload_queue().requeue_in_flight()

    poll_seconds = get_settings().upload_poll_seconds
    scheduler.add_job(
        run_upload_queue,
        trigger=IntervalTrigger(seconds=poll_seconds),
        id=QUEUE_JOB_ID,
        name="Receipt upload queue",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Upload queue scheduler started, polling every {poll_seconds}s")


def stop_scheduler():
    if not scheduler.running:
        return
    scheduler.shutdown(wait=False)
    logger.info("Upload queue scheduler stopped")


def get_scheduler_status() -> dict:
    """Running flag, the queue job's next run and the last run's outcome."""
    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in scheduler.get_jobs()
    ]
    return {"running": scheduler.running, "jobs": jobs, "last_queue_run": last_queue_run}
