"""
Celery Tasks
Background export of generated bills to the Excel ledger.
"""

import logging
import time

from tableside.celery_worker import celery_app
from tableside.core.config import get_settings
from tableside.schemas import Bill
from tableside.services.ledger import LedgerManager

logger = logging.getLogger(__name__)


class LedgerExportError(Exception):
    """The ledger could not be written; the task is retried."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(LedgerExportError, OSError),
    retry_backoff=True,
)
def export_bill_to_ledger(self, row: dict) -> dict:
    """
    Append a bill to the Excel ledger.

    Args:
        row: Flattened bill, as produced by ``Bill.to_ledger_row``

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    bill_id = row.get("bill_id", "unknown")

    logger.info(f"Task {task_id}: exporting {bill_id}")
    start_time = time.time()

    result = LedgerManager().export_bill(row)
    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if not result["success"]:
        logger.warning(f"Task {task_id}: {bill_id} failed after {elapsed}s - {result['message']}")
        raise LedgerExportError(result["message"])

    logger.info(f"Task {task_id}: {bill_id} done in {elapsed}s")
    return result


def queue_bill_export(bill: Bill) -> bool:
    """
    Queue a ledger export for ``bill``.

    A broker outage never fails the bill itself; the bill is already
    settled in the store.

    Returns:
        True if the task was queued
    """
    if not get_settings().ledger_export_enabled:
        return False
    try:
        export_bill_to_ledger.delay(bill.to_ledger_row())
    except Exception as e:
        logger.error(f"Could not queue ledger export for {bill.bill_id}: {e}")
        return False
    return True
