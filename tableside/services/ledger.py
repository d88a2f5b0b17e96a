"""
Bill Ledger with Concurrency Control

Appends every generated bill to an Excel workbook. Celery workers in
separate processes write the same file, so each read-modify-write happens
under a file lock.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from tableside.core.config import get_settings

logger = logging.getLogger(__name__)


class LedgerManager:
    """Process-safe Excel ledger of bills."""

    COLUMNS = [
        "bill_id",
        "table",
        "order_ids",
        "items",
        "subtotal",
        "tax",
        "total_amount",
        "timestamp",
        "exported_at",
    ]

    def __init__(
        self,
        data_directory: Optional[str] = None,
        filename: Optional[str] = None,
        lock_timeout: Optional[int] = None,
    ):
        settings = get_settings()
        self.data_dir = Path(data_directory or settings.data_directory)
        self.path = self.data_dir / (filename or settings.ledger_filename)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.ledger_lock_timeout

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def _load_or_create_df(self) -> pd.DataFrame:
        if self.path.exists():
            try:
                return pd.read_excel(self.path, engine="openpyxl", dtype={"bill_id": str})
            except Exception as e:
                logger.warning(f"Error reading {self.path}: {e}")
        return pd.DataFrame(columns=self.COLUMNS)

    def export_bill(self, row: dict[str, Any]) -> dict[str, Any]:
        """
        Append one bill row (see ``Bill.to_ledger_row``).

        A bill already in the ledger is not written twice, so a retried
        task is harmless.
        """
        self._ensure_data_dir()

        bill_id = row.get("bill_id", "unknown")
        result = {
            "success": False,
            "message": "",
            "bill_id": bill_id,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {bill_id}")

                df = self._load_or_create_df()
                if not df.empty and (df["bill_id"].astype(str) == str(bill_id)).any():
                    result["success"] = True
                    result["message"] = f"{bill_id} already exported"
                    return result

                export_time = datetime.now().isoformat()
                new_row = {column: row.get(column) for column in self.COLUMNS}
                new_row["exported_at"] = export_time

                new_df = pd.DataFrame([new_row], columns=self.COLUMNS)
                df = new_df if df.empty else pd.concat([df, new_df], ignore_index=True)
                df.to_excel(str(self.path), index=False, engine="openpyxl")

                logger.info(f"{bill_id} exported to ledger")
                result["success"] = True
                result["message"] = f"{bill_id} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout for {bill_id}")

        return result

    def get_all_bills(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        return self._load_or_create_df().to_dict("records")

    def clear(self) -> bool:
        """Delete the ledger and its lock file."""
        for f in (self.path, self.lock_path):
            if f.exists():
                f.unlink()
        logger.info("Ledger cleared")
        return True
