"""
Excel File Manager with Concurrency Control

Process-safe ledger of closed (COMPLETED or CANCELLED) orders, written
by the Celery export task. Several workers may export at once, so every
read-modify-write of the workbook happens under a FileLock.

An order appears at most once: exporting it again replaces its row.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from backoffice.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Closed-order ledger on disk."""

    ORDER_COLUMNS = [
        "order_id",
        "order_type",
        "customer_details",
        "items",
        "total_price",
        "order_status",
        "created_at",
        "closed_at",
        "exported_at",
    ]

    @classmethod
    def ledger_path(cls) -> Path:
        settings = get_settings()
        return Path(settings.data_directory) / settings.export_filename

    @classmethod
    def _lock(cls) -> FileLock:
        path = cls.ledger_path()
        return FileLock(f"{path}.lock", timeout=get_settings().export_lock_timeout)

    @classmethod
    def _ensure_data_dir(cls) -> None:
        data_dir = cls.ledger_path().parent
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {data_dir}")

    @classmethod
    def _load_or_create_df(cls, file_path: Path) -> pd.DataFrame:
        if file_path.exists():
            return pd.read_excel(file_path, engine="openpyxl")
        return pd.DataFrame(columns=cls.ORDER_COLUMNS)

    @staticmethod
    def build_row(order: dict[str, Any]) -> dict[str, Any]:
        """Flatten an order snapshot (camelCase JSON) into one ledger row."""
        items = ", ".join(
            f"{item['quantity']}x {item['productName']}" for item in order.get("items", [])
        )
        return {
            "order_id": order["id"],
            "order_type": order.get("orderType"),
            "customer_details": order.get("customerDetails"),
            "items": items,
            "total_price": str(order.get("totalPrice")),
            "order_status": order.get("status"),
            "created_at": order.get("createdAt"),
            "closed_at": order.get("updatedAt"),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def export_order(cls, order: dict[str, Any]) -> dict[str, Any]:
        """
        Write one closed order to the ledger.

        Returns:
            dict with success, message, order_id and exported_at
        """
        cls._ensure_data_dir()
        ledger = cls.ledger_path()
        order_id = order.get("id")
        result = {
            "success": False,
            "message": "",
            "order_id": order_id,
            "exported_at": None,
        }

        try:
            with cls._lock():
                logger.debug(f"Lock acquired for Order #{order_id}")

                df = cls._load_or_create_df(ledger)
                row = cls.build_row(order)
                if not df.empty:
                    df = df[df["order_id"] != order_id]
                df = pd.concat([df, pd.DataFrame([row])], ignore_index=True)
                df = df.sort_values("order_id", kind="stable")
                df.to_excel(str(ledger), index=False, engine="openpyxl")

                logger.info(f"Order #{order_id} exported to {ledger.name}")
                result["success"] = True
                result["message"] = f"Order #{order_id} exported"
                result["exported_at"] = row["exported_at"]

        except Timeout:
            result["message"] = f"Lock timeout ({get_settings().export_lock_timeout}s)"
            logger.error(f"Lock timeout for Order #{order_id}")

        return result

    @classmethod
    def get_all_orders(cls) -> list[dict[str, Any]]:
        ledger = cls.ledger_path()
        if not ledger.exists():
            return []
        with cls._lock():
            df = pd.read_excel(ledger, engine="openpyxl")
        return df.to_dict("records")

    @classmethod
    def clear_all(cls) -> bool:
        """Delete the ledger and its lock file."""
        ledger = cls.ledger_path()
        for f in [ledger, Path(f"{ledger}.lock")]:
            if f.exists():
                f.unlink()
        logger.info("Closed-order ledger cleared")
        return True
