"""
Ledger Verification Script

Checks the closed-order Excel ledger written by the export worker.
Run from project root: python scripts/verify.py
"""

import sys
from datetime import datetime

import pandas as pd

from backoffice.services.excel_manager import ExcelManager


def verify_ledger() -> bool:
    """Verify ledger integrity after a simulation run."""
    ledger = ExcelManager.ledger_path()

    print("=" * 60)
    print("🔍 CLOSED-ORDER LEDGER REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {ledger}")
    print("=" * 60)

    if not ledger.exists():
        print("\n❌ Ledger not found!")
        print("   Enable EXPORT_CLOSED_ORDERS and run: python scripts/simulate.py")
        return False

    df = pd.read_excel(ledger, engine="openpyxl")
    print(f"\n✅ File loaded: {len(df)} row(s)")

    missing = [col for col in ExcelManager.ORDER_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n⚠️ Missing Columns: {missing}")
    else:
        print("✅ All columns present")

    ok = not missing
    duplicates = int(df["order_id"].duplicated().sum()) if "order_id" in df.columns else 0
    if duplicates:
        print(f"⚠️ {duplicates} duplicate order IDs found!")
        ok = False
    else:
        print("✅ No duplicate order IDs")

    if "order_status" in df.columns:
        print("\n📊 BY STATUS:")
        for status, count in df["order_status"].value_counts().items():
            print(f"   {status}: {count}")

    if "total_price" in df.columns and len(df):
        completed = df[df["order_status"] == "COMPLETED"]
        revenue = pd.to_numeric(completed["total_price"]).sum()
        print(f"\n💰 Completed revenue: ${revenue:.2f}")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION PASSED" if ok else "❌ VERIFICATION FAILED")
    print("=" * 60)
    return ok


if __name__ == "__main__":
    sys.exit(0 if verify_ledger() else 1)
