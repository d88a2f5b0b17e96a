"""
Ledger Verification Script

Checks the integrity of the Excel bill ledger written by the Celery
export task.
Run from project root: python scripts/verify.py [path/to/bills.xlsx]
"""

import os
import sys
from datetime import datetime

import pandas as pd

LEDGER_FILE = os.path.join(os.getenv("DATA_DIRECTORY", "data"), os.getenv("LEDGER_FILENAME", "bills.xlsx"))

REQUIRED_COLUMNS = ["bill_id", "table", "subtotal", "tax", "total_amount", "timestamp"]


def verify_ledger(path: str = LEDGER_FILE) -> bool:
    """Verify the ledger after a simulation run."""

    print("=" * 60)
    print("LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"File: {path}")
    print("=" * 60)

    if not os.path.exists(path):
        print("\nLedger file not found!")
        print("   Run the simulation first: python scripts/simulate.py --settle")
        return False

    try:
        df = pd.read_excel(path, engine="openpyxl", dtype={"bill_id": str})
    except Exception as e:
        print(f"\nCould not read ledger: {e}")
        return False

    ok = True
    print(f"\nBills: {len(df)}")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        print(f"Missing columns: {missing}")
        return False
    print("All required columns present")

    duplicates = df["bill_id"].duplicated().sum()
    if duplicates:
        print(f"{duplicates} duplicate bill IDs found!")
        ok = False
    else:
        print("No duplicate bill IDs")

    # total must equal subtotal + tax to the cent
    drift = (df["subtotal"] + df["tax"] - df["total_amount"]).abs() > 0.01
    if drift.any():
        print(f"{int(drift.sum())} bills whose total does not match subtotal + tax:")
        print(df.loc[drift, ["bill_id", "subtotal", "tax", "total_amount"]].to_string(index=False))
        ok = False
    else:
        print("Every total equals subtotal + tax")

    empty = df["subtotal"] <= 0
    if empty.any():
        print(f"{int(empty.sum())} bills with no billed items!")
        ok = False

    print("\nREVENUE:")
    print(f"   Total: {df['total_amount'].sum():.2f}")
    print(f"   Average bill: {df['total_amount'].mean():.2f}")
    print(f"   Tax collected: {df['tax'].sum():.2f}")

    print("\nBILLS PER TABLE:")
    print(df.groupby("table")["bill_id"].count().to_string())

    print("\nRECENT BILLS:")
    print("-" * 60)
    print(df[["bill_id", "table", "total_amount", "timestamp"]].tail(5).to_string(index=False))

    print("\n" + "=" * 60)
    print("VERIFICATION PASSED" if ok else "VERIFICATION FAILED")
    print("=" * 60)
    return ok


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else LEDGER_FILE
    sys.exit(0 if verify_ledger(target) else 1)
