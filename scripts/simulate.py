"""
Dinner Rush Simulation Script

Fires concurrent voice-assistant intents at many tables at once, then
checks that no table ended up with more than one open order. With
--settle, every line is walked through the kitchen and each table is
billed, which feeds the Excel ledger.

Run from project root: python scripts/simulate.py --tables 10 --per-table 8
"""

import argparse
import asyncio
import random
import time
from collections import Counter
from datetime import datetime
from typing import Any

import httpx

API_BASE_URL = "http://localhost:8000"

SPOKEN_ITEMS = [
    "paneer tikka",
    "butter chicken",
    "dal makhani",
    "garlic naan",
    "gulab jamun",
    "masala chai",
    "tomato soup",
]


# =============================================================================
# INTENTS
# =============================================================================

async def send_intent(
    client: httpx.AsyncClient,
    table: str,
    intent: str,
    **arguments: Any,
) -> dict[str, Any]:
    """Post one intent and time it."""
    start_time = time.time()
    try:
        response = await client.post(
            "/webhook/intent",
            json={"intent": intent, "table": table, "arguments": arguments},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        result = response.json().get("result", {}) if response.status_code == 200 else {}
        return {
            "table": table,
            "intent": intent,
            "success": bool(result.get("success")),
            "code": result.get("code") or (None if response.status_code == 200 else f"HTTP {response.status_code}"),
            "message": result.get("message", response.text[:100]),
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "table": table,
            "intent": intent,
            "success": False,
            "code": "TRANSPORT",
            "message": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def rush(client: httpx.AsyncClient, tables: list[str], per_table: int) -> list[dict[str, Any]]:
    """Every table orders ``per_table`` dishes, all at the same time."""
    calls = [
        send_intent(
            client,
            table,
            "orderFood",
            itemName=random.choice(SPOKEN_ITEMS),
            quantity=random.randint(1, 3),
        )
        for table in tables
        for _ in range(per_table)
    ]
    random.shuffle(calls)
    return await asyncio.gather(*calls)


# =============================================================================
# KITCHEN & BILLING
# =============================================================================

async def serve_everything(client: httpx.AsyncClient) -> int:
    """Move every pending line through Preparing to Served."""
    response = await client.get("/api/orders", params={"status": "In Progress"})
    response.raise_for_status()

    served = 0
    for order in response.json()["orders"]:
        for line in order["items"]:
            if line["status"] != "Pending":
                continue
            for status in ("Preparing", "Served"):
                r = await client.patch(
                    f"/api/orders/{order['id']}/items/{line['line_id']}",
                    json={"status": status},
                )
                r.raise_for_status()
            served += 1
    return served


async def bill_tables(client: httpx.AsyncClient, tables: list[str]) -> list[dict[str, Any]]:
    return await asyncio.gather(
        *(send_intent(client, table, "requestBill", confirmCancelPending=True) for table in tables)
    )


async def open_orders_per_table(client: httpx.AsyncClient) -> Counter:
    response = await client.get("/api/orders", params={"status": "In Progress"})
    response.raise_for_status()
    return Counter(order["table"] for order in response.json()["orders"])


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(
    base_url: str,
    num_tables: int,
    per_table: int,
    settle: bool,
) -> bool:
    tables = [f"Table {n}" for n in range(1, num_tables + 1)]

    print("=" * 70)
    print("DINNER RUSH SIMULATION")
    print("=" * 70)
    print(f"Target: {base_url}")
    print(f"Tables: {num_tables}   Orders per table: {per_table}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient(base_url=base_url) as client:
        health = await client.get("/health")
        if health.status_code != 200:
            print(f"Service not healthy: {health.text[:200]}")
            return False
        print(f"Health: {health.json().get('status')}")

        start_time = time.time()
        results = await rush(client, tables, per_table)
        total_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print(f"\nIntents accepted: {len(successful)}/{len(results)} in {total_time}s")
        if successful:
            avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
            print(f"   Average response: {avg_time}s")
            print(f"   Slowest: {max(r['time'] for r in successful)}s")
        if failed:
            print("\nRejected intents by code:")
            for code, count in Counter(r["code"] for r in failed).most_common():
                print(f"   {code}: {count}")

        open_orders = await open_orders_per_table(client)
        duplicates = {table: n for table, n in open_orders.items() if n > 1}
        print("\n" + "-" * 70)
        if duplicates:
            print(f"FAILED: tables with more than one open order: {duplicates}")
        else:
            print(f"OK: {len(open_orders)} tables, one open order each")

        if settle:
            served = await serve_everything(client)
            print(f"\nKitchen served {served} lines")
            bills = await bill_tables(client, sorted(open_orders))
            paid = [b for b in bills if b["success"]]
            print(f"Bills generated: {len(paid)}/{len(bills)}")
            for b in bills:
                if not b["success"]:
                    print(f"   {b['table']}: {b['code']} {b['message']}")
            print("\nRun: python scripts/verify.py  to check the ledger")

    print("=" * 70)
    return not duplicates


def main() -> None:
    parser = argparse.ArgumentParser(description="Concurrent table ordering simulation")
    parser.add_argument("--base-url", default=API_BASE_URL)
    parser.add_argument("--tables", type=int, default=10)
    parser.add_argument("--per-table", type=int, default=5)
    parser.add_argument("--settle", action="store_true", help="serve and bill every table afterwards")
    args = parser.parse_args()

    ok = asyncio.run(run_simulation(args.base_url, args.tables, args.per_table, args.settle))
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()
