"""
Lifecycle Race Simulation

Drives many order lifecycles at once against a running server and fires
conflicting status changes at the same orders, then reports how many
requests won and lost each race.

Run from project root (server on port 8001):
    python scripts/simulate.py --orders 20
"""

import argparse
import asyncio
import random
import time
from datetime import datetime
from typing import Any

import httpx

API_BASE_URL = "http://localhost:8001"

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa"]
STREETS = ["Main St", "Broadway", "5th Avenue", "Park Ave", "Madison Ave"]
PRODUCT_IDS = [1, 2, 3, 4, 5, 6, 7, 8, 9]
DRIVER_IDS = [4, 5]

KITCHEN_STEPS = ["CONFIRMED", "PREPARING"]


def random_order_payload() -> dict[str, Any]:
    name = random.choice(FIRST_NAMES)
    address = f"{random.randint(1, 999)} {random.choice(STREETS)}"
    return {
        "customerDetails": f"Name: {name} | Phone: 555-{random.randint(1000, 9999)} | Address: {address}",
        "orderType": "DELIVERY",
        "items": [
            {"productId": random.choice(PRODUCT_IDS), "quantity": random.randint(1, 3)}
            for _ in range(random.randint(1, 4))
        ],
    }


async def patch_order(client: httpx.AsyncClient, order_id: int, status: str, expected: str) -> int:
    response = await client.patch(
        f"{API_BASE_URL}/api/orders/{order_id}/status",
        json={"status": status, "expectedStatus": expected},
    )
    return response.status_code


async def run_lifecycle(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    """Create one delivery order, race two ready-states, then deliver it."""
    start_time = time.time()
    result: dict[str, Any] = {"order_num": order_num, "success": False}

    response = await client.post(f"{API_BASE_URL}/api/orders", json=random_order_payload())
    if response.status_code != 201:
        result["error"] = f"create: HTTP {response.status_code} {response.text[:80]}"
        return result
    order = response.json()
    order_id = order["id"]
    result["order_id"] = order_id
    result["total"] = float(order["totalPrice"])

    previous = "PENDING"
    for step in KITCHEN_STEPS:
        code = await patch_order(client, order_id, step, previous)
        if code != 200:
            result["error"] = f"{step}: HTTP {code}"
            return result
        previous = step

    # Two stations declare the order ready at the same time
    codes = await asyncio.gather(
        patch_order(client, order_id, "READY_FOR_DELIVERY", "PREPARING"),
        patch_order(client, order_id, "READY_FOR_PICKUP", "PREPARING"),
    )
    result["race"] = codes
    current = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}")).json()["status"]
    result["winner"] = current

    if current == "READY_FOR_DELIVERY":
        response = await client.post(
            f"{API_BASE_URL}/api/deliveries/assign",
            json={
                "orderId": order_id,
                "driverId": random.choice(DRIVER_IDS),
                "deliveryAddress": order["customerDetails"].split("Address: ")[-1],
            },
        )
        if response.status_code != 201:
            result["error"] = f"assign: HTTP {response.status_code}"
            return result
        delivery_id = response.json()["id"]
        for status in ("OUT_FOR_DELIVERY", "DELIVERED"):
            response = await client.patch(
                f"{API_BASE_URL}/api/deliveries/{delivery_id}/status",
                json={"status": status},
            )
            if response.status_code != 200:
                result["error"] = f"delivery {status}: HTTP {response.status_code}"
                return result
    else:
        await patch_order(client, order_id, "COMPLETED", current)

    final = (await client.get(f"{API_BASE_URL}/api/orders/{order_id}")).json()["status"]
    result["final_status"] = final
    result["success"] = final == "COMPLETED"
    result["time"] = round(time.time() - start_time, 3)
    return result


async def run_simulation(num_orders: int) -> None:
    print("=" * 70)
    print("🔥 LIFECYCLE RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(timeout=30.0) as client:
        health = await client.get(f"{API_BASE_URL}/health")
        print(f"\n🩺 Health: {health.json().get('status')}")

        results = await asyncio.gather(
            *(run_lifecycle(client, n) for n in range(1, num_orders + 1))
        )
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    races = [r["race"] for r in results if "race" in r]
    clean_races = sum(1 for codes in races if sorted(codes) == [200, 409])

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Completed lifecycles: {len(successful)}/{num_orders}")
    print(f"❌ Failed lifecycles: {len(failed)}/{num_orders}")
    print(f"🏁 Races with exactly one winner: {clean_races}/{len(races)}")
    print(f"🚚 Delivered: {sum(1 for r in results if r.get('winner') == 'READY_FOR_DELIVERY')}")
    print(f"🛍️  Picked up: {sum(1 for r in results if r.get('winner') == 'READY_FOR_PICKUP')}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        total_revenue = sum(r["total"] for r in successful)
        print(f"💰 Total Revenue: ${total_revenue:.2f}")

    if failed:
        print("\n⚠️  Failed details (first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'unknown error')}")

    print("\n" + "=" * 70)


def main() -> None:
    parser = argparse.ArgumentParser(description="Race order lifecycles against the API")
    parser.add_argument("--orders", type=int, default=20, help="Number of concurrent lifecycles")
    args = parser.parse_args()
    asyncio.run(run_simulation(args.orders))


if __name__ == "__main__":
    main()
