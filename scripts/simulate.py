"""
Rush Hour Simulation Script

Fires a burst of concurrent orders at one table's restaurant, then walks
part of them through the kitchen lifecycle and prints the kitchen load.
Run from project root after seeding: python scripts/simulate.py --restaurant <id> --table <id>
"""

import argparse
import asyncio
import random
import sys
import time
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

API_BASE_URL = "http://localhost:3001"
TOTAL_ORDERS = 50

CUSTOMER_NAMES = ["Sokha", "Dara", "Vanna", "Sophea", "Rithy", "Chenda", "Bopha", "Piseth"]
ORDER_NOTES = [None, "No peanuts", "Extra rice", "Share plates", "Birthday table"]
LIFECYCLE = ["confirmed", "preparing", "ready", "served"]


# =============================================================================
# MENU
# =============================================================================

async def fetch_orderable_variants(
    client: httpx.AsyncClient, restaurant_id: str
) -> list[dict[str, Any]]:
    """Flatten the menu into (menu_item_id, variant_id, price) choices."""
    response = await client.get(f"{API_BASE_URL}/api/restaurants/{restaurant_id}/menu")
    response.raise_for_status()

    choices = []
    for category in response.json()["categories"]:
        for item in category["items"]:
            for variant in item["variants"]:
                choices.append({
                    "menu_item_id": item["id"],
                    "variant_id": variant["id"],
                    "name": f"{item['name']} ({variant['size']})",
                    "price": Decimal(variant["price"]),
                })
    return choices


def generate_order_payload(table_id: str, choices: list[dict[str, Any]]) -> dict[str, Any]:
    lines = random.sample(choices, k=min(len(choices), random.randint(1, 4)))
    return {
        "table_id": table_id,
        "customer": {
            "telegram_id": random.randint(100_000, 999_999_999),
            "name": random.choice(CUSTOMER_NAMES),
        },
        "items": [
            {
                "menu_item_id": line["menu_item_id"],
                "variant_id": line["variant_id"],
                "quantity": random.randint(1, 3),
                "spice_level": random.choice(["none", "mild", "medium", "spicy"]),
            }
            for line in lines
        ],
        "notes": random.choice(ORDER_NOTES),
    }


# =============================================================================
# ORDERS
# =============================================================================

async def send_order(
    client: httpx.AsyncClient,
    order_num: int,
    table_id: str,
    choices: list[dict[str, Any]],
) -> dict[str, Any]:
    payload = generate_order_payload(table_id, choices)
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
    except httpx.HTTPError as e:
        return {"order_num": order_num, "success": False, "error": str(e)[:100],
                "time": round(time.time() - start_time, 3)}

    elapsed = round(time.time() - start_time, 3)
    if response.status_code != 201:
        return {"order_num": order_num, "success": False, "error": response.text[:100], "time": elapsed}

    data = response.json()["data"]
    return {
        "order_num": order_num,
        "success": True,
        "order_id": data["id"],
        "order_number": data["order_number"],
        "total": Decimal(data["total_amount"]),
        "estimate": data["estimated_preparation_minutes"],
        "time": elapsed,
    }


async def advance_order(client: httpx.AsyncClient, order_id: str, steps: int) -> str:
    """Move an order `steps` statuses along its lifecycle; returns the last status reached."""
    status = "pending"
    for target in LIFECYCLE[:steps]:
        response = await client.patch(
            f"{API_BASE_URL}/api/orders/{order_id}/status",
            json={"status": target},
            timeout=30.0,
        )
        if response.status_code != 200:
            print(f"   ⚠️ {order_id}: {status} → {target} rejected: {response.text[:80]}")
            break
        status = target
    return status


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(restaurant_id: str, table_id: str, num_orders: int) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 RUSH HOUR SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        choices = await fetch_orderable_variants(client, restaurant_id)
        if not choices:
            print("\n❌ Menu has nothing orderable. Seed it first: python scripts/seed.py")
            return {"total": num_orders, "successful": 0, "failed": num_orders}

        start_time = time.time()
        results = await asyncio.gather(
            *(send_order(client, i + 1, table_id, choices) for i in range(num_orders))
        )
        total_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print(f"\n✅ Successful Orders: {len(successful)}/{num_orders}")
        print(f"❌ Failed Orders: {len(failed)}/{num_orders}")
        print(f"⏱️  Total Time: {total_time}s")

        if successful:
            avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
            revenue = sum((r["total"] for r in successful), Decimal("0.00"))
            estimates = [r["estimate"] for r in successful]
            print("\n📈 Performance Metrics:")
            print(f"   Average Response: {avg_time}s")
            print(f"   Estimates: {min(estimates)}-{max(estimates)} min")
            print(f"   💰 Total Revenue: ${revenue}")

        if failed:
            print("\n⚠️  Failed Order Details (showing first 5):")
            for f in failed[:5]:
                print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

        print("\n🍳 Walking half of the orders through the kitchen...")
        reached = await asyncio.gather(
            *(advance_order(client, r["order_id"], random.randint(1, len(LIFECYCLE)))
              for r in successful[: len(successful) // 2])
        )
        for status in LIFECYCLE:
            print(f"   {status:<10} {reached.count(status)}")

        response = await client.get(f"{API_BASE_URL}/api/kitchen/load/{restaurant_id}")
        if response.status_code == 200:
            load = response.json()
            print("\n📊 Kitchen Load:")
            print(f"   Active orders: {load['current_orders']}")
            print(f"   Average preparation: {load['average_preparation_time']} min")
            print(f"   Level: {load['load_level']}")
        else:
            print(f"\n❌ Kitchen load unavailable: {response.text[:100]}")

        response = await client.get(f"{API_BASE_URL}/api/restaurants/{restaurant_id}/kitchen-status")
        if response.status_code == 200:
            status = response.json()
            print(f"   Quoted wait for a new order: {status['estimated_wait_minutes']} min")
            for name, count in status["orders_by_status"].items():
                print(f"   {name:<10} {count}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


async def check_health() -> bool:
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health")
        except httpx.HTTPError as e:
            print(f"❌ API unreachable: {e}")
            return False
    data = response.json()
    print(f"🩺 Health: {data.get('status')} (database: {data.get('database')}, redis: {data.get('redis')})")
    return data.get("database") == "healthy"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Rush Hour Simulation Script")
    parser.add_argument("--restaurant", required=True, help="Restaurant id")
    parser.add_argument("--table", required=True, help="Table id")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--base-url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.base_url.rstrip("/")

    if not asyncio.run(check_health()):
        print("\n❌ Pre-flight check failed. Fix issues before running simulation.")
        sys.exit(1)

    asyncio.run(run_simulation(args.restaurant, args.table, args.orders))
