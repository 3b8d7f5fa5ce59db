"""
Chaos Simulation Script

Drives the running API with concurrent traffic to check the lifecycle holds
up under races: restaurants and the auto-accept racing to confirm, riders
racing for the same order, customers rating what was delivered and redeeming points.

Run from project root (API on localhost:8001, ENV_MODE=development):
    python scripts/simulate.py --orders 20
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any, Optional

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 20
RESTAURANT_ID = "rest-sim-001"

MENU = [
    {"name": "Jollof Rice", "basePrice": 2500.0},
    {"name": "Fried Plantain", "basePrice": 800.0},
    {"name": "Suya Platter", "basePrice": 4200.0},
    {"name": "Pepper Soup", "basePrice": 3100.0},
    {"name": "Chapman", "basePrice": 1200.0},
]
RIDERS = ["rider-ada", "rider-bayo", "rider-chi"]


async def seed_menu(client: httpx.AsyncClient) -> list[str]:
    """Create the menu and return the item ids."""
    ids = []
    for item in MENU:
        response = await client.post(f"{API_BASE_URL}/api/restaurants/{RESTAURANT_ID}/menu", json=item)
        response.raise_for_status()
        ids.append(response.json()["data"]["id"])
    return ids


def generate_order_payload(menu_ids: list[str], customer_num: int) -> dict[str, Any]:
    return {
        "customerId": f"cust-{customer_num:03d}",
        "restaurantId": RESTAURANT_ID,
        "items": [
            {"menuItemId": item_id, "quantity": random.randint(1, 3)}
            for item_id in random.sample(menu_ids, random.randint(1, 3))
        ],
        "deliveryAddress": {"street": f"{random.randint(1, 99)} Admiralty Way", "city": "Lagos"},
        "deliveryFee": 500.0,
        "contactPhone": f"+23480{random.randint(10000000, 99999999)}",
    }


async def patch_status(
    client: httpx.AsyncClient,
    order_id: str,
    status: str,
    reason: Optional[str] = None,
) -> httpx.Response:
    return await client.patch(
        f"{API_BASE_URL}/api/orders/restaurant/{order_id}",
        json={"status": status, "restaurantId": RESTAURANT_ID, "rejectionReason": reason},
    )


async def run_order(client: httpx.AsyncClient, menu_ids: list[str], order_num: int) -> dict[str, Any]:
    """Place one order and walk it through its whole life."""
    start_time = time.time()
    result: dict[str, Any] = {"order_num": order_num, "success": False, "conflicts": 0}

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/orders",
            json=generate_order_payload(menu_ids, order_num % 7),
            timeout=30.0,
        )
        if response.status_code != 201:
            result["error"] = response.text[:100]
            return result
        order = response.json()["data"]
        order_id = order["id"]
        result["total"] = order["total"]

        # Some restaurants reject
        if random.random() < 0.15:
            response = await patch_status(client, order_id, "cancelled", "Out of ingredients")
            result["success"] = response.status_code == 200
            result["final"] = "cancelled"
            return result

        # Double-clicked confirm: exactly one wins
        confirms = await asyncio.gather(
            patch_status(client, order_id, "confirmed"),
            patch_status(client, order_id, "confirmed"),
        )
        codes = sorted(r.status_code for r in confirms)
        result["conflicts"] += sum(1 for c in codes if c in (400, 409))

        for status in ("preparing", "ready"):
            response = await patch_status(client, order_id, status)
            response.raise_for_status()

        # Riders race for the order
        accepts = await asyncio.gather(*[
            client.post(f"{API_BASE_URL}/api/riders/orders/accept", json={"orderId": order_id, "riderId": rider})
            for rider in RIDERS
        ])
        winners = [RIDERS[i] for i, r in enumerate(accepts) if r.status_code == 200]
        result["conflicts"] += len(RIDERS) - len(winners)
        if len(winners) != 1:
            result["error"] = f"{len(winners)} riders won the race"
            return result
        rider_id = winners[0]

        for step in ("pickup", "deliver"):
            response = await client.post(
                f"{API_BASE_URL}/api/riders/orders/{order_id}/{step}", json={"riderId": rider_id}
            )
            response.raise_for_status()

        response = await client.post(f"{API_BASE_URL}/api/ratings", json={
            "customerId": order["customer_id"],
            "orderId": order_id,
            "targetType": "restaurant",
            "targetId": RESTAURANT_ID,
            "score": random.randint(3, 5),
            "categories": {"food_quality": random.randint(3, 5)},
        })
        response.raise_for_status()

        result["success"] = True
        result["final"] = "delivered"
        return result

    except httpx.HTTPError as e:
        result["error"] = str(e)[:100]
        return result
    finally:
        result["time"] = round(time.time() - start_time, 3)


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    """
    Run the chaos simulation.

    Args:
        num_orders: Number of orders to simulate
    """
    print("=" * 70)
    print("CHAOS SIMULATION - ORDER LIFECYCLE UNDER CONCURRENCY")
    print("=" * 70)
    print(f"Total Orders: {num_orders}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(f"{API_BASE_URL}/health")
        print(f"\nHealth: {response.json().get('status')}")

        menu_ids = await seed_menu(client)
        print(f"Seeded {len(menu_ids)} menu items\n")

        results = await asyncio.gather(*[
            run_order(client, menu_ids, i + 1) for i in range(num_orders)
        ])

        summary = await client.get(f"{API_BASE_URL}/api/ratings/restaurant/{RESTAURANT_ID}")
        rewards = await client.get(f"{API_BASE_URL}/api/rewards/cust-001")

        # Spend what cust-001 earned on the smallest tier
        redemption = await client.post(
            f"{API_BASE_URL}/api/rewards/cust-001/redeem", json={"points": 100}
        )

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"\nSuccessful Orders: {len(successful)}/{num_orders}")
    print(f"Failed Orders: {len(failed)}/{num_orders}")
    print(f"Lost races (expected): {sum(r['conflicts'] for r in results)}")
    print(f"Total Time: {total_time}s")

    if successful:
        print(f"Delivered: {sum(1 for r in successful if r.get('final') == 'delivered')}")
        print(f"Rejected: {sum(1 for r in successful if r.get('final') == 'cancelled')}")
        print(f"Total Revenue: N{sum(r.get('total', 0) for r in successful):,.2f}")

    if summary.status_code == 200:
        data = summary.json()["data"]
        print(f"\nRestaurant rating: {data['average']} over {data['total']} ({data['trend']})")
    if rewards.status_code == 200:
        data = rewards.json()["data"]
        print(f"cust-001 points: {data['current_points']} (lifetime {data['lifetime_points']})")
    if redemption.status_code == 200:
        data = redemption.json()["data"]
        print(f"Redeemed 100 points for N{data['discount_amount']:,.2f} ({data['current_points']} left)")
    else:
        print(f"Redemption refused: {redemption.json().get('error')}")

    if failed:
        print("\nFailed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)

    return {
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "total_time": total_time,
        "results": results,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    outcome = asyncio.run(run_simulation(args.orders))
    sys.exit(0 if outcome["failed"] == 0 else 1)
