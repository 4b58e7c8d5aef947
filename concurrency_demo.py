"""Simple concurrency demo that double-submits the same trip request against the ASGI app.
Only one of the submissions should come back 201; the rest are 409.
This runs in-process and doesn't require the server to be started separately.
Run: python concurrency_demo.py
"""
import asyncio
from main import app, store
from db import init_db
from models import Role
import profiles
import httpx


async def run():
    init_db()
    driver = profiles.register_profile(f"demo.driver@{profiles.EMAIL_DOMAIN}", "Demo Driver")
    profiles.select_role(driver.id, Role.driver)
    passenger = profiles.register_profile(f"demo.passenger@{profiles.EMAIL_DOMAIN}", "Demo Passenger")
    profiles.select_role(passenger.id, Role.passenger)
    schedule = store.create_schedule(Role.driver, {
        "owner_id": driver.id, "day": "lunes", "departure_time": "07:00",
        "origin": "residencia", "destination": "universidad", "seats": 4,
    })
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        tasks = [
            client.post("/requests", json={"driver_schedule_id": schedule.id},
                        headers={"X-User-Id": str(passenger.id)})
            for _ in range(10)
        ]
        res = await asyncio.gather(*tasks)
        for r in res:
            print(r.status_code, r.json())


if __name__ == "__main__":
    asyncio.run(run())
