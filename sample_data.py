from db import init_db
from models import Role, Day, Place
from store import SQLStore
import profiles
import random


def seed():
    init_db()
    store = SQLStore()
    # add users: even ones drive, odd ones ride
    users = []
    for i in range(1, 21):
        p = profiles.register_profile(f"user{i}@{profiles.EMAIL_DOMAIN}", f"Usuario {i}", zone=random.choice(["Norte", "Sur", "Oeste"]))
        role = Role.driver if i % 2 == 0 else Role.passenger
        users.append(profiles.select_role(p.id, role))
    days = [d.value for d in Day][:5]
    for i in range(1, 41):
        u = users[(i - 1) % len(users)]
        origin = random.choice([p.value for p in Place])
        destination = Place.universidad.value if origin == Place.residencia.value else Place.residencia.value
        # departures between 06:00 and 09:45, quarter-hour steps
        minutes = 6 * 60 + random.randrange(0, 16) * 15
        fields = {
            "owner_id": u.id,
            "day": random.choice(days),
            "origin": origin,
            "destination": destination,
            "zone": u.zone,
        }
        if u.role == Role.driver.value:
            fields["departure_time"] = f"{minutes // 60:02d}:{minutes % 60:02d}"
            fields["seats"] = random.choice([2, 3, 4])
        else:
            fields["approx_time"] = f"{minutes // 60:02d}:{minutes % 60:02d}"
            fields["flexibility_minutes"] = random.choice([15, 30, 45])
        store.create_schedule(u.role, fields)
    print("Seeded sample data")
    return users


if __name__ == "__main__":
    seed()
