"""Seed a handful of verified, complete demo profiles for local development."""
import asyncio

from sqlalchemy import select

from unimatch.database import async_session_factory
from unimatch.models.user import User
from unimatch.utils.validators import university_from_email

DEMO_UNIVERSITY = "demo.edu"

DEMO_USERS = [
    ("alex", "Alex", "Morgan", 21, "male", "female", "Computer Science", 3, (51.5074, -0.1278)),
    ("sam", "Sam", "Rivera", 22, "female", "male", "Mathematics", 4, (51.5155, -0.0922)),
    ("jo", "Jo", "Okafor", 20, "female", "both", "History", 2, (51.5033, -0.1196)),
    ("kai", "Kai", "Lindqvist", 24, "non-binary", "both", "Physics", 5, (51.4975, -0.1357)),
    ("ria", "Ria", "Patel", 19, "female", "female", "Medicine", 1, (0.0, 0.0)),
]


async def seed():
    async with async_session_factory() as session:
        for handle, first, last, age, gender, interested_in, course, year, (lat, lon) in DEMO_USERS:
            email = f"{handle}@{DEMO_UNIVERSITY}"
            existing = await session.execute(select(User).where(User.email == email))
            if existing.scalar_one_or_none() is not None:
                print(f"  {email} already exists, skipping.")
                continue

            user = User(
                email=email,
                is_email_verified=True,
                first_name=first,
                last_name=last,
                age=age,
                gender=gender,
                interested_in=interested_in,
                university=university_from_email(email),
                course=course,
                year=year,
                bio=f"{course} student, year {year}.",
                photos=[{"url": f"https://picsum.photos/seed/{handle}/600/800", "is_main": True}],
                latitude=lat,
                longitude=lon,
            )
            user.refresh_profile_completed()
            session.add(user)
            print(f"  Seeded {email}")
        await session.commit()
    print("Done seeding users.")


if __name__ == "__main__":
    asyncio.run(seed())
