#!/usr/bin/env python3
"""
Demo seed script — reference data, a super admin and a small hierarchy.

!! NOT FOR PRODUCTION !!
This script creates users with known passwords. It is intended ONLY for
local demos and frontend development.

It talks to the database directly (the super admin cannot be created over
the API) and drives the real registration and password-change services, so
every account goes through the same validation and audit trail as in
production. Welcome mails are captured in memory instead of being sent.

Usage:
    JWT_SECRET=... TOTP_ENCRYPTION_KEY=... python demo/seed.py

    # Delete the SQLite database and exit:
    python demo/seed.py --reset

Login credentials after seeding:
    ┌──────────────────────────────┬───────────────────┬─────────────┐
    │ Email                        │ Password          │ Role        │
    ├──────────────────────────────┼───────────────────┼─────────────┤
    │ root@mowesport.com           │ RootDemo123!      │ super_admin │
    │ laura.bogota@example.com     │ LauraDemo123!     │ city_admin  │
    │ andres.medellin@example.com  │ AndresDemo123!    │ city_admin  │
    │ diego.owner@example.com      │ DiegoDemo123!     │ owner       │
    │ sofia.referee@example.com    │ SofiaDemo123!     │ referee     │
    └──────────────────────────────┴───────────────────┴─────────────┘
"""

import argparse
import asyncio
import os
import re
import sys

from sqlalchemy import select
from sqlalchemy.engine import make_url

from mowesport.bootstrap import ensure_super_admin, seed_reference_data
from mowesport.config import settings
from mowesport.database import AsyncSessionLocal, Base, engine
from mowesport.exceptions import ConflictError
from mowesport.models.reference import City, Sport
from mowesport.models.user import PrimaryRole, User
from mowesport.schemas.admin import RegistrationRequest
from mowesport.services.audit_service import RequestContext
from mowesport.services.container import build_services

import mowesport.models  # noqa: F401

CONTEXT = RequestContext(ip_address="127.0.0.1", user_agent="demo-seed")

# ---------------------------------------------------------------------------
# Demo users
# ---------------------------------------------------------------------------

SUPER_ADMIN = {
    "email": "root@mowesport.com",
    "password": "RootDemo123!",
}

CITY_ADMINS = [
    {
        "email": "laura.bogota@example.com",
        "password": "LauraDemo123!",
        "first_name": "Laura",
        "last_name": "Gómez",
        "phone": "+573001112233",
        "city": "Bogotá",
        "sport": "Fútbol",
    },
    {
        "email": "andres.medellin@example.com",
        "password": "AndresDemo123!",
        "first_name": "Andrés",
        "last_name": "Restrepo",
        "phone": "+573004445566",
        "city": "Medellín",
        "sport": "Baloncesto",
    },
]

# Registered by the first city admin, in that admin's scope
SCOPED_USERS = [
    {
        "email": "diego.owner@example.com",
        "password": "DiegoDemo123!",
        "first_name": "Diego",
        "last_name": "Martínez",
        "role": PrimaryRole.OWNER,
    },
    {
        "email": "sofia.referee@example.com",
        "password": "SofiaDemo123!",
        "first_name": "Sofía",
        "last_name": "Herrera",
        "role": PrimaryRole.REFEREE,
    },
]


class CapturingDispatcher:
    """Keeps the last mail per recipient so the seed can read temporary passwords."""

    def __init__(self):
        self.bodies: dict[str, str] = {}

    async def send(self, to: str, subject: str, body: str, is_html: bool = False) -> None:
        self.bodies[to] = body

    def temporary_password(self, email: str) -> str:
        match = re.search(r"^Temporary password: (\S+)$", self.bodies[email], re.MULTILINE)
        return match.group(1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


async def lookup_ids(db) -> tuple[dict, dict]:
    cities = {c.name: c.id for c in (await db.execute(select(City))).scalars()}
    sports = {s.name: s.id for s in (await db.execute(select(Sport))).scalars()}
    return cities, sports


async def activate(services, mailbox: CapturingDispatcher, email: str, password: str) -> None:
    """Replace the mailed temporary password with the demo password."""
    temporary = mailbox.temporary_password(email)
    async with AsyncSessionLocal() as db:
        user = (await db.execute(select(User).where(User.email == email))).scalar_one()
        await services.auth.change_password(db, user, temporary, password, password, CONTEXT)
        await db.commit()


async def register(services, mailbox, caller_email: str, person: dict, role: PrimaryRole,
                   city_id, sport_id) -> bool:
    payload = RegistrationRequest(
        email=person["email"],
        first_name=person["first_name"],
        last_name=person["last_name"],
        phone=person.get("phone"),
        city_id=city_id,
        sport_id=sport_id,
    )
    async with AsyncSessionLocal() as db:
        caller = (await db.execute(select(User).where(User.email == caller_email))).scalar_one()
        try:
            if role == PrimaryRole.CITY_ADMIN:
                await services.registration.register_admin(db, caller, payload, CONTEXT)
            else:
                await services.registration.register_user(db, caller, payload, role, CONTEXT)
        except ConflictError as exc:
            await db.commit()
            log(f"Skipping {person['email']}: {exc.message}")
            return False
        await db.commit()

    await activate(services, mailbox, person["email"], person["password"])
    return True


# ---------------------------------------------------------------------------
# Seed
# ---------------------------------------------------------------------------

async def seed() -> None:
    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    print("Seeding reference data and super admin...")
    async with AsyncSessionLocal() as db:
        cities_added, sports_added = await seed_reference_data(db)
        await ensure_super_admin(db, SUPER_ADMIN["email"], SUPER_ADMIN["password"])
        await db.commit()
        cities, sports = await lookup_ids(db)
    log(f"{cities_added} cities and {sports_added} sports added")
    log(f"Super admin: {SUPER_ADMIN['email']} / {SUPER_ADMIN['password']}")

    mailbox = CapturingDispatcher()
    services = build_services(settings, email_dispatcher=mailbox)

    print("\nRegistering city admins...")
    for admin in CITY_ADMINS:
        created = await register(
            services, mailbox, SUPER_ADMIN["email"], admin, PrimaryRole.CITY_ADMIN,
            cities[admin["city"]], sports[admin["sport"]],
        )
        if created:
            log(f"{admin['first_name']} {admin['last_name']}: {admin['sport']} - {admin['city']}")

    first_admin = CITY_ADMINS[0]
    print(f"\nRegistering users in {first_admin['sport']} - {first_admin['city']}...")
    for person in SCOPED_USERS:
        created = await register(
            services, mailbox, first_admin["email"], person, person["role"],
            cities[first_admin["city"]], sports[first_admin["sport"]],
        )
        if created:
            log(f"{person['role'].value}: {person['first_name']} {person['last_name']}")

    await engine.dispose()

    # --- Summary ---
    print("\n========================================")
    print("  SEED COMPLETE — Login Credentials")
    print("========================================")
    print(f"\n  {'Email':<30s} {'Password':<20s} {'Role'}")
    print(f"  {'─' * 30} {'─' * 20} {'─' * 11}")
    print(f"  {SUPER_ADMIN['email']:<30s} {SUPER_ADMIN['password']:<20s} super_admin")
    for admin in CITY_ADMINS:
        print(f"  {admin['email']:<30s} {admin['password']:<20s} city_admin")
    for person in SCOPED_USERS:
        print(f"  {person['email']:<30s} {person['password']:<20s} {person['role'].value}")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the next start recreates it."""
    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("sqlite") or not url.database:
        print(f"\n  Refusing to reset a non-file database: {url.render_as_string(hide_password=True)}\n")
        sys.exit(1)

    db_path = os.path.normpath(url.database)
    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates reference data, a super admin and sample city admins, owners and referees.",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the SQLite database file and exit",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed()


if __name__ == "__main__":
    asyncio.run(main())
