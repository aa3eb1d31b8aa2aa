"""
Idempotent bootstrap: reference cities/sports and the first super admin.

The super admin is the root of the registration hierarchy and cannot be
created through the API, so it is seeded here (on startup when
BOOTSTRAP_SUPER_ADMIN_EMAIL/PASSWORD are set, or from demo/seed.py).
Running any of these functions twice changes nothing.
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.models.reference import City, Sport
from mowesport.models.user import AccountStatus, PrimaryRole, User
from mowesport.security import hash_password

logger = logging.getLogger(__name__)


REFERENCE_CITIES = [
    ("Medellín", "Antioquia"),
    ("Bogotá", "Cundinamarca"),
    ("Cali", "Valle del Cauca"),
    ("Barranquilla", "Atlántico"),
    ("Cartagena", "Bolívar"),
    ("Bucaramanga", "Santander"),
    ("Pereira", "Risaralda"),
    ("Manizales", "Caldas"),
    ("Ibagué", "Tolima"),
    ("Pasto", "Nariño"),
    ("Santa Marta", "Magdalena"),
    ("Villavicencio", "Meta"),
]

REFERENCE_SPORTS = [
    ("Fútbol", "Fútbol asociación"),
    ("Baloncesto", "Deporte de equipo jugado en cancha cubierta"),
    ("Voleibol", "Deporte de equipo con red divisoria"),
    ("Tenis", "Deporte de raqueta individual o dobles"),
    ("Natación", "Deporte acuático individual"),
    ("Atletismo", "Conjunto de disciplinas de pista y campo"),
    ("Ciclismo", "Deporte sobre bicicleta"),
    ("Fútbol Sala", "Variante del fútbol en espacios reducidos"),
    ("Béisbol", "Deporte de equipo con bate y pelota"),
]


async def seed_reference_data(db: AsyncSession) -> tuple[int, int]:
    """Insert missing cities and sports by name; returns (cities_added, sports_added)."""
    existing_cities = set((await db.execute(select(City.name))).scalars().all())
    existing_sports = set((await db.execute(select(Sport.name))).scalars().all())

    new_cities = [
        City(name=name, region=region) for name, region in REFERENCE_CITIES if name not in existing_cities
    ]
    new_sports = [
        Sport(name=name, description=description)
        for name, description in REFERENCE_SPORTS
        if name not in existing_sports
    ]
    db.add_all(new_cities + new_sports)
    await db.flush()

    if new_cities or new_sports:
        logger.info(f"Seeded {len(new_cities)} cities and {len(new_sports)} sports")
    return len(new_cities), len(new_sports)


async def ensure_super_admin(
    db: AsyncSession,
    email: str,
    password: str,
    first_name: str = "Super",
    last_name: str = "Admin",
) -> User:
    """Return the super admin with `email`, creating it if absent."""
    email = email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is not None:
        return user

    user = User(
        email=email,
        password_hash=await asyncio.to_thread(hash_password, password),
        first_name=first_name,
        last_name=last_name,
        primary_role=PrimaryRole.SUPER_ADMIN,
        is_active=True,
        account_status=AccountStatus.ACTIVE,
        failed_login_attempts=0,
        two_factor_enabled=False,
    )
    db.add(user)
    await db.flush()
    logger.info(f"Created super admin {email}")
    return user


async def bootstrap(db: AsyncSession, super_admin_email: str | None, super_admin_password: str | None) -> None:
    await seed_reference_data(db)
    if super_admin_email and super_admin_password:
        await ensure_super_admin(db, super_admin_email, super_admin_password)
    await db.commit()
