import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models, schemas
from .auth import hash_password, verify_password
from .config import Settings
from .errors import Conflict, InvalidInput, Unauthenticated
from .utils import sanitize_text

logger = logging.getLogger(__name__)


async def get_user_by_login(db: AsyncSession, login: str) -> models.User | None:
    result = await db.execute(
        select(models.User).filter(or_(models.User.username == login, models.User.email == login))
    )
    return result.scalars().first()


async def create_user(db: AsyncSession, data: schemas.RegisterRequest) -> models.User:
    # Explicit lookup first so the client learns which field clashes; the
    # unique constraints still catch concurrent registrations.
    result = await db.execute(
        select(models.User).filter(
            or_(models.User.username == data.username, models.User.email == data.email)
        )
    )
    for existing in result.scalars():
        if existing.username == data.username:
            raise Conflict("username already exists")
        raise Conflict("email already exists")

    user = models.User(
        fullname=sanitize_text(data.fullname),
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        role=models.Role.buyer,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("username or email already exists") from e
    await db.refresh(user)
    return user


async def authenticate(db: AsyncSession, login: str | None, password: str | None) -> models.User:
    if not login or not password:
        raise InvalidInput("username and password are required")
    user = await get_user_by_login(db, login)
    if not user or not verify_password(password, user.password_hash):
        raise Unauthenticated("invalid credentials")
    return user


async def ensure_admin(db: AsyncSession, settings: Settings) -> models.User | None:
    """Create the configured admin account unless it already exists."""
    existing = await get_user_by_login(db, settings.admin_username)
    if existing:
        return None
    admin = models.User(
        fullname="Administrator",
        username=settings.admin_username,
        email=settings.admin_email,
        password_hash=hash_password(settings.admin_password),
        role=models.Role.admin,
    )
    db.add(admin)
    await db.commit()
    await db.refresh(admin)
    logger.info("seeded admin account %r", admin.username)
    return admin
