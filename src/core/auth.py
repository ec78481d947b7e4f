"""
Caller identity for the HTTP seam.

Authentication itself happens upstream: the auth gateway verifies the caller and
forwards a trusted ``X-User-Id`` header naming the user. In DEV_MODE a local
development user is used instead.
"""
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import get_async_session
from models.user import User

DEV_USER_EXTERNAL_ID = "dev|local-development-user"


async def get_or_create_user(
    db: AsyncSession,
    external_id: str,
    email: str | None = None,
) -> User:
    """
    Get existing user or create new one for an upstream identity.

    Handles the race where two concurrent first requests for the same identity both
    try to insert: the loser's insert is rolled back to a SAVEPOINT and the winner's
    row is re-read.

    Note: Uses flush(), not commit. Session generator handles commit at request end.
    """
    result = await db.execute(select(User).where(User.external_id == external_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(external_id=external_id, email=email)
        try:
            async with db.begin_nested():
                db.add(user)
                await db.flush()
        except IntegrityError:
            result = await db.execute(select(User).where(User.external_id == external_id))
            user = result.scalar_one()
    elif email and user.email != email:
        user.email = email
        await db.flush()

    return user


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create a development user for DEV_MODE."""
    return await get_or_create_user(
        db,
        external_id=DEV_USER_EXTERNAL_ID,
        email="dev@localhost",
    )


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_email: str | None = Header(default=None),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Dependency that returns the current user.

    In DEV_MODE, bypasses the gateway header and returns a local dev user.
    """
    if settings.dev_mode:
        return await get_or_create_dev_user(db)

    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    return await get_or_create_user(db, external_id=x_user_id.strip(), email=x_user_email)
