from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.common.errors import EmailTaken
from atelier.schema.full_schema import User


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    stmt = select(User).where(User.email == email)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    return await session.get(User, user_id)


async def count_users(session: AsyncSession) -> int:
    res = await session.execute(select(func.count()).select_from(User))
    return int(res.scalar_one())


async def insert_user(session: AsyncSession, email: str, password_hash: str, name: Optional[str], role: str) -> User:
    user = User(email=email, password_hash=password_hash, name=name, role=role)
    session.add(user)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise EmailTaken(f"Email {email} is already registered")
    return user
