from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    # session opens on first execute and is closed (rolling back anything uncommitted) at the end of the with block
    async with request.app.state.session_maker() as session:
        yield session
