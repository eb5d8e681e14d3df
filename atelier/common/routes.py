from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.common.utils import success_response
from atelier.db.dependencies import get_session

home_router = APIRouter()


@home_router.get("/health")
async def health_check(request: Request, session: AsyncSession = Depends(get_session)):
    # failures propagate to the fallback handler as a logged 500
    await session.execute(text("SELECT 1"))
    await request.app.state.redis.ping()
    return success_response({"status": "healthy"})
