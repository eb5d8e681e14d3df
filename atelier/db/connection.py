from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from atelier.config.settings import Settings
from atelier.db.utils import _normalize_db_url


def build_engine(settings: Settings) -> AsyncEngine:
    url = _normalize_db_url(settings.DATABASE_URL)
    return create_async_engine(url, echo=settings.DB_ECHO)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
