from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import Settings

# Base class for models
Base = declarative_base()


class Database:
    """
    Owns the async engine and session factory.

    Built once by the application factory and kept on ``app.state``;
    request handlers reach it through :func:`get_db`.
    """

    def __init__(
        self, url: str, echo: bool = False, pool_size: int = 10, max_overflow: int = 20
    ):
        engine_options = {"echo": echo}
        # SQLite uses a single-connection pool that rejects sizing options
        if not url.startswith("sqlite"):
            engine_options.update(pool_size=pool_size, max_overflow=max_overflow)

        self.url = url
        self.engine = create_async_engine(url, **engine_options)
        self.session_maker = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )

    async def init(self):
        """Initialize database (create tables)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database engine"""
        await self.engine.dispose()


async def get_db(request: Request):
    """Dependency for getting async database session"""
    database: Database = request.app.state.database
    async with database.session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
