"""
Create the note tables directly from the models.

For throwaway local databases; deployments run `alembic upgrade head`.
"""
import asyncio

from app.database import engine
from app.models.base import Base
from app.models.note import NoteAttemptRecord, NoteRecord  # noqa: F401


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
