from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """Holds the session shared by every repository in one unit of work.

    The webhook creates a lead and its conversion event through two
    repositories on the same ``AsyncSession`` and commits once; dispatch
    workers do the same for status, integration and audit updates.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def commit(self) -> None:
        await self._db.commit()

    async def rollback(self) -> None:
        await self._db.rollback()
