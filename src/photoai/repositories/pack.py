"""Pack repository for photoai backend.

Packs are read-only from the job lifecycle's perspective; the write methods
exist for the import CLI and tests.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from photoai.models.pack import Pack, PackPrompt


class PackRepository:
    """Repository for Pack and PackPrompt entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, pack_id: UUID) -> Pack | None:
        result = await self.session.execute(select(Pack).where(Pack.id == pack_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str) -> Pack | None:
        result = await self.session.execute(select(Pack).where(Pack.name == name))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def list_prompts(self, pack_id: UUID) -> list[PackPrompt]:
        """Retrieve a pack's prompt templates in fan-out order.

        Args:
            pack_id: Pack's unique identifier

        Returns:
            Prompts ordered by position (ties broken by id for stable ordering)
        """
        result = await self.session.execute(
            select(PackPrompt)
            .where(PackPrompt.pack_id == pack_id)  # type: ignore[arg-type]
            .order_by(PackPrompt.position.asc(), PackPrompt.id.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def add(self, pack: Pack, prompts: list[str]) -> Pack:
        """Persist a pack together with its ordered prompts.

        Args:
            pack: Pack entity to persist
            prompts: Prompt templates, stored with their list index as position

        Returns:
            Persisted pack with generated ID
        """
        self.session.add(pack)
        await self.session.flush()
        self.session.add_all(
            [
                PackPrompt(pack_id=pack.id, position=position, prompt=prompt)
                for position, prompt in enumerate(prompts)
            ]
        )
        await self.session.flush()
        return pack
