"""
Discount Directory Service - partner sectors and merchants.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Merchant, Sector
from app.exceptions import DataIntegrityError, ResourceNotFoundError

logger = get_logger(__name__)


class DiscountService:
    """CRUD over sectors and merchants."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ========================================================================
    # Sectors
    # ========================================================================

    async def list_sectors(self, active_only: bool = False) -> list[Sector]:
        """Sectors ordered by name."""
        stmt = select(Sector).order_by(Sector.name)
        if active_only:
            stmt = stmt.where(Sector.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_sector(self, name: str, description: str = "", is_active: bool = True) -> Sector:
        """Add a sector. Names are unique."""
        sector = Sector(name=name, description=description, is_active=is_active)
        self.session.add(sector)
        await self._commit(f"Sector name already exists: {name}")

        logger.info("sector_created", sector_id=str(sector.id), name=name)
        return sector

    async def update_sector(self, sector_id: UUID, changes: dict[str, Any]) -> Sector:
        """Apply the provided fields."""
        sector = await self._get_sector(sector_id)
        for field_name, value in changes.items():
            setattr(sector, field_name, value)
        await self._commit(f"Sector name already exists: {changes.get('name')}")

        logger.info("sector_updated", sector_id=str(sector_id), fields=sorted(changes))
        return sector

    async def delete_sector(self, sector_id: UUID) -> None:
        """Remove a sector. Fails while merchants still reference it."""
        sector = await self._get_sector(sector_id)
        await self.session.delete(sector)
        await self._commit(f"Sector {sector_id} still has merchants")

        logger.info("sector_deleted", sector_id=str(sector_id))

    # ========================================================================
    # Merchants
    # ========================================================================

    async def list_merchants(
        self,
        sector_id: UUID | None = None,
        featured: bool | None = None,
        active_only: bool = False,
    ) -> list[Merchant]:
        """Merchants (with their sector), featured first then by name."""
        stmt = select(Merchant).order_by(Merchant.featured.desc(), Merchant.name)
        if sector_id is not None:
            stmt = stmt.where(Merchant.sector_id == sector_id)
        if featured is not None:
            stmt = stmt.where(Merchant.featured.is_(featured))
        if active_only:
            stmt = stmt.where(Merchant.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def create_merchant(self, fields: dict[str, Any]) -> Merchant:
        """Add a merchant under an existing sector."""
        sector = await self._get_sector(fields["sector_id"])
        merchant = Merchant(**{k: v for k, v in fields.items() if k != "sector_id"}, sector=sector)
        self.session.add(merchant)
        await self._commit("Merchant could not be created")

        logger.info(
            "merchant_created",
            merchant_id=str(merchant.id),
            sector_id=str(sector.id),
            discount_percentage=str(merchant.discount_percentage),
        )
        return merchant

    async def update_merchant(self, merchant_id: UUID, changes: dict[str, Any]) -> Merchant:
        """Apply the provided fields."""
        merchant = await self._get_merchant(merchant_id)
        changes = dict(changes)
        if "sector_id" in changes:
            merchant.sector = await self._get_sector(changes.pop("sector_id"))
        for field_name, value in changes.items():
            setattr(merchant, field_name, value)
        await self._commit(f"Merchant {merchant_id} could not be updated")

        logger.info("merchant_updated", merchant_id=str(merchant_id), fields=sorted(changes))
        return merchant

    async def delete_merchant(self, merchant_id: UUID) -> None:
        """Remove a merchant."""
        merchant = await self._get_merchant(merchant_id)
        await self.session.delete(merchant)
        await self.session.commit()

        logger.info("merchant_deleted", merchant_id=str(merchant_id))

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _get_sector(self, sector_id: UUID) -> Sector:
        sector = await self.session.get(Sector, sector_id)
        if sector is None:
            raise ResourceNotFoundError("Sector", str(sector_id))
        return sector

    async def _get_merchant(self, merchant_id: UUID) -> Merchant:
        merchant = await self.session.get(Merchant, merchant_id)
        if merchant is None:
            raise ResourceNotFoundError("Merchant", str(merchant_id))
        return merchant

    async def _commit(self, conflict_message: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise DataIntegrityError(conflict_message) from exc
