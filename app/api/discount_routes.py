"""
Discount directory routes - public listing of partner sectors and merchants.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Merchant, Sector
from app.db.session import get_db
from app.models.api import MerchantResponse, SectorResponse
from app.services.discounts import DiscountService

router = APIRouter(prefix="/v1/discounts", tags=["discounts"])


def sector_response(sector: Sector) -> SectorResponse:
    return SectorResponse(
        id=sector.id,
        name=sector.name,
        description=sector.description,
        is_active=sector.is_active,
    )


def merchant_response(merchant: Merchant) -> MerchantResponse:
    return MerchantResponse(
        id=merchant.id,
        name=merchant.name,
        sector_id=merchant.sector_id,
        sector_name=merchant.sector.name if merchant.sector else None,
        discount_percentage=merchant.discount_percentage,
        location=merchant.location,
        contact_phone=merchant.contact_phone,
        contact_email=merchant.contact_email,
        description=merchant.description,
        website=merchant.website,
        is_active=merchant.is_active,
        featured=merchant.featured,
    )


@router.get("/sectors", response_model=list[SectorResponse])
async def list_sectors(db: AsyncSession = Depends(get_db)) -> list[SectorResponse]:
    """Active sectors."""
    sectors = await DiscountService(db).list_sectors(active_only=True)
    return [sector_response(s) for s in sectors]


@router.get("/merchants", response_model=list[MerchantResponse])
async def list_merchants(
    sector_id: UUID | None = Query(None),
    featured: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[MerchantResponse]:
    """Active merchants, featured first."""
    merchants = await DiscountService(db).list_merchants(
        sector_id=sector_id, featured=featured, active_only=True
    )
    return [merchant_response(m) for m in merchants]
