"""
Payment Gateway Registry - which gateways exist, whether they are active, and their fees.

Built-in defaults are overridden by rows in payment_gateways. When the
table can't be read the defaults are served. Credentials never live here.
"""

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import PaymentGateway
from app.exceptions import ResourceNotFoundError
from app.models.api import GatewayType
from app.models.domain import GatewayConfig

logger = get_logger(__name__)

DEFAULT_GATEWAYS: tuple[GatewayConfig, ...] = (
    GatewayConfig(
        id="orange_money",
        name="Orange Money",
        type=GatewayType.MOBILE_MONEY,
        is_active=True,
        fee_percentage=Decimal("1.5"),
        fee_fixed=Decimal("0"),
        supported_currencies=("XOF", "CFA"),
        description="Pay with your Orange Money account",
        icon="🟠",
    ),
    GatewayConfig(
        id="sama_money",
        name="SAMA Money",
        type=GatewayType.MOBILE_MONEY,
        is_active=True,
        fee_percentage=Decimal("1.2"),
        fee_fixed=Decimal("0"),
        supported_currencies=("XOF", "CFA"),
        description="Pay with your SAMA Money wallet",
        icon="💰",
    ),
    GatewayConfig(
        id="wave_money",
        name="Wave Money",
        type=GatewayType.MOBILE_MONEY,
        is_active=True,
        fee_percentage=Decimal("1.0"),
        fee_fixed=Decimal("0"),
        supported_currencies=("XOF", "CFA"),
        description="Pay with Wave",
        icon="🌊",
    ),
    GatewayConfig(
        id="moov_money",
        name="Moov Money",
        type=GatewayType.MOBILE_MONEY,
        is_active=True,
        fee_percentage=Decimal("1.8"),
        fee_fixed=Decimal("0"),
        supported_currencies=("XOF", "CFA"),
        description="Pay with Moov Money",
        icon="📱",
    ),
    GatewayConfig(
        id="bank_transfer",
        name="Bank Transfer",
        type=GatewayType.BANK_TRANSFER,
        is_active=True,
        fee_percentage=Decimal("0.5"),
        fee_fixed=Decimal("500"),
        supported_currencies=("XOF", "CFA", "USD", "EUR"),
        description="Direct bank transfer, confirmed manually",
        icon="🏦",
    ),
    GatewayConfig(
        id="stripe",
        name="Credit/Debit Card",
        type=GatewayType.CARD,
        is_active=True,
        fee_percentage=Decimal("2.9"),
        fee_fixed=Decimal("30"),
        supported_currencies=("USD", "EUR", "XOF"),
        description="Visa, Mastercard",
        icon="💳",
    ),
)

_UPDATABLE_FIELDS = frozenset(
    {"name", "is_active", "fee_percentage", "fee_fixed", "supported_currencies", "description"}
)

CENT = Decimal("0.01")

# Currencies priced in FCFA: memberships and Secours tokens
FCFA_CURRENCIES = frozenset({"XOF", "CFA"})


def calculate_fees(gateway: GatewayConfig, amount: Decimal) -> Decimal:
    """amount * fee_percentage / 100 + fee_fixed, exact."""
    return amount * gateway.fee_percentage / Decimal(100) + gateway.fee_fixed


def round_money(amount: Decimal) -> Decimal:
    """Round to the cent, half up, the precision amounts are stored at."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def get_total_amount(gateway: GatewayConfig, amount: Decimal) -> Decimal:
    """Amount the customer pays including fees."""
    return amount + calculate_fees(gateway, amount)


def _from_row(row: PaymentGateway) -> GatewayConfig:
    return GatewayConfig(
        id=row.id,
        name=row.name,
        type=GatewayType(row.type),
        is_active=row.is_active,
        fee_percentage=Decimal(row.fee_percentage),
        fee_fixed=Decimal(row.fee_fixed),
        supported_currencies=tuple(c.upper() for c in row.supported_currencies),
        description=row.description,
        icon=row.icon,
    )


def _to_row(gateway: GatewayConfig) -> PaymentGateway:
    return PaymentGateway(
        id=gateway.id,
        name=gateway.name,
        type=gateway.type.value,
        is_active=gateway.is_active,
        fee_percentage=gateway.fee_percentage,
        fee_fixed=gateway.fee_fixed,
        supported_currencies=list(gateway.supported_currencies),
        description=gateway.description,
        icon=gateway.icon,
    )


class GatewayRegistry:
    """
    In-memory gateway registry backed by the payment_gateways table.

    Usage:
        await gateway_registry.ensure_loaded(db)
        gateway = gateway_registry.get_gateway_by_id("orange_money")
        total = get_total_amount(gateway, Decimal("10000"))
    """

    def __init__(self, defaults: tuple[GatewayConfig, ...] = DEFAULT_GATEWAYS) -> None:
        self._defaults = {g.id: g for g in defaults}
        self._gateways: dict[str, GatewayConfig] = dict(self._defaults)
        self._loaded = False

    async def refresh(self, session: AsyncSession) -> None:
        """Reload from the database; fall back to defaults if it can't be read."""
        try:
            result = await session.execute(select(PaymentGateway))
            rows = result.scalars().all()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("gateway_registry_fallback_to_defaults", error=str(exc))
            self._gateways = dict(self._defaults)
            self._loaded = True
            return

        gateways = dict(self._defaults)
        for row in rows:
            gateways[row.id] = _from_row(row)
        self._gateways = gateways
        self._loaded = True

        logger.info("gateway_registry_loaded", overrides=len(rows), total=len(gateways))

    async def ensure_loaded(self, session: AsyncSession) -> None:
        """Load once per process."""
        if not self._loaded:
            await self.refresh(session)

    def get_all_gateways(self) -> list[GatewayConfig]:
        """Every known gateway."""
        return list(self._gateways.values())

    def get_active_gateways(self) -> list[GatewayConfig]:
        """Gateways with is_active set."""
        return [g for g in self._gateways.values() if g.is_active]

    def get_gateway_by_id(self, gateway_id: str) -> GatewayConfig | None:
        """Gateway by id, or None."""
        return self._gateways.get(gateway_id)

    async def update_gateway(
        self,
        gateway_id: str,
        changes: dict[str, Any],
        session: AsyncSession | None = None,
    ) -> GatewayConfig:
        """
        Change a gateway's settings.

        The in-memory registry always takes the change; the table is
        updated when a session is given and the database is reachable.

        Raises:
            ResourceNotFoundError: Unknown gateway id
            ValueError: Unknown field or invalid fee
        """
        current = self._gateways.get(gateway_id)
        if current is None:
            raise ResourceNotFoundError("PaymentGateway", gateway_id)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update gateway fields: {sorted(unknown)}")

        normalized = dict(changes)
        if "supported_currencies" in normalized:
            normalized["supported_currencies"] = tuple(
                c.upper() for c in normalized["supported_currencies"]
            )
        updated = replace(current, **normalized)
        self._gateways[gateway_id] = updated

        if session is not None:
            try:
                await session.merge(_to_row(updated))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "gateway_update_not_persisted", gateway_id=gateway_id, error=str(exc)
                )

        logger.info("gateway_updated", gateway_id=gateway_id, fields=sorted(changes))
        return updated


# Global registry
gateway_registry = GatewayRegistry()
