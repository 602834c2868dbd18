"""
Tests for the Payment Gateway Registry.

Fee arithmetic, active filtering, updates and database fallback.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import PaymentGateway
from app.exceptions import ResourceNotFoundError
from app.services.gateway_registry import (
    DEFAULT_GATEWAYS,
    GatewayRegistry,
    calculate_fees,
    get_total_amount,
    round_money,
)
from tests.conftest import make_result


class TestFees:
    """Tests for calculate_fees / get_total_amount."""

    def test_orange_money_fee_on_10000(self):
        """1.5% of 10000 is 150; total 10150."""
        registry = GatewayRegistry()
        gateway = registry.get_gateway_by_id("orange_money")

        assert calculate_fees(gateway, Decimal("10000")) == Decimal("150")
        assert get_total_amount(gateway, Decimal("10000")) == Decimal("10150")

    @pytest.mark.parametrize("gateway", DEFAULT_GATEWAYS, ids=lambda g: g.id)
    def test_every_default_gateway_uses_percentage_plus_fixed(self, gateway):
        """fees = amount * pct / 100 + fixed for each default gateway."""
        amount = Decimal("25000")
        expected = amount * gateway.fee_percentage / 100 + gateway.fee_fixed

        assert calculate_fees(gateway, amount) == expected
        assert get_total_amount(gateway, amount) == amount + expected

    def test_bank_transfer_includes_fixed_fee(self):
        """Bank transfer: 0.5% + 500."""
        gateway = GatewayRegistry().get_gateway_by_id("bank_transfer")
        assert calculate_fees(gateway, Decimal("10000")) == Decimal("550")

    def test_fees_are_exact_decimals(self):
        """No float rounding leaks into fees."""
        gateway = GatewayRegistry().get_gateway_by_id("sama_money")
        assert calculate_fees(gateway, Decimal("333")) == Decimal("3.996")

    @pytest.mark.parametrize(
        ("raw", "rounded"),
        [
            (Decimal("4.995"), Decimal("5.00")),
            (Decimal("3.996"), Decimal("4.00")),
            (Decimal("3.994"), Decimal("3.99")),
            (Decimal("150"), Decimal("150.00")),
        ],
    )
    def test_round_money_to_the_cent(self, raw, rounded):
        """Half-up rounding to two places."""
        assert round_money(raw) == rounded
        assert round_money(raw).as_tuple().exponent == -2


class TestActiveGateways:
    """Tests for active filtering."""

    def test_all_defaults_active(self):
        """Every built-in gateway starts active."""
        registry = GatewayRegistry()
        assert len(registry.get_active_gateways()) == len(DEFAULT_GATEWAYS)

    @pytest.mark.asyncio
    async def test_deactivated_gateway_is_hidden(self):
        """Toggling is_active off removes a gateway from the active list."""
        registry = GatewayRegistry()

        await registry.update_gateway("wave_money", {"is_active": False})

        active_ids = {g.id for g in registry.get_active_gateways()}
        assert "wave_money" not in active_ids
        assert registry.get_gateway_by_id("wave_money").is_active is False
        assert len(registry.get_all_gateways()) == len(DEFAULT_GATEWAYS)

    @pytest.mark.asyncio
    async def test_reactivated_gateway_returns(self):
        """Toggling back on restores it."""
        registry = GatewayRegistry()

        await registry.update_gateway("stripe", {"is_active": False})
        await registry.update_gateway("stripe", {"is_active": True})

        assert "stripe" in {g.id for g in registry.get_active_gateways()}

    def test_unknown_gateway_is_none(self):
        """Lookup of an unknown id returns None."""
        assert GatewayRegistry().get_gateway_by_id("paypal") is None


class TestUpdateGateway:
    """Tests for update_gateway."""

    @pytest.mark.asyncio
    async def test_update_unknown_gateway_raises(self):
        """Unknown ids raise ResourceNotFoundError."""
        with pytest.raises(ResourceNotFoundError):
            await GatewayRegistry().update_gateway("paypal", {"is_active": False})

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self):
        """Only whitelisted fields can change."""
        with pytest.raises(ValueError, match="Cannot update gateway fields"):
            await GatewayRegistry().update_gateway("stripe", {"icon": "x"})

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_fee(self):
        """GatewayConfig validation applies to updates."""
        with pytest.raises(ValueError, match="Invalid fee percentage"):
            await GatewayRegistry().update_gateway("stripe", {"fee_percentage": Decimal("150")})

    @pytest.mark.asyncio
    async def test_update_normalizes_currencies(self):
        """Currencies are stored uppercase."""
        registry = GatewayRegistry()
        updated = await registry.update_gateway("stripe", {"supported_currencies": ["usd", "xof"]})
        assert updated.supported_currencies == ("USD", "XOF")

    @pytest.mark.asyncio
    async def test_update_persists_with_session(self, db_session):
        """With a session the row is merged and committed."""
        registry = GatewayRegistry()

        await registry.update_gateway("moov_money", {"fee_fixed": Decimal("25")}, session=db_session)

        db_session.merge.assert_awaited_once()
        merged = db_session.merge.await_args.args[0]
        assert isinstance(merged, PaymentGateway)
        assert merged.fee_fixed == Decimal("25")
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_survives_database_error(self, db_session):
        """A failed write still updates the in-memory registry."""
        db_session.commit = AsyncMock(side_effect=OperationalError("stmt", {}, Exception("down")))
        registry = GatewayRegistry()

        updated = await registry.update_gateway("moov_money", {"is_active": False}, session=db_session)

        assert updated.is_active is False
        db_session.rollback.assert_awaited_once()


class TestRefresh:
    """Tests for loading overrides from the database."""

    @pytest.mark.asyncio
    async def test_rows_override_defaults(self, db_session):
        """A stored row replaces the built-in definition."""
        row = MagicMock(spec=PaymentGateway)
        row.id = "orange_money"
        row.name = "Orange Money"
        row.type = "mobile_money"
        row.is_active = False
        row.fee_percentage = Decimal("2.0")
        row.fee_fixed = Decimal("0")
        row.supported_currencies = ["xof"]
        row.description = ""
        row.icon = ""
        db_session.execute = AsyncMock(return_value=make_result(scalars=[row]))

        registry = GatewayRegistry()
        await registry.refresh(db_session)

        gateway = registry.get_gateway_by_id("orange_money")
        assert gateway.fee_percentage == Decimal("2.0")
        assert gateway.supported_currencies == ("XOF",)
        assert "orange_money" not in {g.id for g in registry.get_active_gateways()}

    @pytest.mark.asyncio
    async def test_database_error_falls_back_to_defaults(self, db_session):
        """Unreadable table means built-in defaults."""
        db_session.execute = AsyncMock(side_effect=OperationalError("stmt", {}, Exception("down")))

        registry = GatewayRegistry()
        await registry.refresh(db_session)

        assert len(registry.get_all_gateways()) == len(DEFAULT_GATEWAYS)
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ensure_loaded_reads_once(self, db_session):
        """ensure_loaded only hits the database the first time."""
        registry = GatewayRegistry()

        await registry.ensure_loaded(db_session)
        await registry.ensure_loaded(db_session)

        assert db_session.execute.await_count == 1
