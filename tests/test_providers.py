"""
Tests for payment gateway adapters and shared provider helpers.

Outbound HTTP goes through httpx.MockTransport.
"""

import json
import re
from decimal import Decimal

import httpx
import pytest

from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentRequest
from app.services.payment_provider import (
    generate_transaction_reference,
    hmac_sha256_hex,
    map_status,
    normalize_mali_phone,
    require_config,
    verify_hmac_signature,
)
from app.services.payments import build_provider
from app.services.providers.bank_transfer import BankTransferProvider
from app.services.providers.orange_money import OrangeMoneyProvider
from app.services.providers.sandbox import SANDBOX_WEBHOOK_SECRET, SandboxProvider
from app.services.providers.stripe_provider import intent_status, to_stripe_amount
from app.services.providers.wave import WaveProvider, parse_wave_signature

OAUTH_URL = "https://oauth.test/token"
OM_BASE = "https://om.test/api"


def payment_request(phone: str = "76 12 34 56") -> PaymentRequest:
    return PaymentRequest(
        reference="OM_1700000000000_abc123xyz",
        amount=Decimal("10150"),
        currency="XOF",
        description="Elverra membership payment",
        customer_name="Awa Traoré",
        customer_email="awa@example.com",
        customer_phone=phone,
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def orange_money(handler, clock=None, **overrides) -> OrangeMoneyProvider:
    options = dict(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url=OM_BASE,
        oauth_url=OAUTH_URL,
        client_id="client-id",
        client_secret="client-secret",
        merchant_key="merchant-key",
        merchant_login="merchant-login",
        merchant_account="merchant-account",
        merchant_code="merchant-code",
        merchant_name="Elverra",
        webhook_secret="om-webhook-secret",
    )
    options.update(overrides)
    if clock is not None:
        options["clock"] = clock
    return OrangeMoneyProvider(**options)


class OrangeMoneyApi:
    """Records calls; answers oauth and status requests."""

    def __init__(self, status: str = "SUCCESS") -> None:
        self.status = status
        self.token_calls = 0
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == OAUTH_URL:
            self.token_calls += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_calls}", "expires_in": 100}
            )
        if request.url.path.endswith("/webpayment"):
            return httpx.Response(
                201, json={"pay_token": "pt-1", "payment_url": "https://om.test/pay/pt-1"}
            )
        return httpx.Response(200, json={"status": self.status})


class TestSharedHelpers:
    """Tests for payment_provider helpers."""

    def test_reference_format(self):
        reference = generate_transaction_reference("OM")

        assert re.fullmatch(r"OM_\d{13}_[0-9a-z]{9}", reference)

    def test_references_are_unique(self):
        assert generate_transaction_reference("WV") != generate_transaction_reference("WV")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("76 12 34 56", "+22376123456"),
            ("+223 76 12 34 56", "+22376123456"),
            ("22376123456", "+22376123456"),
            ("", ""),
        ],
    )
    def test_normalize_mali_phone(self, raw, expected):
        assert normalize_mali_phone(raw) == expected

    def test_verify_hmac_accepts_valid_signature(self):
        body = b'{"status":"SUCCESS"}'
        verify_hmac_signature("s3cret", body, hmac_sha256_hex("s3cret", body), "orange_money")

    def test_verify_hmac_accepts_uppercase(self):
        body = b"{}"
        verify_hmac_signature("s3cret", body, hmac_sha256_hex("s3cret", body).upper(), "wave")

    @pytest.mark.parametrize(
        ("secret", "signature"),
        [("", "abc"), ("s3cret", ""), ("s3cret", "deadbeef")],
    )
    def test_verify_hmac_rejects(self, secret, signature):
        with pytest.raises(WebhookVerificationError):
            verify_hmac_signature(secret, b"{}", signature, "orange_money")

    def test_map_status(self):
        completed = frozenset({"success"})
        failed = frozenset({"failed"})

        assert map_status(" SUCCESS ", completed, failed) == PaymentStatus.COMPLETED
        assert map_status("failed", completed, failed) == PaymentStatus.FAILED
        assert map_status(None, completed, failed) == PaymentStatus.PENDING

    def test_require_config_lists_missing(self):
        with pytest.raises(PaymentProviderError, match="missing api_key, secret"):
            require_config("Wave", secret="", api_key="", base_url="https://x")

    def test_require_config_passes(self):
        require_config("Wave", api_key="k")


class TestOrangeMoney:
    """Tests for OrangeMoneyProvider."""

    @pytest.mark.asyncio
    async def test_token_reused_until_refresh_point(self):
        """Tokens are cached for 90% of expires_in."""
        api = OrangeMoneyApi()
        clock = FakeClock()
        provider = orange_money(api, clock=clock)

        await provider.check_status("pt-1")
        clock.now += 89
        await provider.check_status("pt-1")
        assert api.token_calls == 1

        clock.now += 2
        await provider.check_status("pt-1")
        assert api.token_calls == 2
        assert api.requests[-1].headers["Authorization"] == "Bearer token-2"

    @pytest.mark.asyncio
    async def test_initiate(self):
        api = OrangeMoneyApi()
        provider = orange_money(api, clock=FakeClock())

        initiation = await provider.initiate(payment_request())

        assert initiation.provider_transaction_id == "pt-1"
        assert initiation.payment_url == "https://om.test/pay/pt-1"
        assert initiation.status == PaymentStatus.PENDING
        body = json.loads(api.requests[-1].content)
        assert body["customer_phone"] == "+22376123456"
        assert body["order_id"] == "OM_1700000000000_abc123xyz"
        assert body["amount"] == "10150"

    @pytest.mark.asyncio
    async def test_initiate_requires_phone(self):
        provider = orange_money(OrangeMoneyApi())

        with pytest.raises(PaymentProviderError, match="phone"):
            await provider.initiate(payment_request(phone=""))

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        provider = orange_money(OrangeMoneyApi(), merchant_key="")

        with pytest.raises(PaymentProviderError, match="not configured"):
            await provider.initiate(payment_request())

    @pytest.mark.asyncio
    async def test_http_error_becomes_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == OAUTH_URL:
                return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            return httpx.Response(500, text="boom")

        with pytest.raises(PaymentProviderError, match="500"):
            await orange_money(handler).check_status("pt-1")

    @pytest.mark.asyncio
    async def test_status_mapping(self):
        assert await orange_money(OrangeMoneyApi("FAILED")).check_status("x") == PaymentStatus.FAILED
        assert await orange_money(OrangeMoneyApi("INITIATED")).check_status("x") == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_webhook(self):
        provider = orange_money(OrangeMoneyApi())
        body = json.dumps({"status": "SUCCESS", "order_id": "OM_1", "pay_token": "pt-1"}).encode()

        event = await provider.verify_webhook(body, hmac_sha256_hex("om-webhook-secret", body))

        assert event.status == PaymentStatus.COMPLETED
        assert event.reference == "OM_1"
        assert event.provider_transaction_id == "pt-1"

    @pytest.mark.asyncio
    async def test_webhook_bad_signature(self):
        provider = orange_money(OrangeMoneyApi())

        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook(b"{}", "0" * 64)


class TestWave:
    """Tests for WaveProvider."""

    def provider(self, handler=None, now: float = 1700000010) -> WaveProvider:
        handler = handler or (lambda r: httpx.Response(404))
        return WaveProvider(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            base_url="https://wave.test/v1",
            api_key="wave-key",
            webhook_secret="wave-secret",
            clock=lambda: now,
        )

    def test_parse_signature(self):
        assert parse_wave_signature("t=123,v1=aa,v1=bb") == ("123", ["aa", "bb"])

    @pytest.mark.asyncio
    async def test_webhook_signed_over_timestamp_and_body(self):
        body = json.dumps(
            {
                "type": "checkout.session.completed",
                "data": {"id": "cos-1", "client_reference": "WV_1"},
            }
        ).encode()
        signature = hmac_sha256_hex("wave-secret", b"1700000000" + body)

        event = await self.provider().verify_webhook(body, f"t=1700000000,v1={signature}")

        assert event.status == PaymentStatus.COMPLETED
        assert event.reference == "WV_1"
        assert event.provider_transaction_id == "cos-1"

    @pytest.mark.asyncio
    async def test_webhook_rejects_body_only_signature(self):
        body = b'{"type":"checkout.session.completed","data":{"id":"cos-1"}}'
        signature = hmac_sha256_hex("wave-secret", body)

        with pytest.raises(WebhookVerificationError):
            await self.provider().verify_webhook(body, f"t=1700000000,v1={signature}")

    @pytest.mark.asyncio
    async def test_webhook_malformed_header(self):
        with pytest.raises(WebhookVerificationError, match="Malformed"):
            await self.provider().verify_webhook(b"{}", "v1=abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("now", [1700000000 + 301, 1700000000 + 3600, 1700000000 - 301])
    async def test_webhook_rejects_stale_or_future_timestamp(self, now):
        """A correctly signed event replayed outside the window is refused."""
        body = b'{"type":"checkout.session.completed","data":{"id":"cos-1"}}'
        signature = hmac_sha256_hex("wave-secret", b"1700000000" + body)

        with pytest.raises(WebhookVerificationError, match="tolerance"):
            await self.provider(now=now).verify_webhook(body, f"t=1700000000,v1={signature}")

    @pytest.mark.asyncio
    async def test_webhook_accepts_timestamp_at_tolerance_edge(self):
        body = b'{"type":"checkout.session.completed","data":{"id":"cos-1"}}'
        signature = hmac_sha256_hex("wave-secret", b"1700000000" + body)

        event = await self.provider(now=1700000000 + 300).verify_webhook(
            body, f"t=1700000000,v1={signature}"
        )

        assert event.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_webhook_non_numeric_timestamp(self):
        body = b"{}"
        signature = hmac_sha256_hex("wave-secret", b"soon" + body)

        with pytest.raises(WebhookVerificationError, match="Malformed"):
            await self.provider().verify_webhook(body, f"t=soon,v1={signature}")

    @pytest.mark.asyncio
    async def test_initiate(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer wave-key"
            return httpx.Response(
                200,
                json={
                    "id": "cos-1",
                    "wave_launch_url": "https://pay.wave.test/c/cos-1",
                    "payment_status": "processing",
                },
            )

        initiation = await self.provider(handler).initiate(payment_request())

        assert initiation.provider_transaction_id == "cos-1"
        assert initiation.payment_url == "https://pay.wave.test/c/cos-1"
        assert initiation.status == PaymentStatus.PENDING


class TestStripeHelpers:
    """Tests for Stripe amount and status helpers."""

    def test_zero_decimal_currency(self):
        assert to_stripe_amount(Decimal("10150"), "XOF") == 10150

    def test_two_decimal_currency(self):
        assert to_stripe_amount(Decimal("12.34"), "eur") == 1234

    def test_intent_status(self):
        assert intent_status("succeeded") == PaymentStatus.COMPLETED
        assert intent_status("canceled") == PaymentStatus.FAILED
        assert intent_status("requires_payment_method") == PaymentStatus.PENDING


class TestBankTransfer:
    """Tests for BankTransferProvider."""

    def provider(self) -> BankTransferProvider:
        return BankTransferProvider("Elverra SA", "ML001 0001", "Banque Test", "BTESMLBA")

    @pytest.mark.asyncio
    async def test_instructions_quote_reference(self):
        initiation = await self.provider().initiate(payment_request())

        assert initiation.status == PaymentStatus.PENDING
        assert "OM_1700000000000_abc123xyz" in initiation.instructions
        assert initiation.raw["bank_details"]["swift_code"] == "BTESMLBA"

    @pytest.mark.asyncio
    async def test_always_pending(self):
        assert await self.provider().check_status("anything") == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_no_webhooks(self):
        with pytest.raises(WebhookVerificationError):
            await self.provider().verify_webhook(b"{}", "")


class TestSandbox:
    """Tests for SandboxProvider."""

    @pytest.mark.asyncio
    async def test_completes_on_status_check(self):
        provider = SandboxProvider("wave_money")

        initiation = await provider.initiate(payment_request())

        assert initiation.provider_transaction_id == "sandbox-OM_1700000000000_abc123xyz"
        assert await provider.check_status(initiation.provider_transaction_id) == (
            PaymentStatus.COMPLETED
        )

    @pytest.mark.asyncio
    async def test_signed_webhook(self):
        body = json.dumps({"status": "failed", "reference": "SBX_1"}).encode()

        event = await SandboxProvider("orange_money").verify_webhook(
            body, hmac_sha256_hex(SANDBOX_WEBHOOK_SECRET, body)
        )

        assert event.status == PaymentStatus.FAILED
        assert event.reference == "SBX_1"


class TestBuildProvider:
    """Tests for build_provider."""

    def test_unknown_gateway(self):
        assert build_provider("paypal", sandbox=False) is None

    def test_sandbox_mode(self):
        provider = build_provider("orange_money", sandbox=True)

        assert isinstance(provider, SandboxProvider)
        assert provider.gateway_id == "orange_money"

    def test_live_adapters(self):
        http = httpx.AsyncClient()

        assert isinstance(build_provider("wave_money", http, sandbox=False), WaveProvider)
        assert isinstance(build_provider("orange_money", http, sandbox=False), OrangeMoneyProvider)
        assert isinstance(build_provider("bank_transfer", http, sandbox=False), BankTransferProvider)
