"""
Bank transfer adapter.

Returns payment instructions only. Transfers stay pending until an
administrator confirms the funds arrived.
"""

from structlog import get_logger

from app.config import Settings
from app.exceptions import WebhookVerificationError
from app.models.api import PaymentStatus
from app.models.domain import PaymentInitiation, PaymentRequest, WebhookEvent

logger = get_logger(__name__)


class BankTransferProvider:
    """Manual bank transfer implementation of PaymentProvider."""

    gateway_id = "bank_transfer"
    reference_prefix = "BT"
    signature_header = ""

    def __init__(
        self,
        account_name: str,
        account_number: str,
        bank_name: str,
        swift_code: str,
    ) -> None:
        self.account_name = account_name
        self.account_number = account_number
        self.bank_name = bank_name
        self.swift_code = swift_code

    @classmethod
    def from_settings(cls, settings: Settings) -> "BankTransferProvider":
        """Build from environment configuration."""
        return cls(
            account_name=settings.bank_account_name,
            account_number=settings.bank_account_number,
            bank_name=settings.bank_name,
            swift_code=settings.bank_swift_code,
        )

    def bank_details(self) -> dict[str, str]:
        """Account details shown to the payer."""
        return {
            "account_name": self.account_name,
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "swift_code": self.swift_code,
        }

    async def initiate(self, request: PaymentRequest) -> PaymentInitiation:
        """Build transfer instructions quoting our reference."""
        instructions = (
            f"Transfer {request.amount} {request.currency} to {self.account_name}"
            f" ({self.bank_name}, account {self.account_number}, SWIFT {self.swift_code})."
            f" Use reference {request.reference} so we can match your payment."
        )
        logger.info("bank_transfer_instructions_issued", reference=request.reference)
        return PaymentInitiation(
            provider_transaction_id=request.reference,
            status=PaymentStatus.PENDING,
            instructions=instructions,
            raw={"bank_details": self.bank_details(), "reference": request.reference},
        )

    async def check_status(self, transaction_id: str) -> PaymentStatus:
        """Always pending; completion comes from an administrator."""
        return PaymentStatus.PENDING

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """Bank transfers have no notifications."""
        raise WebhookVerificationError("Bank transfer does not support webhooks")
