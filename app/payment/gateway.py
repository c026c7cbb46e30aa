"""
app/payment/gateway.py

Payment Provider Gateway Contract

Abstracts the external payment processor behind a small async interface:
initiate and verify escrow charges, resolve payout recipients, pay out,
verify payouts, refund, and split fees. Implementations hold no job state;
the only local state is a per-payee cache of recipient routing codes.
"""

import logging
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal

from app.core.exceptions import ProviderRejected, ValidationError
from app.payment.phone import mpesa_variants
from app.payment.schemas import (
    ChargeInitiation,
    ChargeVerification,
    FeeSplit,
    PayoutResult,
    PayoutVerification,
    RefundResult,
)
from app.users.schemas import ContactInfo

logger = logging.getLogger(__name__)


def compute_fee_split(amount: int, fee_percent: float | Decimal) -> FeeSplit:
    """
    Split an amount into platform fee and payee share.

    platform_fee = round_half_up(amount * fee_percent / 100), so exact halves go
    to the platform: (5, 10) -> 1/4, (15, 10) -> 2/13, (995, 10) -> 100/895.
    Decimal arithmetic keeps the result identical across calls.
    """
    if amount < 0:
        raise ValidationError("Amount cannot be negative")
    percent = Decimal(str(fee_percent))
    if percent < 0 or percent > 100:
        raise ValidationError("Fee percentage must be between 0 and 100")
    fee = (Decimal(amount) * percent / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    platform_fee = int(fee)
    return FeeSplit(platform_fee=platform_fee, payee_amount=amount - platform_fee)


class PaymentGateway(ABC):
    """Abstract payment processor used by the lifecycle engine and webhook handler."""

    provider_name: str = "abstract"

    def __init__(self) -> None:
        self._recipient_cache: dict[str, str] = {}

    # ---------------------------------------------------
    # Charges
    # ---------------------------------------------------
    @abstractmethod
    async def initiate_charge(
        self, amount: int, payer: ContactInfo, job_ref: str
    ) -> ChargeInitiation: ...

    @abstractmethod
    async def verify_charge(self, reference: str) -> ChargeVerification: ...

    # ---------------------------------------------------
    # Payouts
    # ---------------------------------------------------
    @abstractmethod
    async def _create_recipient(self, account_number: str, payee_name: str) -> str:
        """Register one spelling of a payee account; raise ProviderRejected if refused."""

    async def resolve_payout_recipient(self, payee_contact: str | None, payee_name: str) -> str:
        """
        Create or return a stable recipient code for a mobile-money payee.

        Number variants are tried in the order given by `mpesa_variants`; the
        first accepted one wins and is cached. If every variant is refused the
        provider's last rejection reason is raised.
        """
        variants = mpesa_variants(payee_contact)
        canonical = variants[0]
        cached = self._recipient_cache.get(canonical)
        if cached:
            logger.debug(f"[GATEWAY] Recipient cache hit for {canonical}")
            return cached

        last_reason = "No payout account variant was accepted"
        for attempt, account_number in enumerate(variants, start=1):
            try:
                code = await self._create_recipient(account_number, payee_name)
            except ProviderRejected as e:
                logger.warning(
                    f"[GATEWAY] Recipient attempt {attempt} rejected for {account_number}: {e.reason}"
                )
                last_reason = e.reason
                continue
            self._recipient_cache[canonical] = code
            logger.info(f"[GATEWAY] Recipient resolved on attempt {attempt}: {code}")
            return code

        raise ProviderRejected(last_reason, details={"variants_tried": variants})

    @abstractmethod
    async def payout(
        self, amount: int, recipient_code: str, reference: str, reason: str
    ) -> PayoutResult: ...

    @abstractmethod
    async def verify_payout(self, reference: str) -> PayoutVerification: ...

    # ---------------------------------------------------
    # Refunds
    # ---------------------------------------------------
    @abstractmethod
    async def refund(self, charge_reference: str, amount: int, note: str) -> RefundResult: ...

    # ---------------------------------------------------
    # Fees
    # ---------------------------------------------------
    def compute_fee_split(self, amount: int, fee_percent: float | Decimal) -> FeeSplit:
        return compute_fee_split(amount, fee_percent)

    async def aclose(self) -> None:
        return None
