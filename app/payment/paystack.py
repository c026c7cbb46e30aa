"""
app/payment/paystack.py

Paystack Gateway Adapter

Concrete PaymentGateway over the Paystack REST API using httpx.AsyncClient.
Amounts cross the wire in minor units (x100). Every call runs under a bounded
httpx timeout:
- connect failures (nothing reached the provider) raise ProviderUnavailable
- read/write timeouts raise ProviderTimeout, outcome unknown
- provider refusals raise ProviderRejected with the provider's message
"""

import logging
import time
from typing import Any

import httpx

from app.core.exceptions import (
    InsufficientPlatformBalance,
    InvalidPayerContact,
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from app.database.enums import TransferStatus
from app.payment.gateway import PaymentGateway
from app.payment.schemas import (
    ChargeInitiation,
    ChargeOutcome,
    ChargeVerification,
    PayoutResult,
    PayoutVerification,
    RefundResult,
)
from app.users.schemas import ContactInfo

logger = logging.getLogger(__name__)

MINOR_UNITS = 100
FALLBACK_MPESA_BANK_CODE = "MPESA"

_CHARGE_STATUS = {
    "success": ChargeOutcome.SUCCESS,
    "failed": ChargeOutcome.FAILED,
    "abandoned": ChargeOutcome.FAILED,
    "reversed": ChargeOutcome.FAILED,
}
_TRANSFER_STATUS = {
    "success": TransferStatus.SUCCESS,
    "failed": TransferStatus.FAILED,
    "reversed": TransferStatus.REVERSED,
}


class PaystackGateway(PaymentGateway):
    """Paystack implementation of the payment gateway contract."""

    provider_name = "paystack"

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        currency: str,
        callback_url: str,
        timeout_seconds: float,
    ) -> None:
        super().__init__()
        self._base_url = base_url
        self._currency = currency
        self._callback_url = callback_url
        self._mpesa_bank_code: str | None = None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
        )

    # ---------------------------------------------------
    # Transport
    # ---------------------------------------------------
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send one request and return the `data` member of a successful envelope."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            logger.warning(f"[GATEWAY] Connection to {self._base_url} failed on {path}: {exc}")
            raise ProviderUnavailable("Cannot connect to payment provider") from exc
        except httpx.TimeoutException as exc:
            logger.error(f"[GATEWAY] Timeout on {method} {path}, outcome unknown: {exc}")
            raise ProviderTimeout("Payment provider timed out; outcome unknown") from exc
        except httpx.HTTPError as exc:
            logger.warning(f"[GATEWAY] HTTP error on {method} {path}: {exc}")
            raise ProviderUnavailable("Payment provider request failed") from exc

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Payment provider returned a non-JSON response ({response.status_code})"
            ) from exc

        if response.status_code >= 500:
            raise ProviderUnavailable(
                body.get("message", "Payment provider error"),
                details={"provider_status": response.status_code},
            )
        if response.status_code >= 400 or not body.get("status", False):
            message = body.get("message") or "Payment provider rejected the request"
            raise ProviderRejected(message, details={"provider_status": response.status_code})
        return body.get("data")

    # ---------------------------------------------------
    # Charges
    # ---------------------------------------------------
    async def initiate_charge(
        self, amount: int, payer: ContactInfo, job_ref: str
    ) -> ChargeInitiation:
        if not payer.email:
            raise InvalidPayerContact("Customer email is required to open a charge")
        reference = f"JOB_{job_ref}_{int(time.time() * 1000)}"
        payload = {
            "email": payer.email,
            "amount": amount * MINOR_UNITS,
            "currency": self._currency,
            "reference": reference,
            "callback_url": self._callback_url,
            "metadata": {
                "job_id": job_ref,
                "customer_id": str(payer.user_id),
                "payment_type": "escrow",
                "phone_number": payer.phone_number,
            },
            "channels": ["mobile_money", "card"],
        }
        data = await self._request("POST", "/transaction/initialize", json=payload)
        logger.info(f"[GATEWAY] Charge opened for job {job_ref}: {data.get('reference')}")
        return ChargeInitiation(
            reference=data.get("reference", reference),
            access_code=data.get("access_code"),
            authorization_url=data.get("authorization_url"),
        )

    async def verify_charge(self, reference: str) -> ChargeVerification:
        data = await self._request("GET", f"/transaction/verify/{reference}")
        outcome = _CHARGE_STATUS.get(str(data.get("status", "")).lower(), ChargeOutcome.PENDING)
        transaction_id = data.get("id")
        return ChargeVerification(
            status=outcome,
            amount=int(data.get("amount", 0)) // MINOR_UNITS,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
        )

    # ---------------------------------------------------
    # Payouts
    # ---------------------------------------------------
    async def _mobile_money_bank_code(self) -> str:
        if self._mpesa_bank_code:
            return self._mpesa_bank_code
        try:
            banks = await self._request(
                "GET", "/bank", params={"currency": self._currency, "type": "mobile_money"}
            )
        except ProviderError as e:
            logger.warning(f"[GATEWAY] Bank list unavailable, using fallback code: {e}")
            return FALLBACK_MPESA_BANK_CODE

        for bank in banks or []:
            if "MPESA" in str(bank.get("name", "")).upper().replace("-", "") or bank.get(
                "code"
            ) == FALLBACK_MPESA_BANK_CODE:
                self._mpesa_bank_code = str(bank["code"])
                return self._mpesa_bank_code
        logger.warning("[GATEWAY] M-Pesa not found in provider bank list, using fallback code")
        return FALLBACK_MPESA_BANK_CODE

    async def _create_recipient(self, account_number: str, payee_name: str) -> str:
        bank_code = await self._mobile_money_bank_code()
        data = await self._request(
            "POST",
            "/transferrecipient",
            json={
                "type": "mobile_money",
                "name": payee_name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": self._currency,
            },
        )
        return str(data["recipient_code"])

    async def _available_balance(self) -> int:
        try:
            balances = await self._request("GET", "/balance")
        except ProviderTimeout as exc:
            # No money moves on a balance read.
            raise ProviderUnavailable("Balance check timed out") from exc
        for entry in balances or []:
            if entry.get("currency") == self._currency:
                return int(entry.get("balance", 0))
        return 0

    async def payout(
        self, amount: int, recipient_code: str, reference: str, reason: str
    ) -> PayoutResult:
        available = await self._available_balance()
        if available < amount * MINOR_UNITS:
            raise InsufficientPlatformBalance(
                f"Insufficient balance. Available: {self._currency} {available // MINOR_UNITS}, "
                f"required: {self._currency} {amount}"
            )
        data = await self._request(
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": amount * MINOR_UNITS,
                "recipient": recipient_code,
                "reason": reason,
                "currency": self._currency,
                "reference": reference,
            },
        )
        logger.info(f"[GATEWAY] Transfer {reference} accepted with status {data.get('status')}")
        return PayoutResult(
            transfer_reference=data.get("reference", reference),
            transfer_code=data.get("transfer_code"),
            status=str(data.get("status", "pending")),
        )

    async def verify_payout(self, reference: str) -> PayoutVerification:
        data = await self._request("GET", f"/transfer/verify/{reference}")
        status = _TRANSFER_STATUS.get(str(data.get("status", "")).lower(), TransferStatus.PENDING)
        return PayoutVerification(status=status)

    # ---------------------------------------------------
    # Refunds
    # ---------------------------------------------------
    async def refund(self, charge_reference: str, amount: int, note: str) -> RefundResult:
        data = await self._request(
            "POST",
            "/refund",
            json={
                "transaction": charge_reference,
                "amount": amount * MINOR_UNITS,
                "currency": self._currency,
                "customer_note": "Refund for cancelled job",
                "merchant_note": note,
            },
        )
        refund_id = data.get("id") if isinstance(data, dict) else None
        return RefundResult(
            refund_reference=str(refund_id) if refund_id is not None else None,
            status=data.get("status") if isinstance(data, dict) else None,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
