# tests/payment/test_fee_split.py
import pytest

from app.core.exceptions import InvalidPayerContact, ProviderRejected, ValidationError
from app.payment.gateway import compute_fee_split
from app.payment.phone import mpesa_variants, normalize_mpesa_number
from tests.helpers import FakeGateway

# --- Fee Split ---


@pytest.mark.parametrize(
    ("amount", "percent", "fee", "payee"),
    [
        (1000, 10, 100, 900),
        (999, 10, 100, 899),
        (5, 10, 1, 4),
        (15, 10, 2, 13),
        (995, 10, 100, 895),
        (1400, 10, 140, 1260),
        (0, 10, 0, 0),
        (1000, 0, 0, 1000),
        (1000, 12.5, 125, 875),
    ],
)
def test_fee_split_rounds_half_up(amount: int, percent: float, fee: int, payee: int) -> None:
    split = compute_fee_split(amount, percent)
    assert (split.platform_fee, split.payee_amount) == (fee, payee)
    assert split.platform_fee + split.payee_amount == amount


def test_fee_split_rejects_invalid_input() -> None:
    with pytest.raises(ValidationError):
        compute_fee_split(-1, 10)
    with pytest.raises(ValidationError):
        compute_fee_split(100, 101)


# --- M-Pesa Numbers ---


@pytest.mark.parametrize(
    "raw",
    ["0712345678", "254712345678", "+254712345678", "712345678", "0712 345 678", "+254-712-345678"],
)
def test_normalize_accepts_common_spellings(raw: str) -> None:
    assert normalize_mpesa_number(raw) == "254712345678"


def test_normalize_accepts_safaricom_one_prefix() -> None:
    assert normalize_mpesa_number("0112345678") == "254112345678"


@pytest.mark.parametrize("raw", [None, "", "12345", "0812345678", "2547123456789", "+1 555 0100"])
def test_normalize_rejects_bad_numbers(raw: str | None) -> None:
    with pytest.raises(InvalidPayerContact):
        normalize_mpesa_number(raw)


def test_variants_are_tried_in_fixed_order() -> None:
    assert mpesa_variants("0712000002") == ["254712000002", "+254712000002", "0712000002"]


# --- Recipient Resolution ---


@pytest.mark.asyncio
async def test_recipient_falls_back_to_next_variant_and_caches() -> None:
    gateway = FakeGateway()
    gateway.rejected_accounts = {"254712000002"}

    code = await gateway.resolve_payout_recipient("0712000002", "Jane Fundi")
    assert code == "RCP_+254712000002"
    assert [c[0] for c in gateway.calls["create_recipient"]] == ["254712000002", "+254712000002"]

    again = await gateway.resolve_payout_recipient("+254712000002", "Jane Fundi")
    assert again == code
    assert len(gateway.calls["create_recipient"]) == 2


@pytest.mark.asyncio
async def test_recipient_raises_last_rejection_when_all_variants_fail() -> None:
    gateway = FakeGateway()
    gateway.rejected_accounts = {"254712000002", "+254712000002", "0712000002"}

    with pytest.raises(ProviderRejected) as exc_info:
        await gateway.resolve_payout_recipient("0712000002", "Jane Fundi")

    assert exc_info.value.reason == "Account 0712000002 rejected"
    assert exc_info.value.details["variants_tried"] == [
        "254712000002",
        "+254712000002",
        "0712000002",
    ]
