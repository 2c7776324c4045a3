"""
Provider deep-link construction.

Builds the payment-app links and the opaque base64 payload that gets signed.
No I/O; the only non-determinism is the payment note, which comes from an
injectable factory.
"""

import base64
import random
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, Optional, Tuple
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from paylink.core.exceptions import InvalidAmountError, UnsupportedProviderError
from paylink.schemas.payment import (
    DeviceClass,
    PaytmEnvelope,
    PaytmPayload,
    PhonePeCheckoutParams,
    PhonePeContact,
    PhonePeIntent,
    PhonePePayload,
    Provider,
    ProviderPayload,
)

CURRENCY = "INR"

_IOS_PATTERN = re.compile(r"iPad|iPhone|iPod")
_ANDROID_PATTERN = re.compile(r"Android")

# encodeURIComponent leaves these unescaped; payment apps expect the same
_URI_COMPONENT_SAFE = "!~*'()"

_note_rng = random.Random()


def detect_device(hint: Optional[str]) -> DeviceClass:
    """Classify a User-Agent style hint. Anything unrecognised is desktop."""
    if not hint:
        return DeviceClass.DESKTOP
    if _IOS_PATTERN.search(hint):
        return DeviceClass.IOS
    if _ANDROID_PATTERN.search(hint):
        return DeviceClass.ANDROID
    return DeviceClass.DESKTOP


def generate_note(rng: random.Random = None) -> str:
    """Short human-visible memo such as 's482'. Not unique."""
    rng = rng or _note_rng
    return f"s{rng.randint(100, 999)}"


def parse_provider(value) -> Provider:
    if isinstance(value, Provider):
        return value
    try:
        return Provider(str(value).strip().lower())
    except ValueError:
        raise UnsupportedProviderError(value)


def validate_amount(value) -> Decimal:
    """Coerce to Decimal and require a finite, positive amount in whole paise."""
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(value)
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(value)
    if amount.normalize().as_tuple().exponent < -2:
        raise InvalidAmountError(value, "Payment amount must have at most 2 decimal places")
    return amount


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: Decimal) -> str:
    """Plain decimal without trailing zeros: 250.00 -> '250', 99.50 -> '99.5'."""
    return format(amount.normalize(), "f")


def encode_model(model: BaseModel) -> str:
    """Compact JSON in field declaration order, base64 encoded."""
    return base64.b64encode(model.model_dump_json().encode()).decode()


def _component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


@dataclass(frozen=True)
class BuiltPayment:
    """Payload plus the links chosen for the requesting device."""

    payload: ProviderPayload
    redirect_url: str
    alternate_url: str
    device: DeviceClass

    @property
    def encoded(self) -> str:
        return self.payload.encoded

    @property
    def note(self) -> str:
        return self.payload.note


class PayloadBuilder:
    """Speaks the PhonePe and Paytm deep-link dialects."""

    def __init__(
        self,
        note_factory: Callable[[], str] = generate_note,
        merchant_display_name: str = "Merchant",
    ):
        self._note_factory = note_factory
        self._display_name = merchant_display_name

    def build(
        self,
        amount,
        provider,
        device: DeviceClass,
        receive_address: str,
        tx_id: str,
        expires_at: datetime,
    ) -> BuiltPayment:
        amount = validate_amount(amount)
        provider = parse_provider(provider)
        note = self._note_factory()

        if provider is Provider.PHONEPE:
            payload = self.build_phonepe(amount, receive_address, note)
        else:
            payload = self.build_paytm(amount, receive_address, note, tx_id, expires_at)

        redirect_url, alternate_url = select_links(payload, device)
        return BuiltPayment(
            payload=payload,
            redirect_url=redirect_url,
            alternate_url=alternate_url,
            device=device,
        )

    def build_phonepe(self, amount: Decimal, receive_address: str, note: str) -> PhonePePayload:
        intent = PhonePeIntent(
            contact=PhonePeContact(vpa=receive_address),
            p2pPaymentCheckoutParams=PhonePeCheckoutParams(
                note=note,
                initialAmount=to_minor_units(amount),
                currency=CURRENCY,
            ),
        )
        encoded = encode_model(intent)

        intent_url = f"phonepe://native?data={quote(encoded, safe='')}&id=p2ppayment"
        generic_url = (
            f"phonepe://pay?pa={_component(receive_address)}"
            f"&pn={_component(self._display_name)}"
            f"&am={format_amount(amount)}"
            f"&tn={_component(note)}"
            f"&cu={CURRENCY}"
        )

        return PhonePePayload(
            intent=intent,
            encoded=encoded,
            intent_url=intent_url,
            generic_url=generic_url,
            note=note,
        )

    def build_paytm(
        self,
        amount: Decimal,
        receive_address: str,
        note: str,
        tx_id: str,
        expires_at: datetime,
    ) -> PaytmPayload:
        query = urlencode(
            [
                ("pa", receive_address),
                ("am", format_amount(amount)),
                ("tn", note),
                ("pn", receive_address),
                ("mc", ""),
                ("cu", CURRENCY),
                ("url", ""),
                ("mode", ""),
                ("purpose", ""),
                ("orgid", ""),
                ("sign", ""),
                ("featuretype", "money_transfer"),
            ]
        )
        canonical_url = f"paytmmp://cash_wallet?{query}"
        app_url = canonical_url.replace("paytmmp://cash_wallet", "paytm://pay", 1)

        envelope = PaytmEnvelope(
            redirect=canonical_url,
            tid=tx_id,
            exp=int(expires_at.timestamp()),
        )

        return PaytmPayload(
            envelope=envelope,
            encoded=encode_model(envelope),
            canonical_url=canonical_url,
            app_url=app_url,
            note=note,
        )


def select_links(payload: ProviderPayload, device: DeviceClass) -> Tuple[str, str]:
    """
    Pick (redirect_url, alternate_url).

    The alternate is always the generic-scheme link that iOS handles; the
    redirect is that same link on iOS and the app-intent link elsewhere.
    """
    if payload.provider is Provider.PHONEPE:
        generic, intent = payload.generic_url, payload.intent_url
    else:
        generic, intent = payload.app_url, payload.canonical_url

    if device is DeviceClass.IOS:
        return generic, generic
    return intent, generic
