import logging
import math
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from urllib.parse import urlencode

from touchup_api.config import Settings
from touchup_api.errors import InvalidAmount, LinkCreationFailed, best_effort
from touchup_api.square_service import SquareGateway
from touchup_api.store import ReferenceStore, SessionRecord, utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
# Square money amounts are signed 64-bit integers of minor units
MAX_AMOUNT_CENTS = 2 ** 63 - 1


@dataclass(frozen=True)
class IssuedLink:
    url: str
    order_id: Optional[str]
    ref: str
    charge: Decimal
    minutes: int
    currency: str

    @property
    def amount_cents(self) -> int:
        return int(self.charge * 100)


def mint_reference() -> str:
    return str(uuid.uuid4())


def effective_minutes(requested: Any, minimum: int) -> int:
    try:
        minutes = float(requested)
    except (TypeError, ValueError):
        return minimum
    if isinstance(requested, bool) or not math.isfinite(minutes):
        return minimum
    return max(minimum, int(round(minutes)))


def effective_charge(requested: Any, minimum: float) -> Decimal:
    """Clamp a caller-proposed price to the configured floor, in whole cents.

    Raises InvalidAmount for missing, non-numeric, non-finite, zero,
    negative or oversized input; the floor never rescues a bad request.
    """
    if requested is None or isinstance(requested, bool) or requested == "":
        raise InvalidAmount("price is required")
    try:
        price = Decimal(str(requested).strip())
    except InvalidOperation:
        raise InvalidAmount(f"price is not a number: {requested!r}")
    if not price.is_finite() or price <= 0:
        raise InvalidAmount(f"price must be positive: {requested!r}")

    try:
        rounded = price.quantize(CENTS, rounding=ROUND_HALF_UP)
        floor = Decimal(str(minimum)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"price is too large: {requested!r}")
    charge = max(floor, rounded)
    if charge <= 0:
        raise InvalidAmount(f"price rounds to zero: {requested!r}")
    if charge * 100 > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"price is too large: {requested!r}")
    return charge


def format_price(charge: Decimal) -> str:
    if charge == charge.to_integral_value():
        return str(int(charge))
    return f"{charge:.2f}"


def build_redirect_url(
    settings: Settings,
    ref: str,
    minutes: int,
    charge: Decimal,
    order_id: Optional[str] = None,
) -> str:
    params = {
        "ref": ref,
        "minutes": minutes,
        "price": format_price(charge),
        "currency": settings.currency,
    }
    if order_id:
        params["orderId"] = order_id
    return f"{settings.site_base_url}{settings.booking_path}?{urlencode(params)}"


class LinkIssuer:
    def __init__(self, settings: Settings, gateway: SquareGateway, store: ReferenceStore):
        self.settings = settings
        self.gateway = gateway
        self.store = store

    async def issue(
        self,
        display_minutes: Any = None,
        total_price: Any = None,
        subtotal: Any = None,
    ) -> IssuedLink:
        requested = total_price if total_price not in (None, "") else subtotal

        # Validate before touching Square
        charge = effective_charge(requested, self.settings.min_price)
        minutes = effective_minutes(display_minutes, self.settings.min_minutes)
        ref = mint_reference()
        redirect_url = build_redirect_url(self.settings, ref, minutes, charge)

        try:
            link = await self.gateway.create_link(
                amount=int(charge * 100),
                currency=self.settings.currency,
                location_id=self.settings.location_id,
                reference_id=ref,
                redirect_url=redirect_url,
            )
        except Exception as exc:
            raise LinkCreationFailed(str(exc)) from exc

        await self.store.put(ref, SessionRecord(order_id=link.order_id, link_id=link.id, created_at=utcnow()))

        if link.order_id:
            await best_effort(
                self.gateway.update_link_redirect(
                    link.id,
                    link.version,
                    build_redirect_url(self.settings, ref, minutes, charge, order_id=link.order_id),
                ),
                "update_link_redirect",
            )

        logger.info("Issued payment link ref=%s order_id=%s charge=%s", ref, link.order_id, charge)
        return IssuedLink(
            url=link.url,
            order_id=link.order_id,
            ref=ref,
            charge=charge,
            minutes=minutes,
            currency=self.settings.currency,
        )
