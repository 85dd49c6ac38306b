"""Resolve a reference token (or order id) to a payment outcome.

Order ids are looked for in this order, stopping at the first hit:

1. the order id the caller passed in,
2. the reference store,
3. the payment link recorded in the store,
4. a newest-first order search over recent orders, one location at a time.

The order is then checked: right location, COMPLETED state, or failing that a
COMPLETED payment on its first tender. Order state can lag the payment, so
either signal counts as paid.

The only side effect is merging newly found ids into the store, so the
storefront can poll this as often as it likes.
"""
import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from touchup_api.config import Settings
from touchup_api.errors import MissingIdentifier, OrderNotFound, ProcessorNotFound
from touchup_api.square_service import Order, Payment, SquareGateway
from touchup_api.store import ReferenceStore, SessionRecord, utcnow

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"


class Outcome(str, enum.Enum):
    VERIFIED = "VERIFIED"
    NOT_COMPLETED_YET = "NOT_COMPLETED_YET"
    LOCATION_MISMATCH = "LOCATION_MISMATCH"


class Source(str, enum.Enum):
    DIRECT = "direct"
    CACHE = "cache"
    LINK = "link"
    SEARCH = "search"


@dataclass(frozen=True)
class VerificationResult:
    outcome: Outcome
    order_id: str
    order_state: Optional[str]
    matches_reference: bool
    source: Source
    order_location: Optional[str] = None
    expected_location: Optional[str] = None
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.outcome is Outcome.VERIFIED


class Reconciler:
    def __init__(self, settings: Settings, gateway: SquareGateway, store: ReferenceStore):
        self.settings = settings
        self.gateway = gateway
        self.store = store

    @property
    def search_window(self) -> timedelta:
        return timedelta(hours=self.settings.search_window_hours)

    async def search_locations(self) -> List[str]:
        """Known locations, with the configured one scanned first."""
        locations = await self.gateway.list_locations()
        preferred = self.settings.location_id
        if preferred:
            locations = [preferred] + [loc for loc in locations if loc != preferred]
        return locations

    def search_since(self) -> datetime:
        return utcnow() - self.search_window

    @staticmethod
    def within_window(order: Order, since: datetime) -> bool:
        created = order.created_datetime
        return created is None or created >= since

    async def find_order_by_reference(self, ref: str) -> Optional[Order]:
        since = self.search_since()
        for location_id in await self.search_locations():
            async with aclosing(self.gateway.search_orders([location_id], since)) as orders:
                async for order in orders:
                    if order.reference_id == ref and self.within_window(order, since):
                        return order
        return None

    async def resolve_order_id(self, ref: Optional[str], order_id: Optional[str]) -> Tuple[str, Source]:
        if order_id:
            return order_id, Source.DIRECT

        record = await self.store.get(ref)
        if record and record.order_id:
            return record.order_id, Source.CACHE

        if record and record.link_id:
            link = await self.gateway.get_link(record.link_id)
            if link.order_id:
                await self.store.merge(ref, SessionRecord(order_id=link.order_id))
                return link.order_id, Source.LINK

        match = await self.find_order_by_reference(ref)
        if match is None:
            raise OrderNotFound(ref=ref)
        return match.id, Source.SEARCH

    async def _paid_payment(self, order: Order) -> Optional[Payment]:
        payment_id = order.first_payment_id
        if not payment_id:
            return None
        return await self.gateway.retrieve_payment(payment_id)

    async def verify(self, ref: Optional[str] = None, order_id: Optional[str] = None) -> VerificationResult:
        """Raises MissingIdentifier, OrderNotFound, or whatever the gateway raises."""
        ref = ref or None
        order_id = order_id or None
        if not ref and not order_id:
            raise MissingIdentifier("ref or orderId is required")

        resolved_id, source = await self.resolve_order_id(ref, order_id)
        logger.debug("ref=%s resolved to order %s via %s", ref, resolved_id, source.value)

        try:
            order = await self.gateway.retrieve_order(resolved_id)
        except ProcessorNotFound:
            raise OrderNotFound(ref=ref, order_id=resolved_id)

        matches = ref is not None and order.reference_id == ref
        if matches:
            await self.store.merge(ref, SessionRecord(order_id=order.id))

        expected = self.settings.location_id
        if expected and order.location_id != expected:
            logger.warning("Order %s is at location %s, expected %s", order.id, order.location_id, expected)
            return VerificationResult(
                outcome=Outcome.LOCATION_MISMATCH,
                order_id=order.id,
                order_state=order.state,
                matches_reference=matches,
                source=source,
                order_location=order.location_id,
                expected_location=expected,
            )

        if order.state == COMPLETED:
            return VerificationResult(
                outcome=Outcome.VERIFIED,
                order_id=order.id,
                order_state=order.state,
                matches_reference=matches,
                source=source,
                payment_id=order.first_payment_id,
            )

        payment = await self._paid_payment(order)
        paid = payment is not None and payment.status == COMPLETED
        return VerificationResult(
            outcome=Outcome.VERIFIED if paid else Outcome.NOT_COMPLETED_YET,
            order_id=order.id,
            order_state=order.state,
            matches_reference=matches,
            source=source,
            payment_id=payment.id if payment else None,
            payment_status=payment.status if payment else None,
        )
