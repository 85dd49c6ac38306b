"""Thin async gateway over the Square v2 REST API.

Each method is one remote call (plus cursor paging for searches) with no
retries of its own. Responses are parsed into small immutable value objects
so the rest of the service never handles raw JSON.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from touchup_api.config import Settings
from touchup_api.errors import ProcessorError, ProcessorNotFound

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://connect.squareupsandbox.com"
PRODUCTION_URL = "https://connect.squareup.com"
USER_AGENT = "ark-touchup-api/1.0"

ORDER_STATES = ("OPEN", "COMPLETED", "CANCELED", "DRAFT")
LINE_ITEM_NAME = "In-home Touch-Up Visit"

SEARCH_PAGE_LIMIT = 100
SEARCH_MAX_PAGES = 10


def _ref_of(data: Dict[str, Any]) -> Optional[str]:
    return data.get("reference_id") or data.get("referenceId")


@dataclass(frozen=True)
class PaymentLink:
    id: str
    url: Optional[str] = None
    version: Optional[int] = None
    order_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PaymentLink":
        return cls(
            id=data["id"],
            url=data.get("url"),
            version=data.get("version"),
            order_id=data.get("order_id") or data.get("orderId"),
        )


@dataclass(frozen=True)
class Tender:
    id: Optional[str] = None
    payment_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Tender":
        return cls(id=data.get("id"), payment_id=data.get("payment_id") or data.get("paymentId"))


@dataclass(frozen=True)
class Order:
    id: str
    state: Optional[str] = None
    location_id: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: Optional[str] = None
    tenders: Tuple[Tender, ...] = ()

    @property
    def first_payment_id(self) -> Optional[str]:
        return self.tenders[0].payment_id if self.tenders else None

    @property
    def payment_ids(self) -> List[str]:
        return [t.payment_id for t in self.tenders if t.payment_id]

    @property
    def created_datetime(self) -> Optional[datetime]:
        if not self.created_at:
            return None
        try:
            parsed = datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            state=data.get("state"),
            location_id=data.get("location_id") or data.get("locationId"),
            reference_id=_ref_of(data),
            created_at=data.get("created_at") or data.get("createdAt"),
            tenders=tuple(Tender.from_api(t) for t in data.get("tenders") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state,
            "locationId": self.location_id,
            "referenceId": self.reference_id,
            "createdAt": self.created_at,
            "paymentIds": self.payment_ids,
        }


@dataclass(frozen=True)
class Payment:
    id: str
    status: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Payment":
        money = data.get("amount_money") or data.get("amountMoney") or {}
        return cls(
            id=data["id"],
            status=data.get("status"),
            order_id=data.get("order_id") or data.get("orderId"),
            amount=money.get("amount"),
            currency=money.get("currency"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "orderId": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
        }


class SquareGateway:
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "SquareGateway":
        client = httpx.AsyncClient(
            base_url=PRODUCTION_URL if settings.is_production else SANDBOX_URL,
            headers={
                "Authorization": f"Bearer {settings.square_access_token or ''}",
                "Square-Version": settings.square_version,
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            timeout=30.0,
            transport=transport,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code == 404:
            raise ProcessorNotFound(404, body.get("errors"), operation)
        if response.is_error:
            raise ProcessorError(response.status_code, body.get("errors"), operation)
        return body

    async def create_link(
        self,
        amount: int,
        currency: str,
        location_id: Optional[str],
        reference_id: str,
        redirect_url: str,
    ) -> PaymentLink:
        # Use "order" rather than "quick_pay" so the reference id can be set
        body = {
            "idempotency_key": str(uuid.uuid4()),
            "order": {
                "location_id": location_id,
                "reference_id": reference_id,
                "line_items": [
                    {
                        "name": LINE_ITEM_NAME,
                        "quantity": "1",
                        "base_price_money": {"amount": amount, "currency": currency},
                    }
                ],
            },
            "checkout_options": {"redirect_url": redirect_url},
        }
        data = await self._call("create_link", "POST", "/v2/online-checkout/payment-links", json=body)
        return PaymentLink.from_api(data["payment_link"])

    async def update_link_redirect(self, link_id: str, version: Optional[int], redirect_url: str) -> PaymentLink:
        body = {"payment_link": {"version": version, "checkout_options": {"redirect_url": redirect_url}}}
        data = await self._call(
            "update_link_redirect", "PUT", f"/v2/online-checkout/payment-links/{link_id}", json=body
        )
        return PaymentLink.from_api(data["payment_link"])

    async def get_link(self, link_id: str) -> PaymentLink:
        data = await self._call("get_link", "GET", f"/v2/online-checkout/payment-links/{link_id}")
        return PaymentLink.from_api(data["payment_link"])

    async def retrieve_order(self, order_id: str) -> Order:
        data = await self._call("retrieve_order", "GET", f"/v2/orders/{order_id}")
        return Order.from_api(data["order"])

    async def search_orders(
        self,
        location_ids: Sequence[str],
        since: datetime,
        states: Iterable[str] = ORDER_STATES,
    ) -> AsyncIterator[Order]:
        """Orders created at or after ``since`` in the given locations, newest first.

        Pages are fetched lazily, so a caller that stops iterating early
        never requests the remaining pages.
        """
        body: Dict[str, Any] = {
            "location_ids": list(location_ids),
            "query": {
                "sort": {"sort_field": "CREATED_AT", "sort_order": "DESC"},
                "filter": {
                    "date_time_filter": {"created_at": {"start_at": since.isoformat()}},
                    "state_filter": {"states": list(states)},
                },
            },
            "limit": SEARCH_PAGE_LIMIT,
            "return_entries": False,
        }
        for _ in range(SEARCH_MAX_PAGES):
            data = await self._call("search_orders", "POST", "/v2/orders/search", json=body)
            for o in data.get("orders") or ():
                yield Order.from_api(o)
            cursor = data.get("cursor")
            if not cursor:
                break
            body["cursor"] = cursor
        else:
            logger.warning("search_orders stopped after %d pages", SEARCH_MAX_PAGES)

    async def retrieve_payment(self, payment_id: str) -> Payment:
        data = await self._call("retrieve_payment", "GET", f"/v2/payments/{payment_id}")
        return Payment.from_api(data["payment"])

    async def list_locations(self) -> List[str]:
        data = await self._call("list_locations", "GET", "/v2/locations")
        return [loc["id"] for loc in data.get("locations") or () if loc.get("id")]

    async def list_payments(self, location_id: str, since: datetime) -> List[Payment]:
        params = {"location_id": location_id, "begin_time": since.isoformat(), "sort_order": "DESC"}
        payments: List[Payment] = []
        for _ in range(SEARCH_MAX_PAGES):
            data = await self._call("list_payments", "GET", "/v2/payments", params=params)
            payments.extend(Payment.from_api(p) for p in data.get("payments") or ())
            cursor = data.get("cursor")
            if not cursor:
                break
            params["cursor"] = cursor
        return payments
