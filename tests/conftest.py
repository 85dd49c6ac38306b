import pytest

from touchup_api.config import Settings
from touchup_api.errors import ProcessorNotFound
from touchup_api.square_service import Order, Payment, PaymentLink, Tender
from touchup_api.store import MemoryReferenceStore


class FakeGateway:
    """In-memory stand-in for SquareGateway that records every call."""

    def __init__(self):
        self.locations = []
        self.orders = []            # newest first
        self.payments = {}
        self.links = {}
        self.calls = []
        self.search_since = []
        self.orders_yielded = 0
        self.next_link = PaymentLink(id="link_1", url="https://square.link/u/abc", version=1, order_id="order_1")
        self.create_error = None
        self.update_error = None

    def add_order(self, order_id, location_id, ref=None, state="OPEN", payment_id=None, created_at=None):
        tenders = (Tender(id=f"t_{order_id}", payment_id=payment_id),) if payment_id else ()
        order = Order(
            id=order_id, state=state, location_id=location_id, reference_id=ref, tenders=tenders,
            created_at=created_at.isoformat() if created_at else None,
        )
        self.orders.append(order)
        return order

    def add_payment(self, payment_id, status, order_id=None):
        payment = Payment(id=payment_id, status=status, order_id=order_id, amount=30000, currency="CAD")
        self.payments[payment_id] = payment
        return payment

    def called(self, name):
        return [args for op, args in self.calls if op == name]

    async def create_link(self, amount, currency, location_id, reference_id, redirect_url):
        self.calls.append(("create_link", dict(
            amount=amount, currency=currency, location_id=location_id,
            reference_id=reference_id, redirect_url=redirect_url,
        )))
        if self.create_error:
            raise self.create_error
        return self.next_link

    async def update_link_redirect(self, link_id, version, redirect_url):
        self.calls.append(("update_link_redirect", dict(link_id=link_id, version=version, redirect_url=redirect_url)))
        if self.update_error:
            raise self.update_error
        return self.next_link

    async def get_link(self, link_id):
        self.calls.append(("get_link", link_id))
        if link_id not in self.links:
            raise ProcessorNotFound(404, [{"code": "NOT_FOUND"}], "get_link")
        return self.links[link_id]

    async def retrieve_order(self, order_id):
        self.calls.append(("retrieve_order", order_id))
        for order in self.orders:
            if order.id == order_id:
                return order
        raise ProcessorNotFound(404, [{"code": "NOT_FOUND"}], "retrieve_order")

    async def search_orders(self, location_ids, since, states=None):
        self.calls.append(("search_orders", tuple(location_ids)))
        self.search_since.append(since)
        for order in self.orders:
            # Square applies the created_at filter server side
            if order.location_id not in location_ids:
                continue
            if order.created_datetime and order.created_datetime < since:
                continue
            self.orders_yielded += 1
            yield order

    async def retrieve_payment(self, payment_id):
        self.calls.append(("retrieve_payment", payment_id))
        if payment_id not in self.payments:
            raise ProcessorNotFound(404, [{"code": "NOT_FOUND"}], "retrieve_payment")
        return self.payments[payment_id]

    async def list_locations(self):
        self.calls.append(("list_locations", None))
        return list(self.locations)

    async def list_payments(self, location_id, since):
        self.calls.append(("list_payments", location_id))
        return [p for p in self.payments.values()]


@pytest.fixture
def settings():
    return Settings(
        square_access_token="sq-test-token",
        location_id=None,
        site_base_url="https://www.arkfurniture.ca",
        currency="CAD",
        min_price=120.0,
        min_minutes=60,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return MemoryReferenceStore()
