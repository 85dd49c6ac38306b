from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import pytest

from touchup_api.errors import InvalidAmount, LinkCreationFailed, ProcessorError
from touchup_api.issuance import (
    LinkIssuer,
    build_redirect_url,
    effective_charge,
    effective_minutes,
    mint_reference,
)


def query_of(url):
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.mark.parametrize("requested, expected", [
    (300, Decimal("300.00")),
    ("300", Decimal("300.00")),
    (50, Decimal("120.00")),
    (120.004, Decimal("120.00")),
    (199.995, Decimal("200.00")),
    (250.5, Decimal("250.50")),
])
def test_effective_charge_applies_floor_and_rounding(requested, expected):
    assert effective_charge(requested, 120.0) == expected


@pytest.mark.parametrize("requested", [
    None, "", 0, -5, "-1", "abc", "NaN", "Infinity", True, [300], "1e30", 1e30, "1e20",
])
def test_effective_charge_rejects_bad_input(requested):
    with pytest.raises(InvalidAmount):
        effective_charge(requested, 120.0)


def test_effective_charge_rejects_amount_rounding_to_zero_without_floor():
    with pytest.raises(InvalidAmount):
        effective_charge(0.001, 0)


@pytest.mark.parametrize("requested, expected", [
    (90, 90), (30, 60), (None, 60), ("abc", 60), ("150", 150), (89.6, 90),
])
def test_effective_minutes(requested, expected):
    assert effective_minutes(requested, 60) == expected


def test_reference_tokens_are_unique():
    refs = {mint_reference() for _ in range(10000)}
    assert len(refs) == 10000


def test_redirect_url_carries_all_parameters(settings):
    url = build_redirect_url(settings, "ref-1", 90, Decimal("300.00"))

    assert url.startswith("https://www.arkfurniture.ca/pages/book-touchup?")
    assert query_of(url) == {"ref": "ref-1", "minutes": "90", "price": "300", "currency": "CAD"}


def test_redirect_url_keeps_cents_when_present(settings):
    url = build_redirect_url(settings, "ref-1", 60, Decimal("120.50"), order_id="order_9")
    assert query_of(url)["price"] == "120.50"
    assert query_of(url)["orderId"] == "order_9"


@pytest.mark.asyncio
async def test_issue_creates_link_and_records_session(settings, gateway, store):
    issuer = LinkIssuer(settings, gateway, store)

    link = await issuer.issue(display_minutes=90, subtotal=300)

    assert link.charge == Decimal("300.00")
    assert link.minutes == 90
    assert link.order_id == "order_1"
    assert link.url == "https://square.link/u/abc"

    created = gateway.called("create_link")[0]
    assert created["amount"] == 30000
    assert created["currency"] == "CAD"
    assert created["reference_id"] == link.ref
    params = query_of(created["redirect_url"])
    assert params["ref"] == link.ref
    assert params["minutes"] == "90"
    assert params["price"] == "300"
    assert "orderId" not in params

    record = await store.get(link.ref)
    assert record.order_id == "order_1"
    assert record.link_id == "link_1"
    assert record.created_at is not None


@pytest.mark.asyncio
async def test_issue_prefers_total_price_over_subtotal(settings, gateway, store):
    link = await LinkIssuer(settings, gateway, store).issue(total_price=400, subtotal=300)
    assert link.charge == Decimal("400.00")


@pytest.mark.asyncio
async def test_issue_applies_price_floor(settings, gateway, store):
    link = await LinkIssuer(settings, gateway, store).issue(subtotal=50)

    assert link.charge == Decimal("120.00")
    assert link.minutes == 60
    assert gateway.called("create_link")[0]["amount"] == 12000


@pytest.mark.asyncio
@pytest.mark.parametrize("price", [None, 0, -10, "free"])
async def test_invalid_amount_never_calls_square(settings, gateway, store, price):
    with pytest.raises(InvalidAmount):
        await LinkIssuer(settings, gateway, store).issue(subtotal=price)

    assert gateway.calls == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_create_failure_raises_link_creation_failed(settings, gateway, store):
    gateway.create_error = ProcessorError(500, [{"code": "INTERNAL_SERVER_ERROR"}], "create_link")

    with pytest.raises(LinkCreationFailed):
        await LinkIssuer(settings, gateway, store).issue(subtotal=300)

    assert len(store) == 0


@pytest.mark.asyncio
async def test_redirect_update_is_best_effort(settings, gateway, store):
    gateway.update_error = ProcessorError(400, [{"code": "VERSION_MISMATCH"}], "update_link_redirect")

    link = await LinkIssuer(settings, gateway, store).issue(subtotal=300)

    assert link.url == "https://square.link/u/abc"
    update = gateway.called("update_link_redirect")[0]
    assert update["version"] == 1
    assert query_of(update["redirect_url"])["orderId"] == "order_1"


@pytest.mark.asyncio
async def test_no_redirect_update_without_order_id(settings, gateway, store, mocker):
    gateway.next_link = mocker.Mock(id="link_2", url="https://square.link/u/xyz", version=1, order_id=None)

    link = await LinkIssuer(settings, gateway, store).issue(subtotal=300)

    assert link.order_id is None
    assert gateway.called("update_link_redirect") == []
    record = await store.get(link.ref)
    assert record.order_id is None
    assert record.link_id == "link_2"
