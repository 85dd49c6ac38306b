import logging
from typing import Any, Dict, List

from touchup_api.config import Settings
from touchup_api.errors import best_effort
from touchup_api.reconcile import Reconciler
from touchup_api.square_service import Order, Payment, SquareGateway
from touchup_api.store import ReferenceStore

logger = logging.getLogger(__name__)


async def snapshot(settings: Settings, gateway: SquareGateway, store: ReferenceStore, ref: str) -> Dict[str, Any]:
    """Everything discoverable about ``ref``, for operators. Read-only.

    Unlike verification, every location is searched even after a match.
    Payment lookups are best-effort; a failed one is simply left out.
    """
    reconciler = Reconciler(settings, gateway, store)
    record = await store.get(ref)
    since = reconciler.search_since()
    locations = await reconciler.search_locations()

    orders: List[Order] = []
    for location_id in locations:
        orders.extend([
            o async for o in gateway.search_orders([location_id], since)
            if o.reference_id == ref and reconciler.within_window(o, since)
        ])

    payments: List[Payment] = []
    for order in orders:
        if not order.first_payment_id:
            continue
        payment = await best_effort(gateway.retrieve_payment(order.first_payment_id), "retrieve_payment")
        if payment is not None:
            payments.append(payment)

    known = {p.id for p in payments}
    order_ids = {o.id for o in orders}
    for location_id in sorted({o.location_id for o in orders if o.location_id}):
        recent = await best_effort(gateway.list_payments(location_id, since), "list_payments") or []
        payments.extend(p for p in recent if p.order_id in order_ids and p.id not in known)

    logger.info("Diagnostic snapshot ref=%s orders=%d payments=%d", ref, len(orders), len(payments))
    return {
        "ref": ref,
        "session": record.to_dict() if record else None,
        "locations": locations,
        "searchWindowHours": settings.search_window_hours,
        "orders": [o.to_dict() for o in orders],
        "payments": [p.to_dict() for p in payments],
    }
