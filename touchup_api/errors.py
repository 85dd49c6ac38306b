"""Error taxonomy for link issuance and payment verification.

Only failures are exceptions. A location mismatch or an unpaid order is a
normal verification outcome and is reported through ``reconcile.Outcome``.
"""
import logging
from typing import Any, Awaitable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TouchupError(Exception):
    code = "INTERNAL_ERROR"


class InvalidAmount(TouchupError):
    code = "INVALID_AMOUNT"


class LinkCreationFailed(TouchupError):
    code = "CREATE_LINK_FAILED"


class MissingIdentifier(TouchupError):
    code = "MISSING_REF_OR_ORDER_ID"


class OrderNotFound(TouchupError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, ref: Optional[str] = None, order_id: Optional[str] = None):
        super().__init__(f"no order found for ref={ref!r} order_id={order_id!r}")
        self.ref = ref
        self.order_id = order_id


class ProcessorError(TouchupError):
    """A Square API call returned a non-success status."""

    code = "PROCESSOR_ERROR"

    def __init__(self, status_code: int, errors: Optional[List[Any]] = None, operation: str = ""):
        self.status_code = status_code
        self.errors = errors or []
        self.operation = operation
        codes = ",".join(str(e.get("code")) for e in self.errors if isinstance(e, dict))
        super().__init__(f"{operation or 'square'} failed with HTTP {status_code} {codes}".strip())


class ProcessorNotFound(ProcessorError):
    code = "NOT_FOUND"


async def best_effort(awaitable: Awaitable[T], operation: str) -> Optional[T]:
    """Await a non-critical call; failures are logged and turned into None."""
    try:
        return await awaitable
    except Exception as exc:
        logger.warning("best-effort %s failed: %s", operation, exc)
        return None
