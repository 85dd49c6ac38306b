import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from touchup_api.auth import verify_operator_token
from touchup_api.config import Settings
from touchup_api.diagnostics import snapshot
from touchup_api.errors import InvalidAmount, LinkCreationFailed, MissingIdentifier, OrderNotFound
from touchup_api.issuance import LinkIssuer
from touchup_api.reconcile import Outcome, Reconciler, VerificationResult

logger = logging.getLogger(__name__)

# Application outcomes are reported with HTTP 200 and an ok/error field;
# the storefront polls and treats any failure as "try again later".
router = APIRouter(prefix="/api/ark")


class PaymentLinkRequest(BaseModel):
    # Loosely typed on purpose: bad prices become INVALID_AMOUNT, not a 422
    displayMinutes: Optional[Any] = None
    totalPrice: Optional[Any] = None
    subtotal: Optional[Any] = None


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_issuer(request: Request) -> LinkIssuer:
    state = request.app.state
    return LinkIssuer(state.settings, state.gateway, state.store)


def get_reconciler(request: Request) -> Reconciler:
    state = request.app.state
    return Reconciler(state.settings, state.gateway, state.store)


def _failure(settings: Settings, body: dict, exc: Exception, status_code: int = 200) -> JSONResponse:
    if settings.verbose_errors:
        body["detail"] = str(exc)
    return JSONResponse(status_code=status_code, content=body)


def _verify_payload(result: VerificationResult) -> dict:
    if result.outcome is Outcome.LOCATION_MISMATCH:
        return {
            "ok": False,
            "error": Outcome.LOCATION_MISMATCH.value,
            "orderLocation": result.order_location,
            "expected": result.expected_location,
            "orderId": result.order_id,
        }

    payload = {
        "ok": result.verified,
        "state": result.order_state,
        "orderId": result.order_id,
        "matchesRef": result.matches_reference,
    }
    if not result.verified:
        payload["error"] = Outcome.NOT_COMPLETED_YET.value
    if result.payment_id:
        payload["paymentId"] = result.payment_id
    if result.payment_status:
        payload["paymentStatus"] = result.payment_status
    return payload


@router.post("/create-payment-link")
async def create_payment_link(
    body: Optional[PaymentLinkRequest] = None,
    issuer: LinkIssuer = Depends(get_issuer),
    settings: Settings = Depends(get_settings),
):
    body = body or PaymentLinkRequest()
    try:
        link = await issuer.issue(body.displayMinutes, body.totalPrice, body.subtotal)
    except InvalidAmount as exc:
        return _failure(settings, {"ok": False, "error": InvalidAmount.code}, exc)
    except LinkCreationFailed as exc:
        logger.exception("create-payment-link error")
        return _failure(settings, {"error": LinkCreationFailed.code}, exc)

    return {
        "url": link.url,
        "orderId": link.order_id,
        "ref": link.ref,
        "charge": float(link.charge),
        "amountCents": link.amount_cents,
        "currency": link.currency,
        "minutes": link.minutes,
    }


@router.get("/verify")
async def verify(
    ref: Optional[str] = None,
    orderId: Optional[str] = None,
    reconciler: Reconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_settings),
):
    try:
        result = await reconciler.verify(ref=ref, order_id=orderId)
    except MissingIdentifier as exc:
        return _failure(settings, {"ok": False, "error": MissingIdentifier.code}, exc, status_code=400)
    except OrderNotFound as exc:
        return _failure(settings, {"ok": False, "error": OrderNotFound.code, "ref": ref}, exc)
    except Exception as exc:
        logger.exception("verify error")
        return _failure(settings, {"ok": False, "error": "VERIFY_EXCEPTION"}, exc)

    return _verify_payload(result)


@router.get("/debug")
async def debug(
    request: Request,
    ref: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    auth=Depends(verify_operator_token),
):
    if not ref:
        return JSONResponse(status_code=400, content={"error": "MISSING_REF"})
    state = request.app.state
    try:
        return await snapshot(settings, state.gateway, state.store, ref)
    except Exception as exc:
        logger.exception("debug error")
        return _failure(settings, {"ok": False, "error": "DEBUG_EXCEPTION", "ref": ref}, exc)


@router.get("/info")
async def info(settings: Settings = Depends(get_settings)):
    token = settings.square_access_token or ""
    return {
        "env": settings.square_env,
        "hasToken": bool(token),
        "tokenLen": len(token),
        "locationId": settings.location_id,
        "site": settings.site_base_url,
        "currency": settings.currency,
        "minPrice": settings.min_price,
        "minMinutes": settings.min_minutes,
    }
