from __future__ import annotations

import httpx
import json
import uuid
from contextlib import asynccontextmanager
from typing import Literal, Optional

from .checkout import CheckoutService
from .config import Settings
from .confirmation import PaymentConfirmationHandler, PaymentEvent
from .errors import (
    NotFound, ShopError, UnauthorizedError, UnverifiedEventError,
    ValidationError,
)
from .infra.timings import aggregates, flush_timings, timeit
from .logs import configure_logging
from .mockpay import EVENT_KINDS, SIGNATURE_HEADER, MockPay, PaymentAdapter
from .model import credentials
from .model.schemas import (
    CheckoutRequest, Customer, Order, Product, ProductIn, ProductPatch,
    ShippingAddress,
)
from .model.storage import open_storage

from fastapi import Depends, FastAPI, Request
from fastapi.responses import ORJSONResponse, PlainTextResponse
from fastapi.responses import RedirectResponse
from fastapi import Form
from pydantic import BaseModel
from starlette.status import HTTP_303_SEE_OTHER

from .helpers import bearer_token, ct_equal, is_valid_email, to_iso

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


# ---
# startup / shutdown
# ---
def _say_hello(settings: Settings) -> None:
    logger.info(
        "shopfront is starting up",
        store_backend=settings.store_backend,
        credential_backend=settings.credential_backend,
        currency=settings.currency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    _say_hello(settings)
    app.state.settings = settings

    async with open_storage(settings) as storage:
        app.state.catalog = storage.catalog
        app.state.ledger = storage.ledger

        app.state.redis = None
        if settings.credential_backend == "redis":
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )
        app.state.credentials = credentials.new_store(
            backend=settings.credential_backend,
            r=app.state.redis,
            ttl_seconds=settings.admin_token_ttl_seconds,
        )

        adapter: PaymentAdapter = MockPay(secret=settings.mock_secret)
        app.state.adapter = adapter
        app.state.checkout = CheckoutService(
            storage.catalog, storage.ledger, adapter,
            currency=settings.currency,
            public_base_url=settings.public_base_url,
            max_qty=settings.max_line_qty,
            timeout_seconds=settings.external_timeout_seconds,
        )
        app.state.confirmations = PaymentConfirmationHandler(storage.ledger)

        app.state.http = httpx.AsyncClient(
            timeout=settings.external_timeout_seconds,
            limits=httpx.Limits(
                max_connections=64, max_keepalive_connections=64
            ),
        )
        try:
            yield
        finally:
            await app.state.http.aclose()
            if app.state.redis is not None:
                await app.state.redis.aclose()
            await flush_timings(settings.metrics_url or None)
            logger.info("shopfront stopped")


app = FastAPI(
    title="shopfront",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)


@app.exception_handler(ShopError)
async def _shop_error(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("request failed", path=request.url.path,
                     error=exc.message)
    return ORJSONResponse(exc.to_dict(), status_code=exc.status_code)


# ----------------------------
# Helpers
# ----------------------------
async def require_admin(request: Request) -> str:
    token = bearer_token(request.headers.get("authorization"))
    if not await request.app.state.credentials.validate(token):
        raise UnauthorizedError("admin login required")
    return token


def product_out(p: Product) -> dict:
    return p.model_dump()


def order_out(o: Order) -> dict:
    d = o.model_dump(mode="json")
    d["created_at_iso"] = to_iso(o.created_at)
    d["paid_at_iso"] = to_iso(o.paid_at)
    return d


def order_status_out(o: Order) -> dict:
    return {
        "order_id": o.id,
        "status": o.status.value,
        "items": [
            {"product_id": i.product_id, "name": i.name, "qty": i.qty,
             "unit_price_cents": i.unit_price_cents}
            for i in o.items
        ],
        "subtotal_cents": o.subtotal_cents,
        "currency": o.currency,
        "paid_at": to_iso(o.paid_at),
    }


@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"


# ----------------------------
# Public catalog
# ----------------------------
@app.get("/api/products")
async def list_products(request: Request):
    async with timeit("catalog.list_active"):
        products = await request.app.state.catalog.list_active_products()
    return [product_out(p) for p in products]


@app.get("/api/products/{product_id}")
async def get_product(product_id: str, request: Request):
    async with timeit("catalog.get"):
        p = await request.app.state.catalog.get_product(product_id)
    if p is None or not p.active:
        raise NotFound("product not found")
    return product_out(p)


# ----------------------------
# Checkout (cart -> pending order + payment session)
# ----------------------------
@app.post("/checkout")
@app.post("/api/create-checkout-session")
async def create_checkout(payload: CheckoutRequest, request: Request):
    async with timeit("checkout.start"):
        session = await request.app.state.checkout.start(payload.cart)
    order = session.order
    return {
        "order_id": order.id,
        "url": session.redirect_url,
        "subtotal_cents": order.subtotal_cents,
        "currency": order.currency,
    }


# ----------------------------
# API: Order status (polled by success page)
# ----------------------------
@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, request: Request):
    async with timeit("ledger.get_order"):
        order = await request.app.state.ledger.get_order(order_id)
    if order is None:
        raise NotFound("order not found")
    return order_status_out(order)


# ----------------------------
# Payment processor callback
# ----------------------------
@app.post("/payment-callback")
async def payment_callback(request: Request):
    payload = await request.body()
    headers = dict(request.headers)
    adapter: PaymentAdapter = request.app.state.adapter

    try:
        event = adapter.verify_webhook(payload, headers)
    except UnverifiedEventError as e:
        logger.warning("rejected payment callback", reason=e.message,
                       client=request.client.host if request.client else None)
        raise
    parsed = adapter.parse_event(event)

    # PersistenceError escapes as 503: the processor will redeliver
    async with timeit("confirmation.handle"):
        result = await request.app.state.confirmations.handle(parsed)
    return {"ok": True, "outcome": result.outcome,
            "order_status": result.status}


# ----------------------------
# Admin: login / logout
# ----------------------------
class AdminLogin(BaseModel):
    password: str


@app.post("/api/admin/login")
async def admin_login(body: AdminLogin, request: Request):
    settings: Settings = request.app.state.settings
    if not ct_equal(body.password, settings.admin_password):
        logger.warning("admin login failed")
        raise UnauthorizedError("Invalid credentials.")
    cred = await request.app.state.credentials.issue()
    return {
        "token": cred.token,
        "expires_at": cred.expires_at,
        "expires_at_iso": to_iso(cred.expires_at),
    }


@app.post("/api/admin/logout")
async def admin_logout(request: Request, token: str = Depends(require_admin)):
    await request.app.state.credentials.revoke(token)
    return {"ok": True}


# ----------------------------
# Admin: orders
# ----------------------------
@app.get("/orders", dependencies=[Depends(require_admin)])
@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
async def admin_orders(request: Request, limit: int = 200):
    limit = max(1, min(limit, 500))
    async with timeit("ledger.list_orders"):
        orders = await request.app.state.ledger.list_orders(limit=limit)
    return {"items": [order_out(o) for o in orders], "limit": limit}


class ManualConfirmation(BaseModel):
    status: Literal["paid"]
    customer: Optional[Customer] = None
    shipping: Optional[ShippingAddress] = None


@app.patch("/orders/{order_id}", dependencies=[Depends(require_admin)])
async def admin_confirm_order(order_id: str, body: ManualConfirmation,
                              request: Request):
    event = PaymentEvent(
        kind="succeeded",
        order_id=order_id,
        idempotency_key=f"manual_{uuid.uuid4().hex}",
        customer=body.customer,
        shipping=body.shipping,
    )
    async with timeit("confirmation.handle"):
        result = await request.app.state.confirmations.handle(event)
    if result.order is None:
        raise NotFound("order not found")
    return {"outcome": result.outcome, "order": order_out(result.order)}


# ----------------------------
# Admin: catalog
# ----------------------------
@app.get("/api/admin/products", dependencies=[Depends(require_admin)])
async def admin_list_products(request: Request):
    async with timeit("catalog.list"):
        products = await request.app.state.catalog.list_products()
    return [product_out(p) for p in products]


@app.post("/api/admin/products", status_code=201,
          dependencies=[Depends(require_admin)])
async def admin_create_product(body: ProductIn, request: Request):
    async with timeit("catalog.create"):
        p = await request.app.state.catalog.create_product(body)
    logger.info("product created", product_id=p.id)
    return product_out(p)


@app.put("/api/admin/products/{product_id}",
         dependencies=[Depends(require_admin)])
async def admin_update_product(product_id: str, body: ProductPatch,
                               request: Request):
    async with timeit("catalog.update"):
        p = await request.app.state.catalog.update_product(product_id, body)
    logger.info("product updated", product_id=p.id)
    return product_out(p)


@app.delete("/api/admin/products/{product_id}",
            dependencies=[Depends(require_admin)])
async def admin_delete_product(product_id: str, request: Request):
    async with timeit("catalog.delete"):
        await request.app.state.catalog.delete_product(product_id)
    logger.info("product deleted", product_id=product_id)
    return {"ok": True}


@app.get("/api/admin/timings", dependencies=[Depends(require_admin)])
async def admin_timings():
    return {"items": aggregates()}


# ----------------------------
# MockPay hosted page (JSON stand-in for the processor's checkout UI)
# ----------------------------
@app.get("/mockpay/{psid}")
async def mockpay_screen(psid: str, request: Request):
    ps = request.app.state.adapter.get_session(psid)
    if not ps:
        raise NotFound("payment session not found")
    return {
        "psid": psid,
        "order_id": ps["order_id"],
        "line_items": ps["line_items"],
        "amount_total": ps["amount_total"],
        "currency": ps["currency"],
        "emit_url": f"/mockpay/{psid}/emit",
        "outcomes": list(EVENT_KINDS),
    }


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str,
    request: Request,
    t: str = Form(...),
    name: str = Form(""),
    email: str = Form(""),
    phone: str = Form(""),
    line1: str = Form(""),
    line2: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    postal_code: str = Form(""),
    country: str = Form(""),
):
    adapter: MockPay = request.app.state.adapter
    ps = adapter.get_session(psid)
    if not ps:
        raise NotFound("payment session not found")
    if email and not is_valid_email(email):
        raise ValidationError("invalid email")

    event = adapter.build_event(
        psid, t,
        customer=Customer(name=name, email=email, phone=phone),
        shipping=ShippingAddress(
            name=name, line1=line1, line2=line2, city=city, state=state,
            postal_code=postal_code, country=country,
        ),
    )
    payload = json.dumps(event).encode()
    settings: Settings = request.app.state.settings

    client_http: httpx.AsyncClient = request.app.state.http
    try:
        await client_http.post(
            settings.mock_webhook_url,
            content=payload,
            headers={
                SIGNATURE_HEADER: adapter.sign(payload),
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # don't fail the redirect if the webhook doesn't reach; the shopper
        # can emit again
        logger.warning("webhook delivery failed", psid=psid, error=str(e))

    url = ps["success_url"] if t == "succeeded" else ps["cancel_url"]
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)
