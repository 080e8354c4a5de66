import logging
from datetime import datetime, timezone

import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from digital_store import config
from digital_store.auth import verify_admin_token
from digital_store.errors import NotFoundError
from digital_store.schemas import (
    CreatePaymentRequest,
    CreateProductRequest,
    Product,
    SingleProductPaymentRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()
payments_router = APIRouter(prefix="/api/payments")
admin_router = APIRouter(prefix="/admin", dependencies=[Depends(verify_admin_token)])
debug_router = APIRouter(prefix="/api/payments")


def get_flow(request: Request):
    return request.app.state.flow


# ---------- Catalog ----------

@router.get("/produtos")
async def list_products(flow=Depends(get_flow)):
    products = await flow.list_products()
    logger.info("Products found: %d", len(products))
    return products


# ---------- Checkout & Payments ----------

@payments_router.post("/criar-pagamento")
async def create_payment(request: CreatePaymentRequest, flow=Depends(get_flow)):
    logger.info("Cart received: %d items for %s", len(request.carrinho), request.email)
    return await flow.create_order(request.carrinho, request.nomeCliente, request.email, request.total)


@router.post("/criar-pagamento")
async def create_single_product_payment(request: SingleProductPaymentRequest, flow=Depends(get_flow)):
    return await flow.create_single_product_order(request.produtoId, request.email, request.nomeCliente)


@payments_router.get("/status-pagamento/{payment_id}")
async def payment_status(payment_id: str, flow=Depends(get_flow)):
    record = await flow.get_order_status(payment_id)
    return record.to_dict()


@payments_router.get("/link-download/{payment_id}")
def download_links(payment_id: str, flow=Depends(get_flow)):
    return flow.get_download_links(payment_id)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None),
    flow=Depends(get_flow),
):
    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(
            payload,
            stripe_signature,
            config.STRIPE_WEBHOOK_SECRET,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    data = event.get("data") or {}
    payment_id = (data.get("object") or {}).get("id") or data.get("id")
    logger.info("Webhook %s received for payment %s", event.get("type"), payment_id)

    # Acknowledge now, reconcile after the response has been sent
    background_tasks.add_task(flow.handle_notification, event.get("type"), payment_id)
    return {"ok": True}


# ---------- Admin ----------

@admin_router.get("/pagamentos")
def list_payments(flow=Depends(get_flow)):
    return [
        {
            "id": record.payment_id,
            "customerName": record.customer_name,
            "customerEmail": record.customer_email,
            "status": record.status.value,
            "total": float(record.total),
            "createdAt": record.created_at.isoformat(),
        }
        for record in flow.store.list_orders()
    ]


@admin_router.post("/produtos", status_code=201)
def add_product(request: CreateProductRequest, flow=Depends(get_flow)):
    return flow.catalog.add_product(Product(**request.model_dump()))


@admin_router.delete("/produtos/{product_id}")
def remove_product(product_id: str, flow=Depends(get_flow)):
    if not flow.catalog.remove_product(product_id):
        raise NotFoundError("Product not found", details={"id": product_id})
    return {"removed": product_id}


# ---------- Debug (non-production only) ----------

@debug_router.get("/test")
def payments_test():
    return {
        "message": "Payments API is working",
        "routes": [
            "POST /api/payments/criar-pagamento (cart checkout)",
            "POST /api/payments/test-carrinho (cart shape check)",
            "POST /criar-pagamento (single product)",
        ],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@debug_router.post("/test-carrinho")
def cart_shape_test(request: CreatePaymentRequest):
    return {
        "message": "Cart received",
        "carrinho": [item.model_dump(mode="json") for item in request.carrinho],
        "nomeCliente": request.nomeCliente,
        "email": request.email,
        "total": request.total,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
