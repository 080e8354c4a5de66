"""Checkout and fulfillment: cart -> PIX payment -> tracked order -> downloads."""
import asyncio
import logging
import re
import secrets
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from starlette.concurrency import run_in_threadpool

from digital_store import config
from digital_store.errors import (
    CatalogUnavailableError,
    ExpiredError,
    NoLinksError,
    NotApprovedError,
    NotFoundError,
    ValidationError,
)
from digital_store.order_store import LineItem, OrderRecord, utcnow
from digital_store.retry import retry
from digital_store.schemas import CURRENCY_PREFIX_RE, CartItem
from digital_store.status import OrderStatus

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CENTS = Decimal("0.01")


def parse_total(value):
    """Parse a declared total given as a number or a localized string.

    ``"R$ 1.234,56"`` becomes ``Decimal("1234.56")``: any currency prefix
    stripped, ``.`` thousands separators dropped, decimal comma turned
    into a point.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("total", "Invalid total format")
    if isinstance(value, float):
        # Numeric input is rounded to cents; only strings must be exact
        value = Decimal(str(value))
        if value.is_finite():
            try:
                value = value.quantize(CENTS, rounding=ROUND_HALF_UP)
            except InvalidOperation:
                raise ValidationError("total", "Total is out of range") from None
    if isinstance(value, (int, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = CURRENCY_PREFIX_RE.sub("", value.strip()).strip()
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
    else:
        raise ValidationError("total", "Invalid total format")

    try:
        total = Decimal(text)
    except InvalidOperation:
        raise ValidationError("total", "Total must be a number") from None
    if not total.is_finite() or total <= 0:
        raise ValidationError("total", "Total must be greater than zero")
    if total != total.quantize(CENTS):
        raise ValidationError("total", "Total must have at most two decimal places")
    return total.quantize(CENTS)


def describe_cart(items):
    first = items[0].name or items[0].product_id
    if len(items) == 1:
        return first
    return f"{len(items)} products - {first} and others"


class OrderFlow:
    def __init__(
        self,
        catalog,
        gateway,
        store,
        clock=utcnow,
        entitlement_window=None,
        notification_delay=None,
        notification_url=None,
        catalog_attempts=None,
        catalog_delay=None,
    ):
        self.catalog = catalog
        self.gateway = gateway
        self.store = store
        self.clock = clock
        self.entitlement_window = timedelta(
            seconds=config.ENTITLEMENT_WINDOW_SECONDS if entitlement_window is None else entitlement_window
        )
        self.notification_delay = (
            config.NOTIFICATION_DELAY_SECONDS if notification_delay is None else notification_delay
        )
        self.notification_url = notification_url or f"{config.PUBLIC_BASE_URL}/webhook"
        self.catalog_attempts = catalog_attempts or config.CATALOG_RETRY_ATTEMPTS
        self.catalog_delay = config.CATALOG_RETRY_DELAY if catalog_delay is None else catalog_delay

    # ---------- Catalog ----------

    async def _catalog_call(self, func, *args):
        return await retry(
            lambda: run_in_threadpool(func, *args),
            max_attempts=self.catalog_attempts,
            base_delay=self.catalog_delay,
            retry_on=(CatalogUnavailableError,),
        )

    async def list_products(self):
        return await self._catalog_call(self.catalog.list_products)

    async def get_product(self, product_id):
        return await self._catalog_call(self.catalog.get_product, product_id)

    async def _resolve(self, item):
        product = await self.get_product(item.id)
        if product is None:
            logger.warning("Product %s not found in catalog, keeping a placeholder", item.id)
            return LineItem(
                product_id=item.id,
                name=item.name or "Product not found",
                quantity=item.quantity,
                unit_price=Decimal("0"),
                download_url=None,
                found=False,
            )
        return LineItem(
            product_id=product.id,
            name=product.name,
            quantity=item.quantity,
            unit_price=product.price,
            download_url=product.download_url,
        )

    # ---------- Checkout ----------

    def _validate(self, cart, customer_name, email, declared_total):
        if not cart:
            raise ValidationError("carrinho", "Cart must not be empty")
        for index, item in enumerate(cart):
            if not item.id:
                raise ValidationError(f"carrinho[{index}].id", "Product id is required")
            if item.quantity < 1:
                raise ValidationError(f"carrinho[{index}].quantity", "Quantity must be greater than zero")
        if not customer_name or not customer_name.strip():
            raise ValidationError("nomeCliente", "Customer name is required")
        if not email or not EMAIL_RE.match(email.strip()):
            raise ValidationError("email", "Invalid email")
        return parse_total(declared_total)

    async def create_order(self, cart, customer_name, email, declared_total):
        total = self._validate(cart, customer_name, email, declared_total)
        customer_name, email = customer_name.strip(), email.strip()

        items = [await self._resolve(item) for item in cart]
        now = self.clock()
        external_reference = f"order-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"

        # Never retried: a second create may charge the customer twice
        payment = await run_in_threadpool(
            self.gateway.create_pix_payment,
            total,
            describe_cart(items),
            email,
            customer_name,
            external_reference,
            self.notification_url,
            [{"id": item.product_id, "qty": item.quantity} for item in items],
        )

        record = OrderRecord(
            payment_id=payment.id,
            status=OrderStatus.PENDING,
            status_detail=payment.status_detail,
            customer_email=email,
            customer_name=customer_name,
            total=total,
            items=items,
            external_reference=external_reference,
            created_at=now,
            updated_at=now,
        )
        await run_in_threadpool(self.store.put, payment.id, record)
        logger.info("Order %s recorded for %s (total %s, %d items)", payment.id, email, total, len(items))

        return {
            "id": payment.id,
            "status": payment.status.value,
            "qr_code": payment.qr_code,
            "qr_code_base64": payment.qr_code_image,
            "ticket_url": payment.ticket_url,
            "total": float(total),
            "cliente": customer_name,
            "produtos": [
                {"id": item.product_id, "nome": item.name, "quantidade": item.quantity}
                for item in items
            ],
        }

    async def create_single_product_order(self, product_id, email, customer_name=""):
        product = await self.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found", details={"produtoId": str(product_id)})
        if product.price <= 0:
            raise ValidationError("price", f"Invalid product price: {product.price}")
        cart = [CartItem(id=product.id, name=product.name, price=product.price, quantity=1)]
        return await self.create_order(cart, customer_name or email, email, product.price)

    # ---------- Status reconciliation ----------

    async def _apply(self, payment_id, status, detail):
        """Write the gateway's view onto the stored record when the move is legal."""
        record = await run_in_threadpool(self.store.advance_status, payment_id, status, detail)
        if record is not None and record.status != status:
            logger.warning(
                "Ignoring gateway status %s for %s: order is already %s",
                status, payment_id, record.status,
            )
        return record

    async def handle_notification(self, event_type, payment_id):
        """Reconcile one payment after a gateway notification.

        Runs after the webhook has been acknowledged, so failures are only
        logged.
        """
        if not (event_type == "payment" or str(event_type).startswith("payment_intent.")):
            logger.info("Ignoring %s notification", event_type)
            return
        if not payment_id:
            logger.warning("Notification %s without a payment id", event_type)
            return

        await asyncio.sleep(self.notification_delay)
        try:
            payment = await run_in_threadpool(self.gateway.get_payment, payment_id)
            if payment is None:
                logger.warning("Gateway has no payment %s", payment_id)
                return
            record = await self._apply(payment_id, payment.status, payment.status_detail)
            if record is None:
                logger.info("Notification for unknown payment %s (gateway says %s)", payment_id, payment.status)
                return
            logger.info("Payment %s reconciled: %s", payment_id, record.status)
        except Exception:
            logger.exception("Reconciliation of payment %s failed", payment_id)

    async def get_order_status(self, payment_id):
        record = await run_in_threadpool(self.store.get, payment_id)
        if record is not None and record.status.is_terminal:
            return record

        payment = await run_in_threadpool(self.gateway.get_payment, payment_id)
        if record is None:
            if payment is None:
                raise NotFoundError("Payment not found", details={"id": str(payment_id)})
            now = self.clock()
            record = OrderRecord(
                payment_id=payment.id,
                status=payment.status,
                status_detail=payment.status_detail,
                customer_email=payment.email or "",
                customer_name=payment.customer_name or "",
                total=payment.amount,
                created_at=payment.created_at or now,
                updated_at=now,
            )
            await run_in_threadpool(self.store.put, payment.id, record)
            return record

        if payment is None:
            logger.warning("Gateway lost track of payment %s", payment_id)
            updated = await self._apply(payment_id, OrderStatus.NOT_FOUND, "Payment not found at gateway")
        else:
            updated = await self._apply(payment_id, payment.status, payment.status_detail)
        return updated or record

    # ---------- Fulfillment ----------

    def get_download_links(self, payment_id):
        record = self.store.get(payment_id)
        if record is None:
            raise NotFoundError("Order not found", details={"id": str(payment_id)})
        if record.status != OrderStatus.APPROVED:
            raise NotApprovedError(record.status)

        age = self.clock() - record.created_at
        if age > self.entitlement_window:
            raise ExpiredError()

        links = record.download_links()
        if not links:
            raise NoLinksError()

        expires_at = record.created_at + self.entitlement_window
        return {
            "links": links,
            "products": [item.to_dict() for item in record.items],
            "customerName": record.customer_name,
            "total": float(record.total),
            "expiresIn": int((self.entitlement_window - age).total_seconds()),
            "expiresAt": expires_at.isoformat(),
        }
