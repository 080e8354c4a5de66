"""Payment tracking store.

Maps a gateway payment id to the order it pays for. ``update_status``
writes whatever it is given; ``advance_status`` applies the transition
policy from ``digital_store.status`` atomically with the write.
"""
import abc
import asyncio
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from starlette.concurrency import run_in_threadpool

from digital_store import config
from digital_store.database import SessionLocal
from digital_store.models import OrderRow
from digital_store.status import TERMINAL_STATUSES, OrderStatus, can_transition

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def _aware(value):
    # SQLite hands timezone-aware columns back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class LineItem:
    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    download_url: Optional[str] = None
    found: bool = True

    def to_dict(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "download_url": self.download_url,
            "found": self.found,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_id=data["product_id"],
            name=data["name"],
            quantity=data["quantity"],
            unit_price=Decimal(data["unit_price"]),
            download_url=data.get("download_url"),
            found=data.get("found", True),
        )


@dataclass
class OrderRecord:
    payment_id: str
    status: OrderStatus
    total: Decimal
    customer_email: str = ""
    customer_name: str = ""
    status_detail: str = ""
    items: List[LineItem] = field(default_factory=list)
    external_reference: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self):
        return replace(self, items=list(self.items))

    def download_links(self):
        return [item.download_url for item in self.items if item.download_url]

    def to_dict(self):
        return {
            "id": self.payment_id,
            "status": self.status.value,
            "status_detail": self.status_detail,
            "email": self.customer_email,
            "customer_name": self.customer_name,
            "total": float(self.total),
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class OrderStore(abc.ABC):
    @abc.abstractmethod
    def put(self, payment_id, record):
        """Insert or overwrite the record for ``payment_id``."""

    @abc.abstractmethod
    def get(self, payment_id):
        """Return the record, or None when the id is unknown."""

    @abc.abstractmethod
    def update_status(self, payment_id, status, detail=""):
        """Overwrite status and detail; a no-op for unknown ids.

        Returns the updated record or None.
        """

    @abc.abstractmethod
    def advance_status(self, payment_id, status, detail=""):
        """Like ``update_status``, but only when ``can_transition`` allows it.

        The check and the write happen as one step, so a terminal status
        written concurrently is never overwritten. Returns the record as
        stored afterwards (unchanged when the move was refused), or None.
        """

    @abc.abstractmethod
    def sweep_expired(self, max_age):
        """Delete every record created more than ``max_age`` ago; return the count."""

    @abc.abstractmethod
    def list_orders(self):
        """All records, newest first."""


class InMemoryOrderStore(OrderStore):
    def __init__(self, clock=utcnow):
        self._records = {}
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self):
        return len(self._records)

    def put(self, payment_id, record):
        with self._lock:
            self._records[str(payment_id)] = record.copy()

    def get(self, payment_id):
        with self._lock:
            record = self._records.get(str(payment_id))
            return record.copy() if record else None

    def update_status(self, payment_id, status, detail=""):
        with self._lock:
            record = self._records.get(str(payment_id))
            if record is None:
                return None
            record.status = OrderStatus(status)
            record.status_detail = detail
            record.updated_at = self._clock()
            return record.copy()

    def advance_status(self, payment_id, status, detail=""):
        with self._lock:
            record = self._records.get(str(payment_id))
            if record is None:
                return None
            if can_transition(record.status, status):
                record.status = OrderStatus(status)
                record.status_detail = detail
                record.updated_at = self._clock()
            return record.copy()

    def sweep_expired(self, max_age):
        cutoff = self._clock() - _as_timedelta(max_age)
        with self._lock:
            stale = [pid for pid, record in self._records.items() if record.created_at < cutoff]
            for pid in stale:
                del self._records[pid]
        return len(stale)

    def list_orders(self):
        with self._lock:
            records = [record.copy() for record in self._records.values()]
        return sorted(records, key=lambda record: record.created_at, reverse=True)


class SqlOrderStore(OrderStore):
    def __init__(self, session_factory=None, clock=utcnow):
        self.session_factory = session_factory or SessionLocal
        self._clock = clock

    @staticmethod
    def _to_record(row):
        return OrderRecord(
            payment_id=row.payment_id,
            status=OrderStatus(row.status),
            status_detail=row.status_detail or "",
            customer_email=row.customer_email or "",
            customer_name=row.customer_name or "",
            total=Decimal(row.total),
            items=[LineItem.from_dict(item) for item in row.items or []],
            external_reference=row.external_reference,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def put(self, payment_id, record):
        db = self.session_factory()
        try:
            db.merge(OrderRow(
                payment_id=str(payment_id),
                status=record.status.value,
                status_detail=record.status_detail,
                customer_email=record.customer_email,
                customer_name=record.customer_name,
                total=record.total,
                items=[item.to_dict() for item in record.items],
                external_reference=record.external_reference,
                created_at=record.created_at,
                updated_at=record.updated_at,
            ))
            db.commit()
        finally:
            db.close()

    def get(self, payment_id):
        db = self.session_factory()
        try:
            row = db.get(OrderRow, str(payment_id))
            return self._to_record(row) if row else None
        finally:
            db.close()

    def update_status(self, payment_id, status, detail=""):
        db = self.session_factory()
        try:
            row = db.get(OrderRow, str(payment_id))
            if row is None:
                return None
            row.status = OrderStatus(status).value
            row.status_detail = detail
            row.updated_at = self._clock()
            db.commit()
            db.refresh(row)
            return self._to_record(row)
        finally:
            db.close()

    def advance_status(self, payment_id, status, detail=""):
        status = OrderStatus(status)
        open_statuses = [s.value for s in OrderStatus if s not in TERMINAL_STATUSES]
        db = self.session_factory()
        try:
            db.query(OrderRow).filter(
                OrderRow.payment_id == str(payment_id),
                or_(OrderRow.status == status.value, OrderRow.status.in_(open_statuses)),
            ).update(
                {"status": status.value, "status_detail": detail, "updated_at": self._clock()},
                synchronize_session=False,
            )
            db.commit()
            row = db.get(OrderRow, str(payment_id))
            return self._to_record(row) if row else None
        finally:
            db.close()

    def sweep_expired(self, max_age):
        cutoff = self._clock() - _as_timedelta(max_age)
        db = self.session_factory()
        try:
            removed = db.query(OrderRow).filter(OrderRow.created_at < cutoff).delete()
            db.commit()
            return removed
        finally:
            db.close()

    def list_orders(self):
        db = self.session_factory()
        try:
            rows = db.query(OrderRow).order_by(OrderRow.created_at.desc()).all()
            return [self._to_record(row) for row in rows]
        finally:
            db.close()


def _as_timedelta(max_age):
    if isinstance(max_age, timedelta):
        return max_age
    return timedelta(seconds=max_age)


def build_order_store(kind=None):
    kind = kind or config.ORDER_STORE
    if kind == "memory":
        return InMemoryOrderStore()
    if kind == "sql":
        return SqlOrderStore()
    raise ValueError(f"Unknown ORDER_STORE {kind!r}, expected 'memory' or 'sql'")


async def run_sweeper(store, max_age, interval):
    """Sweep ``store`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(store.sweep_expired, max_age)
        except Exception:
            logger.exception("Order sweep failed")
            continue
        if removed:
            logger.info("Swept %d expired orders", removed)
