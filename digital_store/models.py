from sqlalchemy import Boolean, Column, DateTime, JSON, Numeric, String, Text
from digital_store.database import Base


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    image_url = Column(String)
    category = Column(String)
    download_url = Column(String)                  # link released after approval
    active = Column(Boolean, nullable=False, default=True, index=True)


class OrderRow(Base):
    __tablename__ = "orders"

    payment_id = Column(String, primary_key=True)  # gateway PaymentIntent ID
    status = Column(String, nullable=False)        # see digital_store.status.OrderStatus
    status_detail = Column(String)
    customer_email = Column(String)
    customer_name = Column(String)
    total = Column(Numeric(12, 2), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    external_reference = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
