"""
SQLAlchemy ORM models for the print-shop service.

Defines the database schema for the clients, products, orders and
order_items tables.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Client(Base):
    """
    Client model representing a customer of the print shop.

    Attributes:
        id (str): Primary key (UUID string)
        full_name (str): Client's full name
        phone (str): Contact phone number
        email (str): Contact email (optional)
        created_at (datetime): Timestamp when the client was created
        updated_at (datetime): Timestamp of the last update
    """
    __tablename__ = "clients"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=False, default="")
    email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Product(Base):
    """
    Product model with its ordered manufacturing process.

    Attributes:
        id (str): Primary key (UUID string)
        name (str): Product name
        description (str): Optional description
        process_steps (list): Ordered step names (stored as JSON)
    """
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    process_steps = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
    """
    Order model representing a client's request.

    Attributes:
        id (str): Primary key (UUID string)
        client_id (str): Foreign key to the client
        order_date (datetime): When the order was placed
        status (str): One of waiting, in_progress, postponed, cancelled, done
        current_step_index (int): Legacy single-product step pointer
        is_priority (bool): Priority flag used for sorting
        notes (str): Free text
        history (list): Append-only transition log (stored as JSON)
        items (list): OrderItem rows, deleted together with the order
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    client_id = Column(String, ForeignKey("clients.id"), nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    status = Column(String, nullable=False, default="waiting")
    current_step_index = Column(Integer, nullable=True, default=0)
    is_priority = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    history = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )


class OrderItem(Base):
    """
    OrderItem model: one product line within an order.

    Attributes:
        id (str): Primary key (UUID string)
        order_id (str): Foreign key to the owning order (cascade delete)
        product_id (str): Foreign key to the product
        quantity (int): Number of units
        item_notes (str): Optional notes
        status (str): Same values as Order.status
        current_step_index (int): None until started, else index into process_steps
    """
    __tablename__ = "order_items"

    id = Column(String, primary_key=True, index=True, default=_new_id)
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    item_notes = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="waiting")
    current_step_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True)
