"""
Pydantic schemas for records and request/response validation.

These schemas define the structure of clients, products, orders, order
items and history entries as they travel between the record store, the
progress engine and the API.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


class StatusValue(str, Enum):
    """Shared status of orders and order items."""
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"
    DONE = "done"


class HistoryEntry(BaseModel):
    """
    Immutable audit record of a status or step transition.

    Attributes:
        step (str): Human-readable label of what happened
        status (StatusValue): Resulting status
        timestamp (datetime): When the entry was created
        notes (str): Optional free text
    """
    model_config = ConfigDict(frozen=True)

    step: str
    status: StatusValue
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: Optional[str] = None


class ClientBase(BaseModel):
    """Base schema with common client attributes."""
    full_name: str = Field(..., min_length=1)
    phone: str = ""
    email: Optional[str] = None


class ClientCreate(ClientBase):
    """Schema for creating a new client."""


class ClientUpdate(BaseModel):
    """Schema for updating a client. All fields are optional."""
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class Client(ClientBase):
    """Schema for client responses, includes server-assigned fields."""
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProductBase(BaseModel):
    """Base schema with common product attributes."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    process_steps: List[str] = Field(default_factory=list, description="Ordered step names")


class ProductCreate(ProductBase):
    """Schema for creating a new product."""


class ProductUpdate(BaseModel):
    """Schema for updating a product. All fields are optional."""
    name: Optional[str] = None
    description: Optional[str] = None
    process_steps: Optional[List[str]] = None


class Product(ProductBase):
    """Schema for product responses."""
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderItemCreate(BaseModel):
    """Schema for an order line submitted with a new order."""
    product_id: str
    quantity: int = Field(..., gt=0, description="Number of units")
    item_notes: Optional[str] = None


class OrderItem(BaseModel):
    """
    Schema for order item responses.

    Attributes:
        id (str): Item identifier
        order_id (str): Owning order
        product_id (str): Referenced product
        quantity (int): Number of units
        item_notes (str): Optional notes
        status (StatusValue): Item status
        current_step_index (int): None until started
    """
    id: str
    order_id: str
    product_id: str
    quantity: int = Field(..., gt=0)
    item_notes: Optional[str] = None
    status: StatusValue = StatusValue.WAITING
    current_step_index: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderCreate(BaseModel):
    """Schema for creating a new order with its items."""
    client_id: str
    order_date: Optional[datetime] = None
    is_priority: bool = False
    notes: Optional[str] = None
    items: List[OrderItemCreate] = Field(default_factory=list, description="Order lines")


class OrderUpdate(BaseModel):
    """Schema for editing an order's descriptive fields."""
    notes: Optional[str] = None
    is_priority: Optional[bool] = None


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (str): Order identifier
        client_id (str): Referenced client
        order_date (datetime): When the order was placed
        status (StatusValue): Order status
        current_step_index (int): Legacy single-product pointer
        is_priority (bool): Priority flag
        notes (str): Free text
        history (List[HistoryEntry]): Append-only transition log
    """
    id: str
    client_id: str
    order_date: Optional[datetime] = None
    status: StatusValue = StatusValue.WAITING
    current_step_index: Optional[int] = None
    is_priority: bool = False
    notes: Optional[str] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StatusChange(BaseModel):
    """Request body for a status transition."""
    status: StatusValue


class StepChange(BaseModel):
    """Request body for moving an item back to an earlier step."""
    step_index: int = Field(..., ge=0)


class LegacyOrderView(BaseModel):
    """Single-product view of an order, exposing its first item."""
    order_id: str
    product_id: Optional[str] = None
    quantity: Optional[int] = None
    current_step_index: Optional[int] = None
    process_steps: List[str] = Field(default_factory=list)


class StepBadge(BaseModel):
    """A process step with its badge color."""
    name: str
    color: str


class ItemProgress(BaseModel):
    """Dashboard view of one item's progress."""
    item_id: str
    product_id: str
    product_name: Optional[str] = None
    quantity: int
    status: StatusValue
    status_text: str
    status_color: str
    current_step_index: Optional[int] = None
    step_label: str
    steps: List[StepBadge] = Field(default_factory=list)
