"""
Print-shop Orders API

This module implements a FastAPI application that exposes the order
progress engine together with client and product management. Records are
persisted through a RecordStore: the local SQL database by default, or the
hosted backend when STORE_BACKEND=rest.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    /clients, /products: CRUD for clients and products
    GET /orders: Active orders in dashboard order
    POST /orders: Create an order with its items
    GET, PATCH, DELETE /orders/{order_id}: Read, edit, delete an order
    POST /orders/{order_id}/clone: Duplicate an order with reset progress
    PUT /orders/{order_id}/status: Set the order status
    GET /orders/{order_id}/timeline: Order history
    GET /orders/{order_id}/legacy: Single-product view of the order
    GET /orders/{order_id}/progress: Per-item progress with display labels
    /orders/{order_id}/items/...: Item management and step/status transitions

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "printshop-orders"
"""
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from . import display, models, schemas, validators
from .clients.rest_store import RestRecordStore
from .database import engine, SessionLocal
from .exceptions import (
    CascadeError,
    InvalidStateError,
    NotFoundError,
    ReferentialConflictError,
    StoreUnavailableError,
)
from .progress import OrderProgressEngine
from .store import RecordStore, SqlRecordStore

STORE_BACKEND = os.getenv("STORE_BACKEND", "sql")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create database tables
if STORE_BACKEND == "sql":
    models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="printshop-orders")


def get_store():
    """
    Dependency function that provides the configured record store.

    Yields:
        RecordStore: SqlRecordStore over a fresh session, or RestRecordStore
    """
    if STORE_BACKEND == "rest":
        store = RestRecordStore()
        try:
            yield store
        finally:
            store.close()
        return

    db = SessionLocal()
    try:
        yield SqlRecordStore(db)
    finally:
        db.close()


def get_engine(store: RecordStore = Depends(get_store)) -> OrderProgressEngine:
    return OrderProgressEngine(store)


# ── Error mapping ────────────────────────────────────────────────────────

def _error_body(exc) -> dict:
    return {"detail": str(exc), "operation": exc.operation, "entity_id": exc.entity_id}


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_body(exc))


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(exc))


@app.exception_handler(ReferentialConflictError)
async def conflict_handler(request: Request, exc: ReferentialConflictError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_body(exc))


@app.exception_handler(StoreUnavailableError)
async def unavailable_handler(request: Request, exc: StoreUnavailableError):
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=_error_body(exc))


@app.exception_handler(CascadeError)
async def cascade_handler(request: Request, exc: CascadeError):
    # The item write went through; tell the caller so it can reconcile the order
    body = _error_body(exc)
    committed = exc.committed.model_dump(mode="json") if exc.committed is not None else None
    body.update({"committed": committed, "cause": str(exc.cause)})
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# ── Clients ──────────────────────────────────────────────────────────────

@app.get("/clients", response_model=List[schemas.Client])
def list_clients(store: RecordStore = Depends(get_store)):
    return store.list("clients")


@app.get("/clients/{client_id}", response_model=schemas.Client)
def get_client(client_id: str, store: RecordStore = Depends(get_store)):
    return store.get("clients", client_id)


@app.post("/clients", response_model=schemas.Client, status_code=status.HTTP_201_CREATED)
def create_client(client: schemas.ClientCreate, store: RecordStore = Depends(get_store)):
    return store.insert("clients", client.model_dump())


@app.put("/clients/{client_id}", response_model=schemas.Client)
def update_client(client_id: str, client: schemas.ClientUpdate, store: RecordStore = Depends(get_store)):
    return store.update("clients", client_id, client.model_dump(exclude_unset=True))


@app.delete("/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(client_id: str, store: RecordStore = Depends(get_store)):
    """
    Delete a client.

    Raises:
        404 if the client does not exist
        409 if orders still reference the client
    """
    store.delete("clients", client_id)


# ── Products ─────────────────────────────────────────────────────────────

def _checked_steps(steps: List[str]) -> List[str]:
    is_valid, error_message = validators.validate_process_steps([s.strip() for s in steps if s and s.strip()])
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_message)
    return validators.normalize_process_steps(steps)


@app.get("/products", response_model=List[schemas.Product])
def list_products(store: RecordStore = Depends(get_store)):
    return store.list("products")


@app.get("/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: str, store: RecordStore = Depends(get_store)):
    return store.get("products", product_id)


@app.post("/products", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
def create_product(product: schemas.ProductCreate, store: RecordStore = Depends(get_store)):
    """
    Create a product. Process steps are cleaned up and end with the final
    packaging step.

    Raises:
        HTTPException: 400 if step names are duplicated
    """
    fields = product.model_dump()
    fields["process_steps"] = _checked_steps(product.process_steps)
    return store.insert("products", fields)


@app.put("/products/{product_id}", response_model=schemas.Product)
def update_product(product_id: str, product: schemas.ProductUpdate, store: RecordStore = Depends(get_store)):
    fields = product.model_dump(exclude_unset=True)
    if fields.get("process_steps") is not None:
        fields["process_steps"] = _checked_steps(fields["process_steps"])
    return store.update("products", product_id, fields)


@app.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(product_id: str, store: RecordStore = Depends(get_store)):
    store.delete("products", product_id)


# ── Orders ───────────────────────────────────────────────────────────────

@app.get("/orders", response_model=List[schemas.Order])
def list_orders(
    include_hidden: bool = False,
    client_id: Optional[str] = None,
    progress: OrderProgressEngine = Depends(get_engine),
):
    """
    List orders: priority first, then by status, newest first.

    Cancelled orders disappear 48 hours after cancellation unless
    include_hidden is set.
    """
    filters = {"client_id": client_id} if client_id else None
    orders = progress.list_orders(filters)
    return display.visible_orders(orders, datetime.now(timezone.utc), include_hidden=include_hidden)


@app.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(order: schemas.OrderCreate, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.create_order(order)


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.get_order(order_id)


@app.patch("/orders/{order_id}", response_model=schemas.Order)
def update_order(order_id: str, changes: schemas.OrderUpdate, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.update_order(order_id, changes)


@app.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    progress.delete_order(order_id)


@app.post("/orders/{order_id}/clone", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def clone_order(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.clone_order(order_id)


@app.put("/orders/{order_id}/status", response_model=schemas.Order)
def set_order_status(order_id: str, change: schemas.StatusChange, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.set_order_status(order_id, change.status)


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.HistoryEntry])
def get_order_timeline(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    """
    Get the history of an order in chronological order.

    Raises:
        404 if the order does not exist
    """
    return progress.get_order(order_id).history


@app.get("/orders/{order_id}/legacy", response_model=schemas.LegacyOrderView)
def get_legacy_view(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.legacy_view(order_id)


# ── Order items ──────────────────────────────────────────────────────────

@app.get("/orders/{order_id}/items", response_model=List[schemas.OrderItem])
def list_order_items(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.list_items(order_id)


@app.get("/orders/{order_id}/progress", response_model=List[schemas.ItemProgress])
def get_order_progress(order_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    """
    Per-item progress for the dashboard: status text and color, the
    current step label and every step with its badge color.
    """
    rows = []
    for item in progress.list_items(order_id):
        try:
            product = schemas.Product.model_validate(progress.store.get("products", item.product_id))
        except NotFoundError:
            logger.warning(f"Product {item.product_id} of item {item.id} no longer exists")
            product = None
        steps = product.process_steps if product else []
        rows.append(schemas.ItemProgress(
            item_id=item.id,
            product_id=item.product_id,
            product_name=product.name if product else None,
            quantity=item.quantity,
            status=item.status,
            status_text=display.status_text(item.status),
            status_color=display.status_color(item.status),
            current_step_index=item.current_step_index,
            step_label=display.current_step_label(item, product),
            steps=[schemas.StepBadge(name=s, color=display.step_color(s)) for s in steps],
        ))
    return rows


@app.post("/orders/{order_id}/items", response_model=schemas.OrderItem, status_code=status.HTTP_201_CREATED)
def add_order_item(order_id: str, item: schemas.OrderItemCreate, progress: OrderProgressEngine = Depends(get_engine)):
    return progress.add_item(order_id, item)


@app.delete("/orders/{order_id}/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_order_item(order_id: str, item_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    progress.remove_item(order_id, item_id)


@app.post("/orders/{order_id}/items/{item_id}/advance", response_model=schemas.OrderItem)
def advance_item(order_id: str, item_id: str, progress: OrderProgressEngine = Depends(get_engine)):
    """
    Move an item to its next process step, completing it on the last one.

    Raises:
        400 if the item's product has no steps (set the status instead)
        404 if the order or item does not exist
    """
    return progress.advance_item_step(order_id, item_id)


@app.put("/orders/{order_id}/items/{item_id}/status", response_model=schemas.OrderItem)
def set_item_status(
    order_id: str,
    item_id: str,
    change: schemas.StatusChange,
    progress: OrderProgressEngine = Depends(get_engine),
):
    return progress.set_item_status(order_id, item_id, change.status)


@app.put("/orders/{order_id}/items/{item_id}/step", response_model=schemas.OrderItem)
def go_to_item_step(
    order_id: str,
    item_id: str,
    change: schemas.StepChange,
    progress: OrderProgressEngine = Depends(get_engine),
):
    """
    Roll an item back to an earlier step.

    Raises:
        400 if the step is out of range or ahead of the current step
    """
    return progress.go_to_item_step(order_id, item_id, change.step_index)
