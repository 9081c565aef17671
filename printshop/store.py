"""
Record store collaborator for the progress engine.

The engine only talks to a RecordStore: five CRUD calls over the opaque
tables clients, products, orders and order_items, exchanging plain dicts.
SqlRecordStore implements the contract on top of a SQLAlchemy session;
the REST adapter for a hosted backend lives in clients/rest_store.py.
"""
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .exceptions import NotFoundError, ReferentialConflictError, StoreUnavailableError

# Set up logging
logger = logging.getLogger(__name__)

Record = Dict[str, Any]

TABLES = {
    "clients": models.Client,
    "products": models.Product,
    "orders": models.Order,
    "order_items": models.OrderItem,
}


class RecordStore(ABC):
    """
    Contract the engine consumes. Implementations assign id and created_at
    on insert and updated_at on update.
    """

    @abstractmethod
    def get(self, table: str, record_id: str) -> Record:
        """Fetch one record or raise NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    def list(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Record]:
        """Fetch records whose fields equal every value in filters, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def insert(self, table: str, fields: Record) -> Record:
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, record_id: str, fields: Record) -> Record:
        raise NotImplementedError

    @abstractmethod
    def delete(self, table: str, record_id: str) -> None:
        raise NotImplementedError


def _model_for(table: str):
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _to_record(obj) -> Record:
    """Copy an ORM row into a detached dict."""
    return {
        column.name: copy.deepcopy(getattr(obj, column.name))
        for column in obj.__table__.columns
    }


class SqlRecordStore(RecordStore):
    """
    RecordStore backed by a SQLAlchemy session.

    Deleting an order removes its items through the ORM cascade, so the
    behavior does not depend on the database enforcing ON DELETE CASCADE.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fetch(self, operation: str, table: str, record_id: str):
        model = _model_for(table)
        try:
            obj = self.db.get(model, record_id)
        except OperationalError as e:
            raise StoreUnavailableError(operation, record_id, str(e)) from e
        if obj is None:
            raise NotFoundError(operation, table, record_id)
        return obj

    def _commit(self, operation: str, record_id: Optional[str]) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"{operation} rejected for {record_id}: {e.orig}")
            raise ReferentialConflictError(operation, record_id, str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{operation} failed for {record_id}: {e}")
            raise StoreUnavailableError(operation, record_id, str(e)) from e

    def get(self, table: str, record_id: str) -> Record:
        return _to_record(self._fetch("get", table, record_id))

    def list(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Record]:
        model = _model_for(table)
        try:
            query = self.db.query(model)
            if filters:
                query = query.filter_by(**filters)
            rows = query.order_by(model.created_at).all()
        except OperationalError as e:
            raise StoreUnavailableError("list", None, str(e)) from e
        return [_to_record(row) for row in rows]

    def insert(self, table: str, fields: Record) -> Record:
        model = _model_for(table)
        obj = model(**fields)
        self.db.add(obj)
        self._commit(f"insert {table}", fields.get("id"))
        self.db.refresh(obj)
        return _to_record(obj)

    def update(self, table: str, record_id: str, fields: Record) -> Record:
        obj = self._fetch(f"update {table}", table, record_id)
        for key, value in fields.items():
            setattr(obj, key, value)
        obj.updated_at = datetime.now(timezone.utc)
        self._commit(f"update {table}", record_id)
        self.db.refresh(obj)
        return _to_record(obj)

    def delete(self, table: str, record_id: str) -> None:
        obj = self._fetch(f"delete {table}", table, record_id)
        self.db.delete(obj)
        self._commit(f"delete {table}", record_id)
