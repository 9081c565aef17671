"""
HTTP record store for a hosted PostgREST-style backend.

Tables are exposed as /rest/v1/{table}; rows are selected with
column=eq.value query parameters and writes return the affected rows when
the request carries "Prefer: return=representation".
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic_core import to_jsonable_python

from ..exceptions import NotFoundError, ReferentialConflictError, StoreUnavailableError
from ..store import Record, RecordStore

logger = logging.getLogger(__name__)

BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:54321")
BACKEND_API_KEY = os.getenv("BACKEND_API_KEY", "")
TIMEOUT = float(os.getenv("TIMEOUT", "5.0"))  # seconds

# Postgres error codes the backend forwards in its JSON error body
FOREIGN_KEY_VIOLATION = "23503"
UNIQUE_VIOLATION = "23505"
INSUFFICIENT_PRIVILEGE = "42501"
CONFLICT_CODES = {FOREIGN_KEY_VIOLATION, UNIQUE_VIOLATION, INSUFFICIENT_PRIVILEGE}


class RestRecordStore(RecordStore):
    """
    RecordStore speaking to the hosted backend over HTTP.

    Args:
        base_url: Backend root URL (defaults to BACKEND_URL)
        api_key: Key sent as apikey and bearer token (defaults to BACKEND_API_KEY)
        client: Preconfigured httpx.Client, mainly for tests
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        key = api_key if api_key is not None else BACKEND_API_KEY
        headers = {"apikey": key, "Authorization": f"Bearer {key}"} if key else {}
        self.client = client or httpx.Client(
            base_url=(base_url or BACKEND_URL).rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=TIMEOUT,
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, operation: str, record_id: Optional[str], method: str, table: str, **kwargs) -> Any:
        """Send a request and translate failures into store errors."""
        if "json" in kwargs:
            kwargs["json"] = to_jsonable_python(kwargs["json"])
        try:
            response = self.client.request(method, f"/{table}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{operation} on {table} failed: {e}")
            raise StoreUnavailableError(operation, record_id, f"backend unreachable: {e}") from e

        if response.is_success:
            return response.json() if response.content else []

        code = None
        try:
            body = response.json()
            code = body.get("code") if isinstance(body, dict) else None
        except ValueError:
            body = response.text

        logger.error(f"{operation} on {table} rejected: HTTP {response.status_code} {body}")
        if response.status_code == 404:
            raise NotFoundError(operation, table, record_id)
        if code in CONFLICT_CODES or response.status_code in (401, 403, 409):
            raise ReferentialConflictError(operation, record_id, f"HTTP {response.status_code}: {body}")
        raise StoreUnavailableError(operation, record_id, f"HTTP {response.status_code}: {body}")

    @staticmethod
    def _single(rows: List[Record], operation: str, table: str, record_id: Optional[str]) -> Record:
        if not rows:
            raise NotFoundError(operation, table, record_id)
        return rows[0]

    def get(self, table: str, record_id: str) -> Record:
        rows = self._request("get", record_id, "GET", table, params={"id": f"eq.{record_id}", "select": "*"})
        return self._single(rows, "get", table, record_id)

    def list(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Record]:
        params = {"select": "*", "order": "created_at.asc"}
        for key, value in (filters or {}).items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[key] = f"eq.{to_jsonable_python(value)}"
        return self._request("list", None, "GET", table, params=params)

    def insert(self, table: str, fields: Record) -> Record:
        rows = self._request(
            f"insert {table}", fields.get("id"), "POST", table,
            json=fields, headers={"Prefer": "return=representation"},
        )
        return self._single(rows, f"insert {table}", table, fields.get("id"))

    def update(self, table: str, record_id: str, fields: Record) -> Record:
        payload = {**fields, "updated_at": datetime.now(timezone.utc)}
        rows = self._request(
            f"update {table}", record_id, "PATCH", table,
            params={"id": f"eq.{record_id}"}, json=payload,
            headers={"Prefer": "return=representation"},
        )
        return self._single(rows, f"update {table}", table, record_id)

    def delete(self, table: str, record_id: str) -> None:
        rows = self._request(
            f"delete {table}", record_id, "DELETE", table,
            params={"id": f"eq.{record_id}"}, headers={"Prefer": "return=representation"},
        )
        self._single(rows, f"delete {table}", table, record_id)
