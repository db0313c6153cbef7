"""Hosted gateway communication layer.

The gateway is a backend-as-a-service exposing PostgREST-style collections
under ``/rest/v1``, remote procedures under ``/rest/v1/rpc`` and a GoTrue-style
auth API under ``/auth/v1``.
"""
import json
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Optional

import httpx

from config import APPLICATION_NAME, GATEWAY_ANON_KEY, GATEWAY_URL
from monitoring import gateway_duration_histogram

logger = logging.getLogger(__name__)

ABORTED = "aborted"


class GatewayError(Exception):
    """Raised when the gateway rejects a request or returns garbage."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayUnavailable(GatewayError):
    """Raised when the gateway cannot be reached."""


class RequestAborted(Exception):
    """Raised when a pending request was superseded by a newer view."""


@dataclass
class QueryResult:
    """Outcome of a guarded gateway call."""
    data: Any = None
    error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.error == ABORTED

    @property
    def ok(self) -> bool:
        return self.error is None


async def safe_query(call: Awaitable[Any]) -> QueryResult:
    """
    Await a gateway call and fold its failure into a QueryResult.

    A superseded request comes back as the ``aborted`` error so callers can
    drop it without telling the user.
    """
    try:
        data = await call
    except RequestAborted:
        return QueryResult(error=ABORTED)
    except GatewayError as e:
        return QueryResult(error=e.message or "An unexpected database error occurred.")
    return QueryResult(data=data)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Gateway returned HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error_description", "msg", "error"):
            if body.get(key):
                return str(body[key])
    return f"Gateway returned HTTP {response.status_code}"


class GatewayClient:
    """Client for the hosted data/auth gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = GATEWAY_URL,
        api_key: str = GATEWAY_ANON_KEY,
        access_token: Optional[str] = None
    ):
        """
        Initialize gateway client.

        Args:
            http_client: Async HTTP client
            base_url: Gateway root URL
            api_key: Public (anon) API key
            access_token: User session token; requests run as anon without it
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token

    def bind(self, access_token: Optional[str]) -> "GatewayClient":
        """Return a client that issues requests as the given session."""
        return GatewayClient(self.http_client, self.base_url, self.api_key, access_token)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
            "x-application-name": APPLICATION_NAME,
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        prefer: Optional[str] = None
    ) -> Any:
        """
        Issue a request and decode the JSON body.

        Raises:
            GatewayUnavailable: If the gateway cannot be reached
            GatewayError: If the gateway rejects the request or the body is malformed
        """
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        status_code = None
        content = json.dumps(body, default=_json_default) if body is not None else None
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                content=content,
                headers=self._headers(prefer)
            )
            status_code = response.status_code
            if response.status_code >= 400:
                status = "error"
                message = _error_message(response)
                logger.warning("Gateway rejected request", extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message
                })
                raise GatewayError(message, response.status_code)
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                status = "error"
                logger.error("Gateway returned malformed body", extra={
                    "operation": operation,
                    "status_code": response.status_code
                })
                raise GatewayError("Malformed response from gateway", response.status_code) from e
        except httpx.HTTPError as e:
            status = "error"
            status_code = 0  # Connection failure
            logger.error("Gateway request failed", extra={
                "operation": operation,
                "error": str(e)
            })
            raise GatewayUnavailable(str(e) or "Gateway is unreachable") from e
        finally:
            gateway_duration_histogram.record(
                time.time() - start_time,
                {
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

    # --- collections ---

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Read rows from a collection.

        Args:
            table: Collection name
            filters: Column equality filters
            columns: PostgREST select expression (may embed joins)
            order: Column to order by
            ascending: Sort direction
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            Matching rows
        """
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)
        if offset:
            params["offset"] = str(offset)
        rows = await self._request("GET", f"/rest/v1/{table}", f"select.{table}", params=params)
        return rows or []

    async def select_one(
        self,
        table: str,
        filters: Dict[str, Any],
        columns: str = "*"
    ) -> Optional[Dict[str, Any]]:
        """Read a single row, or None when nothing matches."""
        rows = await self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return the stored record."""
        rows = await self._request(
            "POST",
            f"/rest/v1/{table}",
            f"insert.{table}",
            body=row,
            prefer="return=representation"
        )
        if not rows:
            raise GatewayError(f"Insert into {table} returned no record")
        return rows[0]

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        filters: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Update matching rows and return the stored records."""
        params = {column: f"eq.{value}" for column, value in filters.items()}
        rows = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            f"update.{table}",
            params=params,
            body=values,
            prefer="return=representation"
        )
        return rows or []

    async def delete(self, table: str, filters: Dict[str, Any]) -> None:
        """Delete matching rows."""
        params = {column: f"eq.{value}" for column, value in filters.items()}
        await self._request("DELETE", f"/rest/v1/{table}", f"delete.{table}", params=params)

    async def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        """Call a remote procedure."""
        return await self._request("POST", f"/rest/v1/rpc/{name}", f"rpc.{name}", body=params)

    # --- auth ---

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """Exchange credentials for a session (access_token, refresh_token, user)."""
        return await self._request(
            "POST",
            "/auth/v1/token",
            "auth.sign_in",
            params={"grant_type": "password"},
            body={"email": email, "password": password}
        )

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """Register a user. The body carries a session only when no email verification is pending."""
        return await self._request(
            "POST",
            "/auth/v1/signup",
            "auth.sign_up",
            body={"email": email, "password": password, "data": metadata}
        )

    async def sign_out(self) -> None:
        """Revoke the bound session."""
        await self._request("POST", "/auth/v1/logout", "auth.sign_out")

    async def get_user(self) -> Dict[str, Any]:
        """Return the auth user for the bound session."""
        return await self._request("GET", "/auth/v1/user", "auth.get_user")

    async def check_connection(self) -> Dict[str, Any]:
        """
        Probe the products collection.

        Returns:
            Dict with ``success`` and a human readable ``message``
        """
        try:
            await self.select("products", columns="id", limit=1)
        except GatewayUnavailable as e:
            return {"success": False, "message": f"System Error: {e.message}"}
        except GatewayError as e:
            if e.status_code in (401, 403):
                return {
                    "success": False,
                    "message": "Authentication Restricted: Check your gateway API keys and row-level policies."
                }
            return {"success": False, "message": f"Database Sync Failed: {e.message}"}
        return {"success": True, "message": "Gateway connection established and stable."}
