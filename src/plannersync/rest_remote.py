"""
REST remote store over httpx.

Pattern: PostgREST-style HTTP API
    GET    /rest/v1/{table}?col=eq.value&order=col.desc
    POST   /rest/v1/{table}                 (Prefer: return=representation)
    PATCH  /rest/v1/{table}?id=eq.{id}
    DELETE /rest/v1/{table}?id=eq.{id}
    POST   /rest/v1/rpc/{procedure}

Requests carry the project API key and the session's access token, which is
how the backend knows the caller's identity for its author checks.
"""

from typing import Optional, Dict, Any, List
import logging

import httpx

from .remote import RemoteStore
from .session import Session
from .errors import (
    RemoteError,
    TransientRemoteError,
    AuthorizationError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)


def eq_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Encode equality predicates as PostgREST query parameters.

    Examples:
        >>> eq_filters({"workspace_id": "ws1", "done": True})
        {'workspace_id': 'eq.ws1', 'done': 'eq.true'}
    """
    params = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


class RestRemoteStore(RemoteStore):
    """
    Remote store talking to a PostgREST-compatible endpoint.

    Usage:
        async with RestRemoteStore(config.remote.url, config.remote.api_key, session) as remote:
            notes = await remote.select("notes", {"workspace_id": session.workspace_id})
    """

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str],
                 session: Session,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: Backend root URL
            api_key: Project API key sent as the apikey header
            session: Logged-in session providing the bearer token
            timeout: Request timeout in seconds (the only timeout applied)
            transport: Optional httpx transport (used for testing)
        """
        self.base_url = base_url.rstrip("/")
        self.session = session
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _auth_headers(self) -> Dict[str, str]:
        self.session.ensure_open()
        if self.session.access_token:
            return {"Authorization": f"Bearer {self.session.access_token}"}
        return {}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"{method} {path} timed out: {e}")
        except httpx.TransportError as e:
            raise TransientRemoteError(f"{method} {path} failed: {e}")

        if response.status_code >= 400:
            raise self._error_from_response(method, path, response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(method: str, path: str, response: httpx.Response) -> RemoteError:
        """Map an HTTP error response to the RemoteError hierarchy."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or f"{method} {path} returned {response.status_code}"
        code = body.get("code")
        status = response.status_code

        if status >= 500 or status == 429:
            return TransientRemoteError(message, code, status)
        if status in (401, 403) or code == "42501":
            return AuthorizationError(message, code, status)
        if status == 404 or code == "PGRST116":
            return RecordNotFoundError(message, code, status)
        return RemoteError(message, code, status)

    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                     order_by: Optional[str] = None,
                     descending: bool = False) -> List[Dict[str, Any]]:
        params = {"select": "*", **eq_filters(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        rows = await self._request("GET", f"/{table}", params=params)
        return rows or []

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST", f"/{table}", json=row,
            headers={"Prefer": "return=representation"}
        )
        if not rows:
            raise RemoteError(f"Insert into {table} returned no row")
        return rows[0]

    async def update(self, table: str, row_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH", f"/{table}", params=eq_filters({"id": row_id}), json=changes,
            headers={"Prefer": "return=representation"}
        )
        # Row-level security hides rows the caller may not write
        if not rows:
            raise RecordNotFoundError(f"{table} {row_id} not found or not writable")
        return rows[0]

    async def delete(self, table: str, row_id: str) -> None:
        rows = await self._request(
            "DELETE", f"/{table}", params=eq_filters({"id": row_id}),
            headers={"Prefer": "return=representation"}
        )
        if not rows:
            raise RecordNotFoundError(f"{table} {row_id} not found or not writable")

    async def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        logger.debug(f"Calling remote procedure {name}")
        return await self._request("POST", f"/rpc/{name}", json=params)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
