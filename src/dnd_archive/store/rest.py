"""
Hosted record store over its REST API.

Speaks the PostgREST dialect used by the hosted database: one endpoint per
table under ``/rest/v1``, filters as query parameters (``name=eq.Fireball``,
``name=in.("A","B")``) and write behavior selected with ``Prefer`` headers.
The auth session reads the signed-in user from ``/auth/v1/user``.
"""

import logging
from typing import Any

import httpx

from .base import AuthError, AuthSession, AuthUser, Query, RecordStore, StoreResult

logger = logging.getLogger("dnd-archive")

DEFAULT_TIMEOUT = 30.0


def _quote(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def filter_params(query: Query) -> list[tuple[str, str]]:
    """PostgREST query parameters for the filters on ``query``."""
    params = []
    for op, column, value in query.filters:
        if op == "eq":
            params.append((column, f"eq.{value}"))
        elif op == "in":
            params.append((column, f"in.({','.join(_quote(v) for v in value)})"))
    return params


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}: {response.text or response.reason_phrase}"


class RestStore(RecordStore):
    """Record store backed by the hosted REST API.

    Args:
        url: Project base URL, e.g. ``https://xyz.example.co``.
        key: Public API key.
        access_token: User token; requests fall back to the API key when omitted.
        client: Optional shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        url: str,
        key: str,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.key = key
        self.access_token = access_token
        self.timeout = timeout
        self._client = client

    @property
    def headers(self) -> dict[str, str]:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.access_token or self.key}",
        }

    def _request_args(self, query: Query) -> dict[str, Any]:
        params = filter_params(query)
        headers = dict(self.headers)
        method = "GET"
        body = None

        if query.action == "select":
            params.insert(0, ("select", query.columns))
        elif query.action == "insert":
            method = "POST"
            body = query.rows
            headers["Prefer"] = "return=representation"
        elif query.action == "upsert":
            method = "POST"
            body = query.rows
            params.append(("on_conflict", query.on_conflict or "id"))
            headers["Prefer"] = "resolution=merge-duplicates,return=representation"
        elif query.action == "update":
            method = "PATCH"
            body = query.payload
            headers["Prefer"] = "return=representation"
        elif query.action == "delete":
            method = "DELETE"
            headers["Prefer"] = "return=representation"

        return {
            "method": method,
            "url": f"{self.url}/rest/v1/{query.table_name}",
            "params": params,
            "headers": headers,
            "json": body,
        }

    async def execute(self, query: Query) -> StoreResult:
        args = self._request_args(query)
        logger.debug(f"{args['method']} {query.table_name} {args['params']}")

        try:
            if self._client is not None:
                response = await self._client.request(**args)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(**args)
        except httpx.RequestError as e:
            return StoreResult(error=f"Failed to reach store: {e}")

        if not response.is_success:
            return StoreResult(error=_error_message(response))

        if not response.content:
            return StoreResult(data=[])
        try:
            return StoreResult(data=response.json())
        except ValueError:
            return StoreResult(
                error=f"Store returned a non-JSON response (HTTP {response.status_code}) for {query.table_name}"
            )


class RestAuthSession(AuthSession):
    """Reads the signed-in user for ``access_token`` from the hosted auth API."""

    def __init__(
        self,
        url: str,
        key: str,
        access_token: str | None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url.rstrip("/")
        self.key = key
        self.access_token = access_token
        self._client = client

    async def get_user(self) -> AuthUser | None:
        """Current user, or None when there is no token or the token is rejected.

        Raises:
            AuthError: If the auth service cannot be reached.
        """
        if not self.access_token:
            return None

        args = {
            "url": f"{self.url}/auth/v1/user",
            "headers": {"apikey": self.key, "Authorization": f"Bearer {self.access_token}"},
        }
        try:
            if self._client is not None:
                response = await self._client.get(**args)
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                    response = await client.get(**args)
        except httpx.RequestError as e:
            raise AuthError(f"Could not reach the auth service: {e}") from e

        if response.status_code in (401, 403):
            logger.info("Access token rejected by the auth service")
            return None
        if not response.is_success:
            raise AuthError(f"Auth service returned HTTP {response.status_code}")

        try:
            body = response.json()
            return AuthUser(id=body["id"], email=body.get("email"))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"Unexpected response from the auth service: {e}") from e
