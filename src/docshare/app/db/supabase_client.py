"""Async PostgREST client for the docshare tables and RPC functions.

Single point of Supabase HTTP interaction; repositories build on
``select``/``insert``/``update``/``rpc``.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)

# Column -> value (implies "eq") or (operator, value).
Filters = Mapping[str, Any]

# Module-level shared client for connection pooling.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _encode_value(op: str, value: Any) -> str:
    if value is None:
        if op != "is":
            raise ValueError(f"{op} does not support None; use op='is'")
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters_to_params(filters: Filters | None) -> dict[str, str]:
    """``{"id": "d1", "revision": ("eq", 3)}`` -> PostgREST query params."""
    params: dict[str, str] = {}
    for column, spec in (filters or {}).items():
        if isinstance(spec, tuple) and len(spec) == 2:
            op, value = spec
        else:
            op, value = "eq", spec
        params[column] = f"{op}.{_encode_value(op, value)}"
    return params


class SupabaseClient:
    """Minimal async PostgREST client using the service-role key."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._supabase_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def base_rest_url(self) -> str:
        return f"{self._supabase_url}/rest/v1"

    def _headers(self, *, representation: bool = False) -> dict[str, str]:
        # Never log these headers.
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        if representation:
            headers["Prefer"] = "return=representation"
        return headers

    def _raise_for_error(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = resp.text
        code = details = None
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            message = payload.get("message") or message
            code = payload.get("code")
            details = payload.get("details")

        err_cls: type[SupabaseError]
        if resp.status_code in (401, 403):
            err_cls = SupabaseAuthError
        elif resp.status_code == 404:
            err_cls = SupabaseNotFoundError
        elif resp.status_code == 409:
            err_cls = SupabaseConflictError
        else:
            err_cls = SupabaseError
        raise err_cls(
            status_code=resp.status_code,
            message=message,
            code=code,
            details=details,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._client.request(
            method,
            f"{self.base_rest_url}/{path}",
            timeout=self._timeout_seconds,
            **kwargs,
        )
        self._raise_for_error(resp)
        return resp.json()

    @staticmethod
    def _expect_list(payload: Any, operation: str) -> list[dict[str, Any]]:
        if not isinstance(payload, list):
            raise SupabaseError(
                status_code=500, message=f"expected list response from {operation}",
            )
        return payload

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = "*",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = _filters_to_params(filters)
        params["select"] = columns
        if limit is not None:
            params["limit"] = str(int(limit))
        payload = await self._request(
            "GET", table, params=params, headers=self._headers(),
        )
        return self._expect_list(payload, "select")

    async def insert(
        self,
        table: str,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        payload = await self._request(
            "POST", table, json=data, headers=self._headers(representation=True),
        )
        return self._expect_list(payload, "insert")

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        """PATCH rows matching ``filters``; an empty list means nothing matched."""
        payload = await self._request(
            "PATCH",
            table,
            params=_filters_to_params(filters),
            json=data,
            headers=self._headers(representation=True),
        )
        return self._expect_list(payload, "update")

    async def rpc(
        self,
        function_name: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self._request(
            "POST",
            f"rpc/{function_name}",
            json=dict(params or {}),
            headers=self._headers(),
        )
