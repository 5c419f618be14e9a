from __future__ import annotations

"""Persistence gateway backed by a hosted PostgREST (Supabase) endpoint."""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import ConflictError, PersistenceError

LOG = logging.getLogger("portfolio.gateway")

# Atomic counters are exposed as SQL functions taking the row id.
_INCREMENT_FUNCTIONS: Dict[Tuple[str, str], str] = {
    ("projects", "download_count"): "increment_download_count",
    ("projects", "like_count"): "increment_like_count",
}

_UNIQUE_VIOLATION = "23505"


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.3,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _filter_value(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return "eq.true" if value else "eq.false"
    return f"eq.{value}"


def _filter_params(filters: Optional[Mapping[str, Any]]) -> List[Tuple[str, str]]:
    return [(col, _filter_value(value)) for col, value in (filters or {}).items()]


class RestGateway:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
        timeout: Tuple[int, int] = (3, 15),
    ) -> None:
        self._base = base_url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._session = session or _build_session()
        self._timeout = timeout

    @classmethod
    def from_env(cls) -> "RestGateway":
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the rest gateway")
        return cls(url, key)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = self._session.request(
                method,
                f"{self._base}/{path}",
                params=params,
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            LOG.warning("gateway_request_failed %s %s: %s", method, path, exc)
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 409 or self._error_code(resp) == _UNIQUE_VIOLATION:
            raise ConflictError(f"{method} {path} conflict: {resp.text[:500]}")
        if not resp.ok:
            raise PersistenceError(f"{method} {path} returned {resp.status_code}: {resp.text[:500]}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {path} returned unreadable body") from exc

    @staticmethod
    def _error_code(resp: requests.Response) -> Optional[str]:
        if resp.ok:
            return None
        try:
            data = resp.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            code = data.get("code")
            return str(code) if code is not None else None
        return None

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = [("select", "*")] + _filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(max(0, limit))))
        data = self._request("GET", table, params=params)
        return list(data or [])

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", table, json=dict(row), prefer="return=representation")
        if not data:
            raise PersistenceError(f"{table}: insert returned no row")
        return dict(data[0])

    def update_by_id(self, table: str, row_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        data = self._request(
            "PATCH",
            table,
            params=[("id", _filter_value(row_id))],
            json=dict(values),
            prefer="return=representation",
        )
        if not data:
            raise PersistenceError(f"{table}: row {row_id} not found")
        return dict(data[0])

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise PersistenceError(f"{table}: refusing to delete without filters")
        data = self._request("DELETE", table, params=_filter_params(filters), prefer="return=representation")
        return len(data or [])

    def increment(self, table: str, row_id: str, column: str) -> None:
        function = _INCREMENT_FUNCTIONS.get((table, column))
        if not function:
            raise PersistenceError(f"{table}.{column} has no increment function")
        self._request("POST", f"rpc/{function}", json={"project_id": row_id})
