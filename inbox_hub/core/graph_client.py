"""
Async HTTP client for the Meta Graph API.

Wraps a single httpx.AsyncClient with bearer authentication, a versioned
base URL and split connect/read timeouts. Transport failures are mapped
onto GraphConnectError (request provably not sent) or GraphTimeoutError /
GraphTransportError (outcome unknown) so callers can decide whether a
retry is safe.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional

import httpx
import structlog

from inbox_hub.core.exceptions import GraphConnectError, GraphTimeoutError, GraphTransportError


@dataclass
class GraphResponse:
    """HTTP status and decoded body of a Graph API call."""

    status_code: int
    data: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error(self) -> Dict[str, Any]:
        error = self.data.get("error")
        return error if isinstance(error, dict) else {}

    @property
    def error_code(self) -> Optional[int]:
        return _as_int(self.error.get("code"))

    @property
    def error_subcode(self) -> Optional[int]:
        return _as_int(self.error.get("error_subcode"))

    @property
    def error_message(self) -> str:
        return str(self.error.get("message") or self.error.get("error_user_msg") or "")

    @property
    def retry_after(self) -> Optional[float]:
        value = self.headers.get("retry-after")
        if value is None:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GraphClient:
    """Bearer-authenticated Graph API client."""

    def __init__(
            self,
            base_url: str,
            api_version: str,
            connect_timeout: float = 5.0,
            timeout: float = 15.0,
            transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = f"{base_url.rstrip('/')}/{api_version}"
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def request(
            self,
            method: str,
            path: str,
            access_token: str,
            params: Optional[Dict[str, Any]] = None,
            json: Optional[Dict[str, Any]] = None
    ) -> GraphResponse:
        """
        Perform a Graph API call.

        Args:
            method: HTTP method
            path: Path relative to the versioned base URL, or an absolute
                paging URL returned by a previous call
            access_token: Bearer token of the platform
            params: Query parameters
            json: JSON body

        Returns:
            GraphResponse for any HTTP status

        Raises:
            GraphConnectError: Connection failed before the request was sent
            GraphTimeoutError: No complete response within the read/write timeout
            GraphTransportError: Connection dropped after the request was sent
        """
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = await self._client.request(method, path, params=params, json=json, headers=headers)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            self.logger.warning("Graph API connection failed", path=_safe_path(path), error=type(e).__name__)
            raise GraphConnectError(f"Connection to Graph API failed: {type(e).__name__}", path=_safe_path(path)) from e
        except httpx.TimeoutException as e:
            self.logger.warning("Graph API call timed out", path=_safe_path(path), error=type(e).__name__)
            raise GraphTimeoutError(f"Graph API call timed out: {type(e).__name__}", path=_safe_path(path)) from e
        except httpx.TransportError as e:
            self.logger.warning("Graph API transport error", path=_safe_path(path), error=type(e).__name__)
            raise GraphTransportError(
                f"Graph API connection dropped: {type(e).__name__}", request_sent=True, path=_safe_path(path)
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}
        if not isinstance(data, dict):
            data = {"data": data}

        return GraphResponse(
            status_code=response.status_code,
            data=data,
            headers={key.lower(): value for key, value in response.headers.items()},
        )

    async def get(self, path: str, access_token: str, params: Optional[Dict[str, Any]] = None) -> GraphResponse:
        return await self.request("GET", path, access_token, params=params)

    async def post(
            self,
            path: str,
            access_token: str,
            json: Optional[Dict[str, Any]] = None,
            params: Optional[Dict[str, Any]] = None
    ) -> GraphResponse:
        return await self.request("POST", path, access_token, params=params, json=json)

    async def close(self) -> None:
        await self._client.aclose()


def _safe_path(path: str) -> str:
    # paging URLs embed the access token in the query string
    return path.split("?", 1)[0]
