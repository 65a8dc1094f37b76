"""
HTTP Transport - httpx adapters for the agent endpoints.

HttpStreamTransport POSTs the attempt payload and streams the response body
chunk by chunk; HttpApprovalClient resolves human-approval requests. Both map
every failure onto the flowpilot error hierarchy so the coordinator never
sees an httpx exception.
"""

import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx
import structlog

from flowpilot.api.schemas.execution_schemas import ConfirmActionRequest
from flowpilot.core.domain.errors import ApprovalError, TransportError

logger = structlog.get_logger()

DEFAULT_ROUTES: dict[str, str] = {
    "chat": "/api/agents/chat",
    "flow": "/api/agents/flow/execute",
    "flow_authoring": "/api/agents/flow-builder",
}


def _error_message(body: bytes | str, fallback: str) -> str:
    """Extract the `error` field of a JSON error body, if there is one."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except ValueError:
        return text.strip() or fallback
    if isinstance(data, Mapping) and data.get("error"):
        return str(data["error"])
    return text.strip() or fallback


class HttpStreamTransport:
    """
    Streaming POST transport.

    Example:
        >>> transport = HttpStreamTransport("http://localhost:3000")
        >>> async for chunk in transport.open_stream("flow", payload):
        ...     decoder.feed(chunk)
    """

    def __init__(
        self,
        base_url: str,
        routes: Mapping[str, str] | None = None,
        timeout: float = 300.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the transport.

        Args:
            base_url: Server origin, e.g. http://localhost:3000
            routes: Route name -> path (defaults to the agent endpoints)
            timeout: Read timeout in seconds (flows can run for minutes)
            headers: Extra request headers (auth, tracing)
            client: Preconfigured client (tests inject httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.routes = {**DEFAULT_ROUTES, **(routes or {})}
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client
        self.logger = logger.bind(component="http_stream_transport")

    def url_for(self, route: str) -> str:
        if route not in self.routes:
            raise TransportError(f"Unknown route: {route}")
        return f"{self.base_url}{self.routes[route]}"

    async def open_stream(self, route: str, payload: dict[str, Any]) -> AsyncIterator[bytes]:
        url = self.url_for(route)
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        owns_client = self._client is None

        self.logger.debug("request.started", route=route, url=url)
        try:
            async with client.stream(
                "POST",
                url,
                json=payload,
                headers={"Accept": "text/event-stream", **self.headers},
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    message = _error_message(body, f"HTTP {response.status_code}")
                    self.logger.warning(
                        "request.rejected",
                        route=route,
                        status_code=response.status_code,
                        error=message,
                    )
                    raise TransportError(message, status_code=response.status_code)

                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            self.logger.warning("request.failed", route=route, error=str(e))
            raise TransportError(f"Request to {route} failed: {e}") from e
        finally:
            if owns_client:
                await client.aclose()


class HttpApprovalClient:
    """Client of the human-approval endpoint."""

    def __init__(
        self,
        base_url: str,
        route: str = "/api/agents/confirm",
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = f"{base_url.rstrip('/')}{route}"
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client
        self.logger = logger.bind(component="http_approval_client")

    async def resolve(self, activity_id: str, confirmed: bool) -> dict[str, Any]:
        """
        Approve or reject an activity.

        Returns:
            Response body (e.g. {"executed": true, ...})

        Raises:
            ApprovalError: On a non-2xx reply or a failed request
        """
        body = ConfirmActionRequest(activity_id=activity_id, confirmed=confirmed)
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(
                self.url, json=body.model_dump(by_alias=True), headers=self.headers
            )
        except httpx.HTTPError as e:
            raise ApprovalError(f"Approval request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if not response.is_success:
            message = _error_message(response.content, f"HTTP {response.status_code}")
            self.logger.warning(
                "approval.rejected",
                activity_id=activity_id,
                status_code=response.status_code,
                error=message,
            )
            raise ApprovalError(message)

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            return {"result": data}
        if data.get("error") and not data.get("executed"):
            raise ApprovalError(str(data["error"]))
        return data
