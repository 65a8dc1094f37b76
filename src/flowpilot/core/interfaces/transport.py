"""
Transport Protocols

Boundaries of the coordinator towards the outside world:
- StreamTransportProtocol opens one streaming request per attempt
- ApprovalProtocol resolves human-approval requests out of band

Infrastructure adapters (httpx) implement these; tests use in-memory fakes.
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class StreamTransportProtocol(Protocol):
    """Opens a streaming request and yields raw byte chunks."""

    def open_stream(self, route: str, payload: dict[str, Any]) -> AsyncIterator[bytes]:
        """
        Start a request and stream its response body.

        The returned iterator must release the underlying connection when it
        is closed or when the consuming task is cancelled.

        Args:
            route: Logical endpoint name (chat, flow, flow_authoring)
            payload: JSON request body

        Returns:
            Async iterator of response body chunks

        Raises:
            TransportError: If the request fails or the server answers with
                an error status (raised during iteration)
        """
        ...


class ApprovalProtocol(Protocol):
    """Resolves a pending human-approval request."""

    async def resolve(self, activity_id: str, confirmed: bool) -> dict[str, Any]:
        """
        Approve or reject the activity.

        Args:
            activity_id: Activity key embedded in the step output
            confirmed: True to approve, False to reject

        Returns:
            Response body of the approval endpoint

        Raises:
            ApprovalError: If the endpoint rejects the request
        """
        ...
