"""Base protocol and types for channel gateways."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class GatewayResponse:
    """An accepted gateway submission.

    Attributes:
        message_id: Id assigned by the gateway, used to correlate status callbacks
        status_code: HTTP status code of the submission
        response_time_ms: Round trip time in milliseconds
        raw: Parsed response body
    """

    message_id: str
    status_code: int | None = None
    response_time_ms: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class ChannelGateway(Protocol):
    """Protocol for the messaging gateway.

    Implementations return a ``GatewayResponse`` when the gateway accepts the
    message and raise (typically ``GatewayError``) otherwise. Addresses are
    already validated and formatted for the channel.
    """

    async def send_rich(
        self,
        to: str,
        template_name: str,
        params: dict[str, str],
        language: str = "en",
    ) -> GatewayResponse:
        """Send a template message over the rich channel."""
        ...

    async def send_plain(self, to: str, text: str) -> GatewayResponse:
        """Send a text message over the plain channel."""
        ...
