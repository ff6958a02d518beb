"""Gateway transports for the rich and plain channels."""

from __future__ import annotations

from artisan_notify.features.notifications.channels.base import ChannelGateway, GatewayResponse
from artisan_notify.features.notifications.channels.gateway import GatewayClient

__all__ = [
    "ChannelGateway",
    "GatewayClient",
    "GatewayResponse",
]
