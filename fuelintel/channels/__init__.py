"""Channel adapters and transport boundary types."""

from fuelintel.channels.base import ChannelAdapter, InboundMessage, KeyboardButton, OutboundMessage

__all__ = ["ChannelAdapter", "InboundMessage", "KeyboardButton", "OutboundMessage"]
