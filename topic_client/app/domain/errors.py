"""Client error hierarchy.

Only ConfigurationError and MessageEncodeError are ever raised to callers; the
rest are carried by Failure events.
"""
from __future__ import annotations


class BrokerClientError(Exception):
    """Base for broker client failures."""


class ConfigurationError(BrokerClientError):
    """Raised at construction when the broker configuration is missing or unusable."""


class ChannelNotReadyError(BrokerClientError):
    """An operation needed a channel before one was opened."""


class MessageDecodeError(BrokerClientError, ValueError):
    """A delivery body could not be parsed as JSON."""


class MessageEncodeError(BrokerClientError, TypeError):
    """An outbound payload could not be encoded to bytes."""


class PublishError(BrokerClientError):
    """The transport rejected a publish."""


class AcknowledgeError(BrokerClientError):
    """A delivery could not be acknowledged."""


class BrokerSignalledError(BrokerClientError):
    """The connection or channel signalled an error without an exception object."""
