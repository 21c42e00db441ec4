# chat_relay/core/errors.py


class ChatRelayError(Exception):
    """Base class for errors raised by the relay."""


class StorageUnavailable(ChatRelayError):
    """A durable store operation failed. Never report the effect as done."""


class InvalidIdentifier(ChatRelayError):
    """A user or room identifier is blank or malformed."""


class InvalidRoomTarget(InvalidIdentifier):
    """A room identifier is malformed (or a private pairing is invalid)."""


class Unauthenticated(ChatRelayError):
    """An action was attempted without a resolved identity."""
