"""Error taxonomy shared by the stream, store and turn controller."""


class ChatError(RuntimeError):
    """Base class for recoverable chat failures."""


class TransportError(ChatError):
    """Raised when the provider stream or the network fails mid-turn."""


class EmptyContentError(ChatError):
    """Raised when a finished stream has no extractable text."""


class StoreError(ChatError):
    """Raised when a datastore read or write fails."""


class TurnCancelledError(ChatError):
    """Raised when a turn is stopped before it finished streaming."""
