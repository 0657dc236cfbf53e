"""Exception types raised by the turn engine."""


class ResponsesChatError(Exception):
    """Base class for all engine errors."""


class TransportError(ResponsesChatError):
    """The request failed or the event stream was aborted."""


class DecodeError(ResponsesChatError):
    """A single event record could not be decoded."""


class ArgumentParseError(ResponsesChatError, ValueError):
    """A (possibly partial) JSON fragment cannot be decoded."""

    def __init__(self, message: str, position: int = 0):
        super().__init__(f"{message} at position {position}")
        self.position = position


class DispatchError(ResponsesChatError):
    """A local tool invocation could not produce a result."""

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name


class UnknownCapability(DispatchError):
    """No handler is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(name, f"Tool '{name}' not found in registry")


class ProtocolInvariantViolation(ResponsesChatError):
    """An event referenced an item that is not in the conversation.

    The reconciler records these instead of raising them.
    """

    def __init__(self, event: str, item_id: str | None, detail: str = ""):
        message = f"{event} references unknown item {item_id!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.event = event
        self.item_id = item_id


class TurnInProgress(ResponsesChatError):
    """A turn was started while another one is still running."""
