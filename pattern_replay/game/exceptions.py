"""
Replay Engine Exception Classes

This module defines the exceptions raised by the replay engine and the
simulation service. Every exception carries a stable ``kind`` string so
that a transport layer can map it to a response without inspecting the
message text.
"""

from typing import Any, Optional


class ReplayError(Exception):
    """Base exception class for all replay-related errors."""

    kind = "replay_error"

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.suggestion:
            return f"{self.message}. Suggestion: {self.suggestion}"
        return self.message


class NotFoundError(ReplayError):
    """
    Raised when a game, position or pending order id is unknown.
    """

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity.capitalize()} not found: {entity_id}"
        super().__init__(message)


class InvalidStateError(ReplayError):
    """
    Raised when an operation is attempted on a complete simulation, or
    when an enum-valued argument is not one of its allowed values.
    """

    kind = "invalid_state"


class InsufficientBalanceError(ReplayError):
    """
    Raised when the cost of a trade or order exceeds the available balance.
    """

    kind = "insufficient_balance"

    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        message = f"Insufficient balance: required {required:.2f}, available {available:.2f}"
        suggestion = "Reduce the quantity or close an open position first"
        super().__init__(message, suggestion)


class InvalidParameterError(ReplayError):
    """
    Raised for non-positive quantities or prices and for stop-loss /
    take-profit levels on the wrong side of the reference price.
    """

    kind = "invalid_parameter"

    def __init__(self, name: str, value: Any, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        message = f"Invalid {name}: {value!r} ({reason})"
        super().__init__(message)


class InsufficientDataError(ReplayError):
    """
    Raised when a candle series is shorter than the simulation requires.
    """

    kind = "insufficient_data"

    def __init__(self, required: int, actual: int):
        self.required = required
        self.actual = actual
        message = f"Insufficient candle data: {actual} candles"
        suggestion = f"Provide at least {required} candles"
        super().__init__(message, suggestion)
