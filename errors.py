from __future__ import annotations


class KeyShiftError(RuntimeError):
    """Base class for engine errors reported to the surrounding application."""


class DecodeFailure(KeyShiftError):
    """The input bytes could not be decoded into samples."""


class NoSourceLoaded(KeyShiftError):
    def __init__(self, message: str = "No source loaded"):
        super().__init__(message)


class EngineBusy(KeyShiftError):
    def __init__(self, operation: str):
        super().__init__(f"Engine busy: a {operation} is already in progress")
        self.operation = operation


class RenderFailure(KeyShiftError):
    """The export render step failed; the original exception is kept as __cause__."""


class OutputUnavailable(KeyShiftError):
    """No usable audio output device."""


class UnsupportedKey(KeyShiftError, KeyError):
    def __init__(self, key: str):
        KeyShiftError.__init__(self, f"Unsupported key: {key}")
        self.key = key

    def __str__(self) -> str:
        return f"Unsupported key: {self.key}"
