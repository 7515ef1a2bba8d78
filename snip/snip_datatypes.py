"""
Defines the core data types for the SNIP engine.

This module provides the value objects passed between the compiler, the
execution host and the session runner, plus the engine's error classes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Literal

# =================================================================
# Errors
# =================================================================

class SnipError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigError(SnipError):
    pass


class StateError(SnipError):
    """Raised when the submission state store is used out of order."""
    pass


class CaptureBusy(SnipError):
    """Raised when stdout capture is requested while another one is pending."""
    pass


class SessionBusy(SnipError):
    """Raised when a submission arrives while another one is still in flight."""
    pass


class EmitError(SnipError):
    """Code generation failed although no error diagnostics were reported."""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvariantViolation(SnipError):
    """The compiler and the host disagree; the session cannot continue."""
    pass


class EntryPointNotFound(InvariantViolation):
    def __init__(self, unit_id: str):
        super().__init__(f"no entry point loaded for unit {unit_id!r}")
        self.unit_id = unit_id


# =================================================================
# Diagnostics
# =================================================================

class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    """A single compiler message with a 1-based source location."""
    severity: Severity
    code: str
    message: str
    line: Optional[int] = None
    col: Optional[int] = None
    end_line: Optional[int] = None
    end_col: Optional[int] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        loc = ""
        if self.line is not None:
            loc = f"({self.line},{self.col if self.col is not None else 1}): "
        return f"{loc}{self.severity.value} {self.code}: {self.message}"


# =================================================================
# Transcript
# =================================================================

EntryKind = Literal['echo', 'error', 'warning', 'output', 'value', 'fault']


@dataclass(frozen=True)
class TranscriptEntry:
    kind: EntryKind
    text: str


# =================================================================
# Entry points
# =================================================================

@dataclass(frozen=True)
class EntryPoint:
    """Descriptor of a unit's generated top-level routine."""
    namespace: str
    type_name: str
    method: str

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.type_name}.{self.method}"


class _NoValue:
    """Sentinel returned by a submission that produces no result."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __bool__(self) -> bool:
        return False


NO_VALUE = _NoValue()
