"""
Exception hierarchy for Toolpipe.

All Toolpipe exceptions inherit from ToolpipeError, allowing callers to catch
every runtime-specific failure with a single except clause.

Exception Categories:
    - ValidationError: bad manifest, bad arguments, malformed base64, bad pipeline
    - ExecutionError: a tool or adapter ran and failed
    - PipelineError: a named step in a chain failed
    - PermissionDeniedError: the permission gate refused a tool
    - StoreError: manifest/binary store lookups and fetches

Every error carries an ErrorKind. Results returned by the runtime copy the
kind onto ``error_kind`` so a UI can offer a re-prompt for permission
denials instead of a generic failure message.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


# =============================================================================
# Error Codes
# =============================================================================

# Validation errors: 1xxx
ERROR_MANIFEST_INVALID = 1001
ERROR_MULTIPLE_BINARY_PARAMS = 1002
ERROR_INVALID_BASE64 = 1003
ERROR_MISSING_ARGUMENT = 1004
ERROR_UNKNOWN_ARGUMENT = 1005
ERROR_ARGUMENT_TYPE = 1006
ERROR_PIPELINE_EMPTY = 1007
ERROR_UNKNOWN_TOOL = 1008
ERROR_PIPELINE_TOO_LONG = 1009

# Execution errors: 2xxx
ERROR_TOOL_FAILED = 2001
ERROR_ADAPTER_INIT = 2002
ERROR_CANCELLED = 2003

# Pipeline errors: 3xxx
ERROR_PIPELINE_STEP_FAILED = 3001

# Permission errors: 4xxx
ERROR_PERMISSION_DENIED = 4001

# Store errors: 5xxx
ERROR_STORE_NOT_FOUND = 5001
ERROR_STORE_FETCH = 5002


class ErrorKind(str, Enum):
    """Coarse classification of a failure, surfaced on every result."""

    VALIDATION = "validation"
    EXECUTION = "execution"
    PIPELINE = "pipeline"
    PERMISSION = "permission"
    CANCELLED = "cancelled"
    STORE = "store"


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ToolpipeError(Exception):
    """
    Base exception for all Toolpipe errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    kind: ClassVar[ErrorKind] = ErrorKind.EXECUTION

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Validation Errors
# =============================================================================


@dataclass
class ValidationError(ToolpipeError):
    """
    Raised when a manifest, argument set or pipeline request is rejected.

    Validation errors are always raised before any execution side effect.

    Attributes:
        tool: Name of the tool being validated (if applicable)
    """

    kind: ClassVar[ErrorKind] = ErrorKind.VALIDATION

    tool: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_MANIFEST_INVALID
        self.context["tool"] = self.tool


@dataclass
class ManifestInvalidError(ValidationError):
    """Raised when a tool manifest violates the manifest contract."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid manifest for {self.tool}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_MANIFEST_INVALID
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class MultipleBinaryParamsError(ManifestInvalidError):
    """Raised when a manifest declares more than one binary parameter."""

    params: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.reason:
            self.reason = f"multiple binary parameters: {', '.join(self.params)}"
        if not self.message:
            self.message = (
                f"Tool '{self.tool}' defines multiple binary parameters: "
                f"{', '.join(self.params)}. Only one binary parameter is allowed "
                "because binary data is passed via stdin."
            )
        if self.code == 0:
            self.code = ERROR_MULTIPLE_BINARY_PARAMS
        if not self.suggestion:
            self.suggestion = "Keep a single binary parameter and pass other payloads as paths"
        super().__post_init__()
        self.context["params"] = list(self.params)


@dataclass
class InvalidBase64Error(ValidationError):
    """Raised when a binary argument is not valid padded standard base64."""

    param: str = ""
    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid base64 in parameter '{self.param}': {self.detail}"
        if self.code == 0:
            self.code = ERROR_INVALID_BASE64
        if not self.suggestion:
            self.suggestion = "Encode binary data with standard, padded base64 (RFC 4648)"
        super().__post_init__()
        self.context.update({"param": self.param, "detail": self.detail})


@dataclass
class MissingArgumentError(ValidationError):
    """Raised when required parameters are absent."""

    params: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Missing required argument(s) for {self.tool}: {', '.join(self.params)}"
        if self.code == 0:
            self.code = ERROR_MISSING_ARGUMENT
        super().__post_init__()
        self.context["params"] = list(self.params)


@dataclass
class UnknownArgumentError(ValidationError):
    """Raised when arguments are supplied that the manifest does not declare."""

    params: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown argument(s) for {self.tool}: {', '.join(self.params)}"
        if self.code == 0:
            self.code = ERROR_UNKNOWN_ARGUMENT
        super().__post_init__()
        self.context["params"] = list(self.params)


@dataclass
class ArgumentTypeError(ValidationError):
    """Raised when an argument value does not match its declared type."""

    param: str = ""
    expected: str = ""
    actual: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Argument '{self.param}' for {self.tool} must be {self.expected}, got {self.actual}"
            )
        if self.code == 0:
            self.code = ERROR_ARGUMENT_TYPE
        super().__post_init__()
        self.context.update({
            "param": self.param,
            "expected": self.expected,
            "actual": self.actual,
        })


@dataclass
class PipelineEmptyError(ValidationError):
    """Raised when a pipeline request has no commands."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Pipeline must have at least one command"
        if self.code == 0:
            self.code = ERROR_PIPELINE_EMPTY
        super().__post_init__()


@dataclass
class PipelineTooLongError(ValidationError):
    """Raised when a pipeline request exceeds the configured step limit."""

    count: int = 0
    max_count: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pipeline has {self.count} commands (max: {self.max_count})"
        if self.code == 0:
            self.code = ERROR_PIPELINE_TOO_LONG
        super().__post_init__()
        self.context.update({"count": self.count, "max_count": self.max_count})


@dataclass
class UnknownToolError(ValidationError):
    """Raised when a tool name is not registered."""

    available: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown command: {self.tool}. Available: {', '.join(self.available)}"
        if self.code == 0:
            self.code = ERROR_UNKNOWN_TOOL
        if not self.suggestion:
            self.suggestion = "Check tool name spelling or install the tool"
        super().__post_init__()
        self.context["available"] = list(self.available)


# =============================================================================
# Execution Errors
# =============================================================================


@dataclass
class ExecutionError(ToolpipeError):
    """
    Raised when a tool ran and failed.

    The message is the tool's own diagnostic text, unmodified.

    Attributes:
        tool: Name of the tool that failed
        underlying_error: The tool's diagnostic text
    """

    tool: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = self.underlying_error or f"{self.tool} failed"
        if self.code == 0:
            self.code = ERROR_TOOL_FAILED
        self.context.update({
            "tool": self.tool,
            "underlying_error": self.underlying_error,
        })


@dataclass
class AdapterInitError(ExecutionError):
    """Raised when an adapter's engine fails to initialize."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to initialize {self.tool}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_ADAPTER_INIT
        super().__post_init__()


@dataclass
class ExecutionCancelledError(ExecutionError):
    """Raised when the caller's cancellation signal aborts a tool."""

    kind: ClassVar[ErrorKind] = ErrorKind.CANCELLED

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.tool}: execution cancelled"
        if self.code == 0:
            self.code = ERROR_CANCELLED
        super().__post_init__()


# =============================================================================
# Pipeline Errors
# =============================================================================


@dataclass
class PipelineError(ToolpipeError):
    """
    Raised when a step in a pipeline fails.

    Wraps the step's own error text with its position and tool name.

    Attributes:
        step_index: Zero-based index of the failing step
        tool: Name of the failing tool
        underlying_error: The step's error text, verbatim
        underlying_kind: Kind of the step's failure
    """

    kind: ClassVar[ErrorKind] = ErrorKind.PIPELINE

    step_index: int = 0
    tool: str = ""
    underlying_error: str = ""
    underlying_kind: ErrorKind = ErrorKind.EXECUTION

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Command {self.step_index + 1} ({self.tool}) failed: {self.underlying_error}"
            )
        if self.code == 0:
            self.code = ERROR_PIPELINE_STEP_FAILED
        self.context.update({
            "step_index": self.step_index,
            "tool": self.tool,
            "underlying_error": self.underlying_error,
            "underlying_kind": self.underlying_kind.value,
        })


# =============================================================================
# Permission Errors
# =============================================================================


@dataclass
class PermissionDeniedError(ToolpipeError):
    """Raised when the permission gate refuses a tool call."""

    kind: ClassVar[ErrorKind] = ErrorKind.PERMISSION

    tool: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Permission denied for {self.tool}"
            if self.reason:
                self.message += f": {self.reason}"
        if self.code == 0:
            self.code = ERROR_PERMISSION_DENIED
        if not self.suggestion:
            self.suggestion = "Grant permission for the tool and retry"
        self.context.update({"tool": self.tool, "reason": self.reason})


# =============================================================================
# Store Errors
# =============================================================================


@dataclass
class StoreError(ToolpipeError):
    """Base class for manifest/binary store errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.STORE

    name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["name"] = self.name


@dataclass
class StoreEntryNotFoundError(StoreError):
    """Raised when a manifest or binary is not present in the store."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool not installed: {self.name}"
        if self.code == 0:
            self.code = ERROR_STORE_NOT_FOUND
        super().__post_init__()


@dataclass
class BinaryFetchError(StoreError):
    """Raised when an engine binary cannot be downloaded."""

    url: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to fetch {self.url}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORE_FETCH
        super().__post_init__()
        self.context.update({"url": self.url, "underlying_error": self.underlying_error})
