"""
Schema definitions for Toolpipe.

This module defines the Pydantic models used throughout Toolpipe:
- ToolManifest and its parts: what a tool accepts and how it is invoked
- ExecutionResult: the uniform result of one tool run
- PipelineStep/PipelineRequest/PipelineResult: chained execution
- CachedResult/ContentSummary: large output kept out of model context
- PermissionPolicy/PermissionDecision: who may touch the file system
- RuntimeSettings: tunables loaded from YAML

Design Decisions:
    - Manifests and requests are immutable (frozen=True) and reject unknown keys
    - Manifest keys accept both the wire spelling (argStyle) and snake_case
    - Results carry raw bytes next to their text view; nothing is re-encoded
    - The single-binary-parameter rule lives in contract.validate_manifest so
      a bad manifest can still be loaded, inspected and reported
"""

import re
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from toolpipe.errors import ErrorKind, ToolpipeError

if TYPE_CHECKING:
    from toolpipe.vio import VirtualIO


TOOL_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*(?:[-_][a-z0-9]+)*$")


# =============================================================================
# Enums
# =============================================================================


class ParameterType(str, Enum):
    """Declared type of a manifest parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    BINARY = "binary"
    ARRAY = "array"


class ArgStyle(str, Enum):
    """
    How arguments are rendered into a command line.

    POSITIONAL: values in declaration order after the tool name
    CLI_FLAGS: ``--name value`` pairs; booleans become bare flags
    STRUCTURED: the tool name followed by one compact JSON document
    """

    POSITIONAL = "positional"
    CLI_FLAGS = "cli-flags"
    STRUCTURED = "structured"


class FileAccess(str, Enum):
    """File system access a tool needs."""

    NONE = "none"
    READ = "read"
    WRITE = "write"
    READWRITE = "readwrite"

    @property
    def can_read(self) -> bool:
        return self in (FileAccess.READ, FileAccess.READWRITE)

    @property
    def can_write(self) -> bool:
        return self in (FileAccess.WRITE, FileAccess.READWRITE)


class PermissionLevel(str, Enum):
    """
    Permission level for a tool.

    ALWAYS runs without asking, NEVER refuses, ASK defers to a prompt.
    """

    ALWAYS = "always"
    ASK = "ask"
    NEVER = "never"


# =============================================================================
# Manifest Models
# =============================================================================


class ParameterDefinition(BaseModel):
    """
    One declared parameter of a tool.

    Attributes:
        type: Declared value type
        description: Help text shown to the model
        enum: Allowed values for string parameters
        default: Value applied when the argument is omitted
        items: Element type for array parameters
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ParameterType = Field(..., description="Declared value type")
    description: str = Field(default="", description="Help text for the parameter")
    enum: list[str] | None = Field(default=None, description="Allowed string values")
    default: Any = Field(default=None, description="Default applied when omitted")
    items: ParameterType | None = Field(
        default=None,
        description="Element type for array parameters",
    )


class ParametersSchema(BaseModel):
    """Object schema describing a tool's parameters, in declaration order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["object"] = "object"
    properties: dict[str, ParameterDefinition] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_required_declared(self) -> "ParametersSchema":
        """Every required name must be a declared property."""
        undeclared = [name for name in self.required if name not in self.properties]
        if undeclared:
            msg = f"Required parameter(s) not declared: {', '.join(undeclared)}"
            raise ValueError(msg)
        return self


class ExecutionConfig(BaseModel):
    """
    How a tool is invoked.

    Attributes:
        arg_style: Command-line rendering style
        file_access: File system access the tool needs
        timeout: Per-call timeout in seconds (None = runtime default)
        stdin_param: String parameter whose value is fed as stdin text
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    arg_style: ArgStyle = Field(default=ArgStyle.POSITIONAL, alias="argStyle")
    file_access: FileAccess = Field(default=FileAccess.NONE, alias="fileAccess")
    timeout: float | None = Field(default=None, gt=0)
    stdin_param: str | None = Field(default=None, alias="stdinParam")


class ReturnsSchema(BaseModel):
    """Description of what a tool returns."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str = "string"
    description: str = ""


class ToolManifest(BaseModel):
    """
    Declarative description of a tool.

    Manifests are loaded from YAML or JSON and are the only thing the runtime
    needs to validate arguments and build a command line.

    Attributes:
        name: Tool name (lowercase, ``-``/``_`` separated)
        version: Tool version string
        description: What the tool does
        category: Grouping shown in tool listings
        parameters: Declared parameters
        execution: Invocation settings
        returns: Description of the output
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Tool name")
    version: str = Field(default="1.0.0", description="Tool version")
    description: str = Field(default="", description="What the tool does")
    category: str = Field(default="general", description="Listing category")
    author: str | None = None
    license: str | None = None
    parameters: ParametersSchema = Field(default_factory=ParametersSchema)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    returns: ReturnsSchema = Field(default_factory=ReturnsSchema)

    @field_validator("name")
    @classmethod
    def validate_name_format(cls, v: str) -> str:
        """Validate tool name format."""
        if not TOOL_NAME_PATTERN.match(v):
            msg = (
                f"Invalid tool name format: {v} "
                "(lowercase letters and digits, separated by '-' or '_')"
            )
            raise ValueError(msg)
        return v

    def parameter_names(self) -> list[str]:
        """Parameter names in declaration order."""
        return list(self.parameters.properties)


# =============================================================================
# Execution Results
# =============================================================================


class ExecutionResult(BaseModel):
    """
    Uniform result of a single tool run.

    ``stdout`` is always text. ``stdout_binary`` holds the exact output bytes
    whenever the producer had them, and is what the next pipeline step sees.

    Attributes:
        success: Whether the tool succeeded
        stdout: Text view of the output
        stderr: Diagnostic text
        exit_code: Process-style exit code
        stdout_binary: Exact output bytes, if available
        error: Failure message (None on success)
        error_kind: Failure classification (None on success)
        tool: Name of the tool that produced this result
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    stdout_binary: bytes | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    tool: str | None = None

    @property
    def output(self) -> str:
        """Alias for stdout, used when displaying pipeline output."""
        return self.stdout

    @property
    def output_bytes(self) -> bytes:
        """Bytes handed to the next pipeline step."""
        if self.stdout_binary is not None:
            return self.stdout_binary
        return self.stdout.encode("utf-8")

    @classmethod
    def ok(cls, stdout: str = "", stdout_binary: bytes | None = None) -> "ExecutionResult":
        """Create a successful result."""
        return cls(success=True, stdout=stdout, stdout_binary=stdout_binary)

    @classmethod
    def fail(
        cls,
        error: str,
        exit_code: int = 1,
        kind: ErrorKind = ErrorKind.EXECUTION,
        stderr: str | None = None,
    ) -> "ExecutionResult":
        """Create a failed result. stderr defaults to the error text."""
        return cls(
            success=False,
            stderr=error if stderr is None else stderr,
            exit_code=exit_code,
            error=error,
            error_kind=kind,
        )

    @classmethod
    def from_error(cls, error: ToolpipeError) -> "ExecutionResult":
        """Create a failed result from a Toolpipe exception."""
        return cls.fail(error.message, kind=error.kind)

    @classmethod
    def from_io(cls, io: "VirtualIO", exit_code: int) -> "ExecutionResult":
        """Collect a result from the virtual I/O layer after a command ran."""
        stderr = io.get_stderr()
        if exit_code == 0:
            return cls(
                success=True,
                stdout=io.get_stdout(),
                stderr=stderr,
                stdout_binary=io.get_stdout_binary(),
            )
        return cls(
            success=False,
            stdout=io.get_stdout(),
            stderr=stderr,
            exit_code=exit_code,
            stdout_binary=io.get_stdout_binary(),
            error=stderr.strip() or f"exited with code {exit_code}",
            error_kind=ErrorKind.EXECUTION,
        )


# =============================================================================
# Pipeline Models
# =============================================================================


class PipelineStep(BaseModel):
    """
    One command in a pipeline.

    Attributes:
        tool: Registered tool name
        args: Arguments for the tool
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool: str = Field(..., min_length=1, description="Registered tool name")
    args: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class PipelineRequest(BaseModel):
    """
    An ordered chain of commands.

    Attributes:
        commands: Steps executed left to right
        debug: Collect every step's result on the response
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    commands: list[PipelineStep] = Field(..., min_length=1)
    debug: bool = False


class CacheMetadata(BaseModel):
    """Facts about a cached payload, gathered when it was stored."""

    model_config = ConfigDict(frozen=True)

    path: str | None = None
    line_count: int = 0
    byte_size: int = 0
    file_type: str = ""


class CachedResult(BaseModel):
    """A full tool output held by the result cache."""

    model_config = ConfigDict(frozen=True)

    id: str
    tool_name: str
    timestamp: float
    full_content: str
    metadata: CacheMetadata = Field(default_factory=CacheMetadata)


class ContentSummary(BaseModel):
    """
    Compact description of a large payload.

    Attributes:
        summary: One-line "type, N lines, size" description
        line_count: Number of lines
        byte_size: UTF-8 size of the content
        file_type: Human-readable type name
        preview: First few lines, each truncated
    """

    model_config = ConfigDict(frozen=True)

    summary: str
    line_count: int
    byte_size: int
    file_type: str
    preview: str


class PipelineResult(BaseModel):
    """
    Outcome of a pipeline run.

    On success ``output`` holds the final step's text; when that text was
    large it is also cached and ``result_id``/``summary`` are set.
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    success: bool
    output: str | None = None
    output_binary: bytes | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    failed_step: int | None = None
    failed_tool: str | None = None
    commands_executed: int = 0
    intermediate_results: list[ExecutionResult] | None = None
    result_id: str | None = None
    summary: ContentSummary | None = None

    def to_model_payload(self) -> dict[str, Any]:
        """
        Build the compact payload returned to the language model.

        Large outputs are replaced by their summary and cache id.
        """
        payload: dict[str, Any] = {
            "success": self.success,
            "commandsExecuted": self.commands_executed,
        }
        if self.success:
            if self.summary is not None:
                payload["resultId"] = self.result_id
                payload["summary"] = self.summary.summary
                payload["preview"] = self.summary.preview
            else:
                payload["output"] = self.output
        else:
            payload["error"] = self.error
            payload["errorKind"] = self.error_kind.value if self.error_kind else None
        if self.intermediate_results is not None:
            payload["intermediateResults"] = [
                {
                    "tool": r.tool,
                    "success": r.success,
                    "output": r.stdout,
                    "error": r.error,
                }
                for r in self.intermediate_results
            ]
        return payload


class ToolResponse(BaseModel):
    """
    Result of a single tool call after the content/summary split.

    Either ``output`` is set, or ``result_id`` and ``summary`` are.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    tool: str
    output: str | None = None
    result_id: str | None = None
    summary: ContentSummary | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    exit_code: int = 0


# =============================================================================
# Permission Models
# =============================================================================


class PermissionPolicy(BaseModel):
    """
    Which tools may touch the file system without asking.

    Attributes:
        default: Level for tools without an override
        tools: Per-tool overrides
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default: PermissionLevel = PermissionLevel.ASK
    tools: dict[str, PermissionLevel] = Field(default_factory=dict)

    def level_for(self, tool_name: str) -> PermissionLevel:
        return self.tools.get(tool_name, self.default)


class PermissionDecision(BaseModel):
    """Result of a permission check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    level: PermissionLevel
    reason: str = ""


# =============================================================================
# Settings
# =============================================================================


class RuntimeSettings(BaseModel):
    """
    Runtime tunables.

    Attributes:
        cache_capacity: Maximum number of cached results
        cache_max_age_seconds: Age after which cached results are evicted
        cache_headroom: Extra entries evicted when the cache is full
        summary_preview_lines: Lines kept in a summary preview
        summary_line_width: Characters kept per preview line
        summarize_min_bytes: Output size that triggers summarization
        summarize_min_lines: Line count that triggers summarization
        max_pipeline_steps: Longest accepted pipeline
        default_timeout_seconds: Adapter timeout when a manifest sets none
        permissions: File system permission policy
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_capacity: int = Field(default=100, ge=1)
    cache_max_age_seconds: float = Field(default=30 * 60, gt=0)
    cache_headroom: int = Field(default=10, ge=1)
    summary_preview_lines: int = Field(default=5, ge=1)
    summary_line_width: int = Field(default=100, ge=10)
    summarize_min_bytes: int = Field(default=2048, ge=1)
    summarize_min_lines: int = Field(default=40, ge=1)
    max_pipeline_steps: int = Field(default=20, ge=1)
    default_timeout_seconds: float = Field(default=30.0, gt=0)
    permissions: PermissionPolicy = Field(default_factory=PermissionPolicy)


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def _read_yaml(path: Path | str) -> Any:
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_manifest(path: Path | str) -> ToolManifest:
    """
    Load a tool manifest from a YAML (or JSON) file.

    Args:
        path: Path to the manifest file

    Returns:
        Validated ToolManifest object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the document doesn't match the schema
    """
    return ToolManifest.model_validate(_read_yaml(path))


def load_manifest_from_string(content: str) -> ToolManifest:
    """Load a tool manifest from a YAML string."""
    return ToolManifest.model_validate(yaml.safe_load(content))


def load_settings(path: Path | str) -> RuntimeSettings:
    """
    Load runtime settings from a YAML file.

    An empty file yields the defaults.
    """
    return RuntimeSettings.model_validate(_read_yaml(path) or {})


def load_settings_from_string(content: str) -> RuntimeSettings:
    """Load runtime settings from a YAML string."""
    return RuntimeSettings.model_validate(yaml.safe_load(content) or {})


def load_pipeline_request(path: Path | str) -> PipelineRequest:
    """Load a pipeline request from a YAML file."""
    return PipelineRequest.model_validate(_read_yaml(path))


def load_pipeline_request_from_string(content: str) -> PipelineRequest:
    """Load a pipeline request from a YAML string."""
    return PipelineRequest.model_validate(yaml.safe_load(content))
