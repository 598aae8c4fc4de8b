"""
Manifest contract: argument validation and command-line conversion.

Turns the structured arguments a language model produces into the argument
vector and stdin payload a tool actually consumes.

Design Principles:
    - A tool has at most one binary parameter, and binary data travels on
      stdin, never on the command line
    - Binary values arrive as standard padded base64 and are decoded exactly
      once, here
    - Everything is checked before anything runs: unknown names, missing
      required values, types, enums and base64 all fail with a
      ValidationError subclass
    - Rendering is deterministic: parameters are walked in declaration order
"""

import binascii
import dataclasses
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from toolpipe.errors import (
    ArgumentTypeError,
    InvalidBase64Error,
    ManifestInvalidError,
    MissingArgumentError,
    MultipleBinaryParamsError,
    UnknownArgumentError,
)
from toolpipe.schema import ArgStyle, ParameterDefinition, ParameterType, ToolManifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConvertedInvocation:
    """
    A validated, ready-to-run tool invocation.

    Attributes:
        tool: Tool name
        cli_args: Argument vector, tool name first
        params: Validated arguments (defaults applied, binary parameter removed)
        stdin_binary: Decoded binary payload, if any
        stdin_text: Text routed to stdin through ``stdin_param``, if any
        binary_param: Name of the manifest's binary parameter, if any
    """

    tool: str
    cli_args: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    stdin_binary: bytes | None = None
    stdin_text: str | None = None
    binary_param: str | None = None

    @property
    def stdin(self) -> bytes | None:
        """Effective stdin bytes: binary payload first, then routed text."""
        if self.stdin_binary is not None:
            return self.stdin_binary
        if self.stdin_text is not None:
            return self.stdin_text.encode("utf-8")
        return None

    def with_piped_stdin(self, data: bytes) -> "ConvertedInvocation":
        """
        Attach the previous pipeline step's output as stdin.

        An explicitly supplied binary argument wins over piped data.
        """
        if self.stdin_binary is not None:
            return self
        return dataclasses.replace(self, stdin_binary=data)


# =============================================================================
# Base64
# =============================================================================


def encode_base64(data: bytes) -> str:
    """Encode bytes as standard padded base64 text."""
    return binascii.b2a_base64(data, newline=False).decode("ascii")


def decode_base64(text: str, param: str = "data") -> bytes:
    """
    Decode standard padded base64 text.

    Args:
        text: Base64 text
        param: Parameter name used in the error message

    Returns:
        The decoded bytes

    Raises:
        InvalidBase64Error: If the text is not strictly valid base64
    """
    try:
        return binascii.a2b_base64(text, strict_mode=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidBase64Error(param=param, detail=str(e)) from e


# =============================================================================
# Manifest Checks
# =============================================================================


def find_binary_param(manifest: ToolManifest) -> str | None:
    """
    Return the name of the manifest's binary parameter.

    Raises:
        MultipleBinaryParamsError: If more than one parameter is binary
    """
    binary = [
        name
        for name, definition in manifest.parameters.properties.items()
        if definition.type == ParameterType.BINARY
    ]
    if len(binary) > 1:
        raise MultipleBinaryParamsError(tool=manifest.name, params=binary)
    return binary[0] if binary else None


def validate_manifest(manifest: ToolManifest) -> None:
    """
    Check the rules the schema alone cannot express.

    Raises:
        MultipleBinaryParamsError: If more than one parameter is binary
        ManifestInvalidError: If ``stdin_param`` is not a declared string parameter
    """
    find_binary_param(manifest)

    stdin_param = manifest.execution.stdin_param
    if stdin_param is not None:
        definition = manifest.parameters.properties.get(stdin_param)
        if definition is None:
            raise ManifestInvalidError(
                tool=manifest.name,
                reason=f"stdin_param '{stdin_param}' is not a declared parameter",
            )
        if definition.type != ParameterType.STRING:
            raise ManifestInvalidError(
                tool=manifest.name,
                reason=f"stdin_param '{stdin_param}' must be a string parameter",
            )

    for name, definition in manifest.parameters.properties.items():
        if definition.enum is not None and definition.type != ParameterType.STRING:
            raise ManifestInvalidError(
                tool=manifest.name,
                reason=f"enum is only supported on string parameters ('{name}')",
            )


# =============================================================================
# Argument Validation
# =============================================================================


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _matches(expected: ParameterType, value: Any) -> bool:
    if expected == ParameterType.STRING:
        return isinstance(value, str)
    if expected == ParameterType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == ParameterType.BOOLEAN:
        return isinstance(value, bool)
    if expected == ParameterType.ARRAY:
        return isinstance(value, (list, tuple))
    return True


def _check_value(tool: str, name: str, definition: ParameterDefinition, value: Any) -> None:
    if not _matches(definition.type, value):
        raise ArgumentTypeError(
            tool=tool,
            param=name,
            expected=definition.type.value,
            actual=_type_name(value),
        )

    if definition.type == ParameterType.ARRAY and definition.items is not None:
        for item in value:
            if not _matches(definition.items, item):
                raise ArgumentTypeError(
                    tool=tool,
                    param=name,
                    expected=f"array of {definition.items.value}",
                    actual=f"array containing {_type_name(item)}",
                )

    if definition.enum is not None and value not in definition.enum:
        raise ArgumentTypeError(
            tool=tool,
            param=name,
            expected=f"one of {', '.join(definition.enum)}",
            actual=repr(value),
        )


def validate_arguments(
    manifest: ToolManifest,
    args: Mapping[str, Any],
    *,
    piped: bool = False,
) -> dict[str, Any]:
    """
    Validate arguments against a manifest.

    Every name must be declared by the manifest, including ``_``-prefixed
    ones; internal keys are added after validation, never by the caller.
    A required binary parameter may be omitted when stdin is piped in.
    Binary values are not type-checked here; they are handled by
    convert_arguments.

    Args:
        manifest: The tool manifest
        args: Arguments supplied by the caller
        piped: Whether stdin will be supplied by a previous step

    Returns:
        A copy of the arguments with declared defaults applied

    Raises:
        UnknownArgumentError: For undeclared argument names
        MissingArgumentError: For absent required parameters
        ArgumentTypeError: For values of the wrong type or outside an enum
    """
    properties = manifest.parameters.properties
    binary_param = find_binary_param(manifest)

    unknown = [key for key in args if key not in properties]
    if unknown:
        raise UnknownArgumentError(tool=manifest.name, params=unknown)

    missing = [
        name
        for name in manifest.parameters.required
        if args.get(name) is None and not (name == binary_param and piped)
    ]
    if missing:
        raise MissingArgumentError(tool=manifest.name, params=missing)

    validated = dict(args)
    for name, definition in properties.items():
        value = validated.get(name)
        if value is None:
            if definition.default is not None:
                validated[name] = definition.default
            continue
        if definition.type == ParameterType.BINARY:
            continue
        _check_value(manifest.name, name, definition, value)

    return validated


# =============================================================================
# Conversion
# =============================================================================


def render_value(value: Any) -> str:
    """
    Render one argument value as a command-line token.

    Booleans render as ``true``/``false``, integral floats without a fraction
    and lists/objects as compact JSON.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple, Mapping)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def _render_cli_args(
    manifest: ToolManifest,
    params: Mapping[str, Any],
    skip: set[str],
) -> list[str]:
    names = [
        name
        for name in manifest.parameters.properties
        if name not in skip and params.get(name) is not None
    ]
    style = manifest.execution.arg_style
    cli_args = [manifest.name]

    if style == ArgStyle.POSITIONAL:
        cli_args.extend(render_value(params[name]) for name in names)
    elif style == ArgStyle.CLI_FLAGS:
        for name in names:
            value = params[name]
            if isinstance(value, bool):
                if value:
                    cli_args.append(f"--{name}")
                continue
            cli_args.extend([f"--{name}", render_value(value)])
    else:
        document = {name: params[name] for name in names}
        cli_args.append(json.dumps(document, separators=(",", ":"), ensure_ascii=False))

    return cli_args


def convert_arguments(
    manifest: ToolManifest,
    args: Mapping[str, Any],
    *,
    piped: bool = False,
) -> ConvertedInvocation:
    """
    Validate arguments and convert them into an invocation.

    The binary parameter is removed from the argument vector and its base64
    value decoded into ``stdin_binary``. A binary value that is not a string
    is dropped without producing stdin. The ``stdin_param`` value, if any,
    becomes ``stdin_text``.

    Args:
        manifest: The tool manifest
        args: Arguments supplied by the caller
        piped: Whether stdin will be supplied by a previous step

    Returns:
        The converted invocation

    Raises:
        MultipleBinaryParamsError: If the manifest has several binary parameters
        InvalidBase64Error: If the binary value is not valid base64
        ValidationError: For any other argument problem
    """
    validate_manifest(manifest)
    params = validate_arguments(manifest, args, piped=piped)
    binary_param = find_binary_param(manifest)

    stdin_binary = None
    if binary_param is not None:
        raw = params.pop(binary_param, None)
        if isinstance(raw, str):
            stdin_binary = decode_base64(raw, param=binary_param)
        elif raw is not None:
            logger.debug(
                "Ignoring non-string value for binary parameter %s of %s",
                binary_param,
                manifest.name,
            )

    skip: set[str] = set()
    stdin_text = None
    stdin_param = manifest.execution.stdin_param
    if stdin_param is not None:
        skip.add(stdin_param)
        value = params.get(stdin_param)
        if isinstance(value, str):
            stdin_text = value

    return ConvertedInvocation(
        tool=manifest.name,
        cli_args=_render_cli_args(manifest, params, skip),
        params=params,
        stdin_binary=stdin_binary,
        stdin_text=stdin_text,
        binary_param=binary_param,
    )
