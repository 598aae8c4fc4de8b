"""
Unit tests for schema models.

Tests cover:
- Manifest parsing, aliases and name rules
- ExecutionResult helpers
- Pipeline request validation
- Settings and YAML loaders
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from toolpipe.errors import ErrorKind, PermissionDeniedError
from toolpipe.schema import (
    ArgStyle,
    ContentSummary,
    ExecutionResult,
    FileAccess,
    PermissionLevel,
    PipelineRequest,
    PipelineResult,
    ToolManifest,
    load_manifest,
    load_manifest_from_string,
    load_pipeline_request,
    load_settings,
    load_settings_from_string,
)
from toolpipe.vio import VirtualIO


class TestToolManifest:
    """Tests for ToolManifest."""

    def test_load_from_string(self, sample_manifest_yaml: str) -> None:
        """Wire-format keys are accepted."""
        manifest = load_manifest_from_string(sample_manifest_yaml)
        assert manifest.name == "json-format"
        assert manifest.execution.arg_style == ArgStyle.CLI_FLAGS
        assert manifest.execution.file_access == FileAccess.NONE
        assert manifest.execution.stdin_param == "input"
        assert manifest.parameter_names() == ["input", "indent"]

    def test_snake_case_keys(self) -> None:
        """snake_case execution keys are accepted too."""
        manifest = ToolManifest.model_validate({
            "name": "t",
            "execution": {"arg_style": "structured", "file_access": "read"},
        })
        assert manifest.execution.arg_style == ArgStyle.STRUCTURED

    @pytest.mark.parametrize("name", ["Bad", "1tool", "a--b", "a b", "-a", "a_"])
    def test_invalid_names(self, name: str) -> None:
        """Names must be lowercase words joined by single - or _."""
        with pytest.raises(ValidationError):
            ToolManifest(name=name)

    @pytest.mark.parametrize("name", ["cat", "read_file", "json-format", "sha256"])
    def test_valid_names(self, name: str) -> None:
        """Typical tool names are accepted."""
        assert ToolManifest(name=name).name == name

    def test_required_must_be_declared(self) -> None:
        """Required names must exist in properties."""
        with pytest.raises(ValidationError):
            ToolManifest.model_validate({
                "name": "t",
                "parameters": {"properties": {}, "required": ["x"]},
            })

    def test_unknown_keys_rejected(self) -> None:
        """Unknown manifest keys are rejected."""
        with pytest.raises(ValidationError):
            ToolManifest.model_validate({"name": "t", "surprise": True})

    def test_frozen(self) -> None:
        """Manifests are immutable."""
        manifest = ToolManifest(name="t")
        with pytest.raises(ValidationError):
            manifest.name = "other"

    def test_load_from_file(self, temp_dir: Path, sample_manifest_yaml: str) -> None:
        """Manifests load from files."""
        path = temp_dir / "tool.yaml"
        path.write_text(sample_manifest_yaml)
        assert load_manifest(path).version == "1.2.0"


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_ok(self) -> None:
        """ok() builds a success."""
        result = ExecutionResult.ok("text")
        assert result.success
        assert result.output == "text"
        assert result.output_bytes == b"text"

    def test_fail(self) -> None:
        """fail() mirrors the error into stderr."""
        result = ExecutionResult.fail("boom")
        assert not result.success
        assert result.stderr == "boom"
        assert result.exit_code == 1
        assert result.error_kind == ErrorKind.EXECUTION

    def test_from_error_keeps_kind(self) -> None:
        """from_error() copies the error's kind."""
        result = ExecutionResult.from_error(PermissionDeniedError(tool="cat"))
        assert result.error_kind == ErrorKind.PERMISSION
        assert "Permission denied" in result.error

    def test_from_io_binary(self) -> None:
        """from_io() keeps exact bytes next to the lossy text."""
        vio = VirtualIO()
        vio.write_stdout(b"\xff\x00")
        result = ExecutionResult.from_io(vio, 0)
        assert result.stdout_binary == b"\xff\x00"
        assert result.output_bytes == b"\xff\x00"

    def test_from_io_failure_uses_stderr(self) -> None:
        """Non-zero exit takes the error from stderr."""
        vio = VirtualIO()
        vio.write_stderr("cat: File not found: x\n")
        result = ExecutionResult.from_io(vio, 1)
        assert not result.success
        assert result.error == "cat: File not found: x"


class TestPipelineModels:
    """Tests for pipeline models."""

    def test_empty_commands_rejected(self) -> None:
        """A request needs at least one command."""
        with pytest.raises(ValidationError):
            PipelineRequest(commands=[])

    def test_defaults(self) -> None:
        """Args default to empty and debug to off."""
        request = PipelineRequest.model_validate({"commands": [{"tool": "cat"}]})
        assert request.commands[0].args == {}
        assert request.debug is False

    def test_load_from_file(self, temp_dir: Path) -> None:
        """Requests load from YAML files."""
        path = temp_dir / "req.yaml"
        path.write_text("commands:\n  - tool: cat\n    args: {path: a.txt}\n  - tool: wc\n")
        request = load_pipeline_request(path)
        assert [c.tool for c in request.commands] == ["cat", "wc"]

    def test_model_payload_summarized(self) -> None:
        """Summarized results replace output with id and summary."""
        result = PipelineResult(
            success=True,
            output="long",
            commands_executed=2,
            result_id="result_x",
            summary=ContentSummary(summary="s", line_count=1, byte_size=4, file_type="t", preview="p"),
        )
        payload = result.to_model_payload()
        assert "output" not in payload
        assert payload["resultId"] == "result_x"
        assert payload["commandsExecuted"] == 2

    def test_model_payload_failure(self) -> None:
        """Failures carry the error and its kind."""
        result = PipelineResult(success=False, error="x", error_kind=ErrorKind.PERMISSION)
        assert result.to_model_payload()["errorKind"] == "permission"


class TestSettings:
    """Tests for RuntimeSettings loading."""

    def test_defaults(self) -> None:
        """Empty YAML gives defaults."""
        settings = load_settings_from_string("")
        assert settings.cache_capacity == 100
        assert settings.cache_max_age_seconds == 1800
        assert settings.max_pipeline_steps == 20
        assert settings.permissions.default == PermissionLevel.ASK

    def test_permissions(self, temp_dir: Path) -> None:
        """Permission overrides load from files."""
        path = temp_dir / "settings.yaml"
        path.write_text("permissions:\n  default: always\n  tools:\n    write_file: never\n")
        settings = load_settings(path)
        assert settings.permissions.level_for("cat") == PermissionLevel.ALWAYS
        assert settings.permissions.level_for("write_file") == PermissionLevel.NEVER

    def test_unknown_key_rejected(self) -> None:
        """Unknown settings are rejected."""
        with pytest.raises(ValidationError):
            load_settings_from_string("cache_size: 3")
