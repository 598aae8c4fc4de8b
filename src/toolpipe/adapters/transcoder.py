"""
Media transcoder adapter backed by an ffmpeg executable.

The engine is either the binary supplied by the tool store (written to a
private temporary file and marked executable) or ``ffmpeg`` found on PATH.
Each call runs ``ffmpeg -y -i <input> <args...> <output>`` in its own
temporary directory, so concurrent calls never see each other's files.
"""

import asyncio
import logging
import shlex
import shutil
import stat
import tempfile
from collections.abc import Mapping
from pathlib import Path, PurePath
from typing import Any

from toolpipe.adapters.base import Adapter, AdapterInputError
from toolpipe.schema import (
    ArgStyle,
    ExecutionConfig,
    FileAccess,
    ParameterDefinition,
    ParametersSchema,
    ParameterType,
    ToolManifest,
)

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 5


class TranscodeError(Exception):
    """ffmpeg ran and exited non-zero."""

    def __init__(self, exit_code: int, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"FFmpeg exited with code {exit_code}"
        tail = "\n".join(stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
        if tail:
            message = f"{message}\n{tail}"
        super().__init__(message)


def _safe_filename(name: str, role: str) -> str:
    filename = PurePath(name.replace("\\", "/")).name
    if not filename or filename in (".", ".."):
        raise AdapterInputError(f"Invalid {role} filename: {name!r}")
    return filename


class TranscoderAdapter(Adapter):
    """
    Audio/video processing with ffmpeg.

    Args:
        executable: ffmpeg to use when the store supplies no binary
            (default: looked up on PATH)
    """

    name = "ffmpeg"
    missing_input_message = "No input media provided"

    def __init__(self, executable: str | None = None) -> None:
        super().__init__()
        self.executable = executable
        self._engine_dir: str | None = None

    async def initialize(self, library_binary: bytes) -> str:
        if library_binary:
            executable = self._install_binary(library_binary)
        else:
            executable = self.executable or shutil.which("ffmpeg")
            if executable is None:
                raise RuntimeError("ffmpeg executable not found on PATH")

        proc = await asyncio.create_subprocess_exec(
            executable,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            raise RuntimeError(f"ffmpeg self-check failed with code {proc.returncode}")

        first_line = stdout.decode("utf-8", errors="replace").split("\n", 1)[0]
        logger.debug("Using %s (%s)", executable, first_line)
        return executable

    def _install_binary(self, library_binary: bytes) -> str:
        self._engine_dir = tempfile.mkdtemp(prefix="toolpipe-ffmpeg-")
        path = Path(self._engine_dir) / "ffmpeg"
        path.write_bytes(library_binary)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IRUSR)
        return str(path)

    async def process(self, engine: str, data: bytes, args: Mapping[str, Any]) -> bytes:
        input_filename = args.get("input_filename")
        ffmpeg_args = args.get("args")
        output_filename = args.get("output_filename")
        if not input_filename or not ffmpeg_args or not output_filename:
            raise AdapterInputError(
                "Missing required arguments: input_filename, args, and output_filename"
            )

        with tempfile.TemporaryDirectory(prefix="toolpipe-media-") as workdir:
            source = Path(workdir) / _safe_filename(input_filename, "input")
            target = Path(workdir) / _safe_filename(output_filename, "output")
            source.write_bytes(data)

            command = [
                engine,
                "-hide_banner",
                "-y",
                "-i",
                str(source),
                *shlex.split(ffmpeg_args),
                str(target),
            ]
            logger.debug("Running %s", shlex.join(command))

            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=workdir,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                _, stderr = await proc.communicate()
            except asyncio.CancelledError:
                proc.kill()
                await proc.wait()
                raise

            if proc.returncode != 0:
                raise TranscodeError(proc.returncode, stderr.decode("utf-8", errors="replace"))
            if not target.exists():
                raise RuntimeError(f"FFmpeg produced no output file: {output_filename}")
            return target.read_bytes()

    def close(self) -> None:
        """Remove an installed engine binary."""
        if self._engine_dir is not None:
            shutil.rmtree(self._engine_dir, ignore_errors=True)
            self._engine_dir = None
            self._engine = None


def transcoder_manifest() -> ToolManifest:
    """Manifest of the ffmpeg tool."""
    return ToolManifest(
        name="ffmpeg",
        version="1.0.0",
        description=(
            "Process video and audio with FFmpeg: transcoding, trimming and format "
            "conversion. Prefer input_path/output_path to read and write files "
            "directly instead of passing base64 data."
        ),
        category="media",
        parameters=ParametersSchema(
            properties={
                "input_path": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Path to the input media file",
                ),
                "output_path": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Path to save the output file instead of returning it",
                ),
                "input": ParameterDefinition(
                    type=ParameterType.BINARY,
                    description="Input media data (base64)",
                ),
                "input_filename": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Input filename with extension, for format detection",
                ),
                "args": ParameterDefinition(
                    type=ParameterType.STRING,
                    description='FFmpeg arguments, e.g. "-c:v libx264 -crf 23"',
                ),
                "output_filename": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Output filename with the desired extension",
                ),
            },
            required=["args"],
        ),
        execution=ExecutionConfig(
            arg_style=ArgStyle.POSITIONAL,
            file_access=FileAccess.READWRITE,
            timeout=300,
        ),
    )
