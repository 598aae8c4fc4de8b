"""
Unit tests for processing adapters.

Tests cover:
- Lazy, shared engine initialization and retry after failure
- Input resolution (piped bytes, base64, missing)
- Cancellation and timeouts
- Pillow image operations
- The ffmpeg adapter against a stub executable
"""

import asyncio
import io
import sys
from collections.abc import Iterator, Mapping
from typing import Any

import pytest
from PIL import Image

from toolpipe.adapters.base import STDIN_BINARY_KEY, Adapter
from toolpipe.adapters.image import ImageAdapter, image_manifest, parse_geometry, transform_image
from toolpipe.adapters.transcoder import TranscodeError, TranscoderAdapter, transcoder_manifest
from toolpipe.contract import encode_base64
from toolpipe.errors import AdapterInitError, ErrorKind
from toolpipe.runtime import ToolRuntime
from toolpipe.sandbox import MemoryFileSystem


def make_png(size: tuple[int, int] = (40, 20), color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class CountingAdapter(Adapter):
    """Adapter that counts initializations and can fail the first ones."""

    name = "counting"

    def __init__(self, failures: int = 0, delay: float = 0.01) -> None:
        super().__init__()
        self.init_calls = 0
        self.failures = failures
        self.delay = delay

    async def initialize(self, library_binary: bytes) -> Any:
        self.init_calls += 1
        await asyncio.sleep(self.delay)
        if self.init_calls <= self.failures:
            raise RuntimeError("engine failed to load")
        return library_binary

    async def process(self, engine: Any, data: bytes, args: Mapping[str, Any]) -> bytes:
        return engine + data


class SlowAdapter(Adapter):
    """Adapter whose processing never finishes on its own."""

    name = "slow"

    def __init__(self) -> None:
        super().__init__()
        self.finished = False
        self.stopped = False

    async def initialize(self, library_binary: bytes) -> Any:
        return object()

    async def process(self, engine: Any, data: bytes, args: Mapping[str, Any]) -> bytes:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.stopped = True
            raise
        self.finished = True
        return data


# =============================================================================
# Adapter Base
# =============================================================================


class TestAdapterInitialization:
    """Tests for lazy engine initialization."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_init(self) -> None:
        """Concurrent calls initialize the engine once."""
        adapter = CountingAdapter()
        results = await asyncio.gather(*(
            adapter.execute(b"E:", {STDIN_BINARY_KEY: str(i).encode()}) for i in range(5)
        ))
        assert adapter.init_calls == 1
        assert [r.stdout_binary for r in results] == [f"E:{i}".encode() for i in range(5)]

    @pytest.mark.asyncio
    async def test_failed_init_retries(self) -> None:
        """A failed initialization is retried by the next call."""
        adapter = CountingAdapter(failures=1)
        first = await adapter.execute(b"", {STDIN_BINARY_KEY: b"x"})
        assert not first.success
        assert first.error == "Failed to initialize counting: engine failed to load"
        assert first.error_kind == ErrorKind.EXECUTION
        assert not adapter.initialized

        second = await adapter.execute(b"", {STDIN_BINARY_KEY: b"x"})
        assert second.success
        assert adapter.init_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_waiters_see_failure(self) -> None:
        """Callers waiting on a failing attempt all fail."""
        adapter = CountingAdapter(failures=1)
        results = await asyncio.gather(*(adapter.execute(b"", {STDIN_BINARY_KEY: b"x"}) for _ in range(3)))
        assert adapter.init_calls == 1
        assert not any(r.success for r in results)

    @pytest.mark.asyncio
    async def test_init_failure_raises_adapter_init_error(self) -> None:
        """ensure_initialized wraps engine errors with the adapter name."""
        adapter = CountingAdapter(failures=1)
        with pytest.raises(AdapterInitError) as exc_info:
            await adapter.ensure_initialized(b"")
        assert exc_info.value.code == 2002
        assert exc_info.value.context["underlying_error"] == "engine failed to load"
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestAdapterInput:
    """Tests for input resolution."""

    @pytest.mark.asyncio
    async def test_base64_input(self) -> None:
        """Base64 input is decoded; output comes back as bytes and base64."""
        result = await CountingAdapter().execute(b"", {"input": encode_base64(b"\x00\x01")})
        assert result.stdout_binary == b"\x00\x01"
        assert result.stdout == "AAE="

    @pytest.mark.asyncio
    async def test_piped_bytes_win(self) -> None:
        """_stdin_binary takes precedence over base64 input."""
        result = await CountingAdapter().execute(
            b"", {STDIN_BINARY_KEY: b"piped", "input": encode_base64(b"arg")}
        )
        assert result.stdout_binary == b"piped"

    @pytest.mark.asyncio
    async def test_invalid_base64(self) -> None:
        """Malformed base64 fails with a fixed message."""
        result = await CountingAdapter().execute(b"", {"input": "not base64!"})
        assert not result.success
        assert result.error == "Invalid base64 input data"
        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_missing_input(self) -> None:
        """No input fails with the adapter's message."""
        result = await ImageAdapter().execute(b"", {"command": "-flip"})
        assert result.error == "No input image provided"


class TestAdapterCancellation:
    """Tests for cancellation and timeouts."""

    @pytest.mark.asyncio
    async def test_cancel_event(self) -> None:
        """Setting the event aborts a running call."""
        cancel = asyncio.Event()
        task = asyncio.create_task(SlowAdapter().execute(b"", {STDIN_BINARY_KEY: b"x"}, cancel=cancel))
        await asyncio.sleep(0.05)
        cancel.set()
        result = await asyncio.wait_for(task, 2)
        assert not result.success
        assert result.error_kind == ErrorKind.CANCELLED
        assert result.error == "slow: execution cancelled"

    @pytest.mark.asyncio
    async def test_outer_task_cancel_stops_work(self) -> None:
        """Cancelling the calling task also stops the processing task."""
        adapter = SlowAdapter()
        task = asyncio.create_task(adapter.execute(b"", {STDIN_BINARY_KEY: b"x"}, cancel=asyncio.Event()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert adapter.stopped
        assert not adapter.finished

    @pytest.mark.asyncio
    async def test_already_cancelled(self) -> None:
        """A call with a set event never starts processing."""
        cancel = asyncio.Event()
        cancel.set()
        result = await SlowAdapter().execute(b"", {STDIN_BINARY_KEY: b"x"}, cancel=cancel)
        assert result.error_kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Calls exceeding the timeout fail."""
        result = await SlowAdapter().execute(b"", {STDIN_BINARY_KEY: b"x"}, timeout=0.05)
        assert result.error == "slow timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_timeout_with_cancel_event(self) -> None:
        """The timeout also applies when an event is supplied."""
        result = await SlowAdapter().execute(
            b"", {STDIN_BINARY_KEY: b"x"}, cancel=asyncio.Event(), timeout=0.05
        )
        assert result.error == "slow timed out after 0.05s"


# =============================================================================
# Image Adapter
# =============================================================================


class TestParseGeometry:
    """Tests for resize geometry."""

    @pytest.mark.parametrize(
        ("spec", "expected"),
        [
            ("50%", (50, 25)),
            ("40x40", (40, 20)),
            ("40x40!", (40, 40)),
            ("20x", (20, 10)),
            ("x10", (20, 10)),
        ],
    )
    def test_geometry(self, spec: str, expected: tuple[int, int]) -> None:
        """Geometries resolve against a 100x50 image."""
        assert parse_geometry(spec, (100, 50)) == expected

    def test_invalid(self) -> None:
        """Garbage geometries raise."""
        with pytest.raises(ValueError):
            parse_geometry("big", (100, 50))


class TestTransformImage:
    """Tests for transform_image."""

    def test_resize_and_convert(self) -> None:
        """Resizing and format conversion apply together."""
        output = transform_image(make_png(), "-resize 50%", "jpg")
        with Image.open(io.BytesIO(output)) as image:
            assert image.format == "JPEG"
            assert image.size == (20, 10)

    def test_rotate(self) -> None:
        """Rotation expands the canvas."""
        output = transform_image(make_png(), "-rotate 90")
        with Image.open(io.BytesIO(output)) as image:
            assert image.size == (20, 40)

    def test_grayscale(self) -> None:
        """-colorspace Gray yields a single-band image."""
        output = transform_image(make_png(), "-colorspace Gray")
        with Image.open(io.BytesIO(output)) as image:
            assert image.mode == "L"

    def test_unknown_options_skipped(self) -> None:
        """Unsupported options do not fail the call."""
        output = transform_image(make_png(), "-unknown-op -flip")
        with Image.open(io.BytesIO(output)) as image:
            assert image.size == (40, 20)

    def test_unsupported_format(self) -> None:
        """Unknown output formats are rejected."""
        with pytest.raises(ValueError, match="Unsupported output format"):
            transform_image(make_png(), "", "xyz")


class TestImageTool:
    """Tests for the image tool through the runtime."""

    @pytest.fixture
    def image_runtime(self, runtime: ToolRuntime) -> ToolRuntime:
        runtime.registry.install_adapter_tool(image_manifest(), ImageAdapter())
        return runtime

    @pytest.mark.asyncio
    async def test_base64_argument(self, image_runtime: ToolRuntime) -> None:
        """Base64 input is decoded and the output is binary."""
        result = await image_runtime.invoke(
            "image",
            {"input": encode_base64(make_png()), "command": "-resize 50%"},
        )
        assert result.success
        with Image.open(io.BytesIO(result.stdout_binary)) as image:
            assert image.size == (20, 10)

    @pytest.mark.asyncio
    async def test_file_paths(self, image_runtime: ToolRuntime, memory_fs: MemoryFileSystem) -> None:
        """input_path and output_path go through the sandbox."""
        memory_fs.write_file("in.png", make_png())
        result = await image_runtime.invoke(
            "image",
            {"input_path": "in.png", "output_path": "out/small.png", "command": "-resize 10x"},
        )
        assert result.success
        assert result.stdout.startswith("Output written to out/small.png (")
        with Image.open(io.BytesIO(memory_fs.read_file("out/small.png"))) as image:
            assert image.size == (10, 5)

    @pytest.mark.asyncio
    async def test_missing_input_file(self, image_runtime: ToolRuntime) -> None:
        """A missing input file fails with a read error."""
        result = await image_runtime.invoke("image", {"input_path": "nope.png", "command": "-flip"})
        assert not result.success
        assert result.error.startswith("Failed to read nope.png")

    @pytest.mark.asyncio
    async def test_caller_cannot_supply_raw_input(self, image_runtime: ToolRuntime) -> None:
        """Raw bytes under the internal input key are rejected before the adapter runs."""
        result = await image_runtime.invoke("image", {STDIN_BINARY_KEY: make_png(), "command": "-flip"})
        assert not result.success
        assert result.error_kind == ErrorKind.VALIDATION
        assert STDIN_BINARY_KEY in result.error

    @pytest.mark.asyncio
    async def test_not_an_image(self, image_runtime: ToolRuntime) -> None:
        """Undecodable input fails."""
        result = await image_runtime.invoke("image", {"command": "-flip"}, stdin=b"plain text")
        assert not result.success


# =============================================================================
# Transcoder Adapter
# =============================================================================

STUB_FFMPEG = """\
#!{python}
import sys

args = sys.argv[1:]
if args == ["-version"]:
    print("ffmpeg version stub")
    sys.exit(0)
if "-fail" in args:
    sys.stderr.write("Input #0\\nInvalid argument\\n")
    sys.exit(3)
if "-nooutput" in args:
    sys.exit(0)
source = args[args.index("-i") + 1]
with open(source, "rb") as f:
    data = f.read()
with open(args[-1], "wb") as f:
    f.write(data[::-1])
"""


@pytest.mark.skipif(sys.platform == "win32", reason="stub engine relies on a shebang")
class TestTranscoderAdapter:
    """Tests for the ffmpeg adapter using a stub engine."""

    @pytest.fixture
    def stub_binary(self) -> bytes:
        return STUB_FFMPEG.replace("{python}", sys.executable).encode()

    @pytest.fixture
    def adapter(self) -> Iterator[TranscoderAdapter]:
        adapter = TranscoderAdapter()
        yield adapter
        adapter.close()

    def _args(self, data: bytes, ffmpeg_args: str = "-c copy") -> dict[str, Any]:
        return {
            STDIN_BINARY_KEY: data,
            "input_filename": "in.wav",
            "args": ffmpeg_args,
            "output_filename": "out.mp3",
        }

    @pytest.mark.asyncio
    async def test_transcode(self, adapter: TranscoderAdapter, stub_binary: bytes) -> None:
        """The engine's output file is returned."""
        result = await adapter.execute(stub_binary, self._args(b"abc"))
        assert result.success, result.error
        assert result.stdout_binary == b"cba"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, adapter: TranscoderAdapter, stub_binary: bytes) -> None:
        """A failing engine reports its exit code and stderr tail."""
        result = await adapter.execute(stub_binary, self._args(b"abc", "-fail"))
        assert not result.success
        assert result.error.startswith("FFmpeg exited with code 3")
        assert "Invalid argument" in result.error

    @pytest.mark.asyncio
    async def test_no_output_file(self, adapter: TranscoderAdapter, stub_binary: bytes) -> None:
        """A run that writes nothing fails."""
        result = await adapter.execute(stub_binary, self._args(b"abc", "-nooutput"))
        assert result.error == "FFmpeg produced no output file: out.mp3"

    @pytest.mark.asyncio
    async def test_missing_arguments(self, adapter: TranscoderAdapter, stub_binary: bytes) -> None:
        """Filenames and args are all required."""
        result = await adapter.execute(stub_binary, {STDIN_BINARY_KEY: b"abc", "args": "-c copy"})
        assert result.error == "Missing required arguments: input_filename, args, and output_filename"

    @pytest.mark.asyncio
    async def test_missing_input(self, adapter: TranscoderAdapter, stub_binary: bytes) -> None:
        """No input fails with the adapter's message."""
        result = await adapter.execute(stub_binary, {"args": "-c copy"})
        assert result.error == "No input media provided"

    @pytest.mark.asyncio
    async def test_engine_not_found(self) -> None:
        """A missing executable fails initialization."""
        adapter = TranscoderAdapter(executable="/nonexistent/ffmpeg")
        result = await adapter.execute(b"", self._args(b"abc"))
        assert not result.success

    @pytest.mark.asyncio
    async def test_tool_derives_filenames(
        self,
        runtime: ToolRuntime,
        memory_fs: MemoryFileSystem,
        stub_binary: bytes,
    ) -> None:
        """Filenames are derived from input_path and output_path."""
        adapter = TranscoderAdapter()
        runtime.registry.install_adapter_tool(transcoder_manifest(), adapter, stub_binary)
        memory_fs.write_file("media/clip.wav", b"12345")
        try:
            result = await runtime.invoke(
                "ffmpeg",
                {"input_path": "media/clip.wav", "output_path": "media/clip.mp3", "args": "-b:a 128k"},
            )
        finally:
            adapter.close()
        assert result.success, result.error
        assert memory_fs.read_file("media/clip.mp3") == b"54321"


class TestTranscodeError:
    """Tests for TranscodeError."""

    def test_stderr_tail(self) -> None:
        """Only the last five stderr lines are kept."""
        stderr = "\n".join(f"line {i}" for i in range(10))
        error = TranscodeError(1, stderr)
        assert str(error).splitlines() == ["FFmpeg exited with code 1"] + [f"line {i}" for i in range(5, 10)]
