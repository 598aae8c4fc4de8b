"""
Base class for processing adapters.

An adapter wraps a heavyweight processing engine (an image library, a media
transcoder) behind one coroutine: ``execute(library_binary, args)``.

Design Principles:
    - The engine is initialized lazily, once per adapter instance; callers
      that arrive during initialization wait for the same attempt
    - A failed initialization is forgotten so the next call retries
    - Input comes from ``_stdin_binary`` (bytes) or a base64 ``input`` argument
    - Adapters never raise past execute(): every failure becomes a failed
      ExecutionResult with exit code 1
    - Successful output is binary: ``stdout_binary`` holds the bytes and
      ``stdout`` their base64 text
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Coroutine, Mapping
from typing import Any

from toolpipe.contract import decode_base64, encode_base64
from toolpipe.errors import AdapterInitError, ErrorKind, ExecutionCancelledError, InvalidBase64Error
from toolpipe.schema import ExecutionResult

logger = logging.getLogger(__name__)

STDIN_BINARY_KEY = "_stdin_binary"


class AdapterInputError(Exception):
    """Raised when an adapter call is missing or has unusable input."""


class Adapter(ABC):
    """
    Abstract base class for processing adapters.

    Subclasses implement:
    - initialize(): load the engine and return a handle to it
    - process(): transform input bytes with the engine

    Attributes:
        name: Adapter name used in logs and messages
        input_param: Argument holding base64 input when no stdin is given
        missing_input_message: Error text when no input is supplied
    """

    name: str = "adapter"
    input_param: str = "input"
    missing_input_message: str = "No input data provided"

    def __init__(self) -> None:
        self._engine: Any = None
        self._init_task: asyncio.Future[Any] | None = None

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    @abstractmethod
    async def initialize(self, library_binary: bytes) -> Any:
        """
        Load the processing engine.

        Args:
            library_binary: Engine binary from the tool store (may be empty)

        Returns:
            An engine handle passed to process()
        """
        ...

    @abstractmethod
    async def process(self, engine: Any, data: bytes, args: Mapping[str, Any]) -> bytes:
        """
        Transform input bytes.

        Raises:
            Exception: Any failure; execute() turns it into a failed result
        """
        ...

    async def ensure_initialized(self, library_binary: bytes) -> Any:
        """
        Initialize the engine once.

        Concurrent callers share a single in-flight attempt. If it fails,
        every waiting caller sees the error and the next call starts over.

        Raises:
            AdapterInitError: If the engine could not be loaded
        """
        if self._engine is not None:
            return self._engine

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize_once(library_binary))

        return await asyncio.shield(self._init_task)

    async def _initialize_once(self, library_binary: bytes) -> Any:
        try:
            engine = await self.initialize(library_binary)
        except Exception as e:
            self._init_task = None
            logger.warning("Initialization of %s failed", self.name, exc_info=True)
            raise AdapterInitError(tool=self.name, underlying_error=str(e) or type(e).__name__) from e
        self._engine = engine
        logger.info("Initialized %s", self.name)
        return engine

    def resolve_input(self, args: Mapping[str, Any]) -> bytes:
        """
        Input bytes for a call.

        Raises:
            AdapterInputError: If no input is supplied
            InvalidBase64Error: If the base64 input is malformed
        """
        data = args.get(STDIN_BINARY_KEY)
        if isinstance(data, (bytes, bytearray, memoryview)):
            return bytes(data)

        encoded = args.get(self.input_param)
        if isinstance(encoded, str):
            return decode_base64(encoded, param=self.input_param)

        raise AdapterInputError(self.missing_input_message)

    async def execute(
        self,
        library_binary: bytes,
        args: Mapping[str, Any],
        *,
        cancel: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """
        Run the adapter.

        Args:
            library_binary: Engine binary (used on first call)
            args: Tool arguments, plus ``_stdin_binary`` when piped
            cancel: Event that aborts the call when set
            timeout: Seconds before the call is abandoned

        Returns:
            ExecutionResult with the output bytes, or a failure
        """
        try:
            engine = await self.ensure_initialized(library_binary)
            data = self.resolve_input(args)
            output = await self._run_cancellable(self.process(engine, data, args), cancel, timeout)
        except ExecutionCancelledError as e:
            return ExecutionResult.fail(e.message, kind=ErrorKind.CANCELLED)
        except AdapterInitError as e:
            return ExecutionResult.from_error(e)
        except InvalidBase64Error:
            return ExecutionResult.fail("Invalid base64 input data")
        except TimeoutError:
            return ExecutionResult.fail(f"{self.name} timed out after {timeout}s")
        except Exception as e:
            logger.debug("%s failed: %s", self.name, e)
            return ExecutionResult.fail(str(e) or type(e).__name__)

        return ExecutionResult.ok(stdout=encode_base64(output), stdout_binary=output)

    async def _run_cancellable(
        self,
        work: Coroutine[Any, Any, bytes],
        cancel: asyncio.Event | None,
        timeout: float | None,
    ) -> bytes:
        if cancel is None:
            return await asyncio.wait_for(work, timeout)

        if cancel.is_set():
            work.close()
            raise ExecutionCancelledError(tool=self.name)

        task = asyncio.ensure_future(work)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if task in done:
            return task.result()

        if cancel.is_set():
            logger.info("%s cancelled", self.name)
            raise ExecutionCancelledError(tool=self.name)
        raise TimeoutError

    def __repr__(self) -> str:
        state = "ready" if self.initialized else "cold"
        return f"<Adapter: {self.name} ({state})>"
