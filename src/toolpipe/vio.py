"""
Virtual stdin/stdout/stderr for in-process commands.

Commands read their input and write their output through a VirtualIO
instance instead of real process streams. Output is kept as raw bytes; the
text view is derived on demand with lossy UTF-8 decoding, so binary data
survives a round trip through a pipeline untouched.
"""

BytesLike = bytes | bytearray | memoryview


def _as_bytes(data: BytesLike | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def is_binary_output(data: bytes) -> bool:
    """
    True if the bytes do not survive a lossy UTF-8 round trip.

    Any invalid sequence is replaced by U+FFFD during decoding, which changes
    the re-encoded length.
    """
    return len(data.decode("utf-8", errors="replace").encode("utf-8")) != len(data)


class VirtualIO:
    """
    Per-invocation stdio buffers.

    A fresh instance is created for each command; nothing is shared between
    invocations.
    """

    def __init__(self) -> None:
        self._stdin = b""
        self._offset = 0
        self._stdin_attached = False
        self._stdout = bytearray()
        self._stderr = bytearray()

    @property
    def stdin_attached(self) -> bool:
        """Whether set_stdin has been called since the last reset."""
        return self._stdin_attached

    def set_stdin(self, data: BytesLike | str) -> None:
        """Replace stdin and rewind the read offset."""
        self._stdin = _as_bytes(data)
        self._offset = 0
        self._stdin_attached = True

    def read_stdin(self, max_bytes: int) -> bytes:
        """
        Read up to max_bytes from stdin.

        Returns an empty bytes object once stdin is exhausted.
        """
        if max_bytes <= 0:
            return b""
        chunk = self._stdin[self._offset : self._offset + max_bytes]
        self._offset += len(chunk)
        return chunk

    def read_all_stdin(self) -> bytes:
        """Read everything remaining on stdin."""
        chunk = self._stdin[self._offset :]
        self._offset = len(self._stdin)
        return chunk

    def write_stdout(self, data: BytesLike | str) -> int:
        """Append to stdout. Returns the number of bytes written."""
        payload = _as_bytes(data)
        self._stdout.extend(payload)
        return len(payload)

    def write_stderr(self, data: BytesLike | str) -> int:
        """Append to stderr. Returns the number of bytes written."""
        payload = _as_bytes(data)
        self._stderr.extend(payload)
        return len(payload)

    def get_stdout(self) -> str:
        """Stdout decoded as UTF-8, invalid sequences replaced."""
        return self._stdout.decode("utf-8", errors="replace")

    def get_stdout_binary(self) -> bytes:
        """Exact stdout bytes."""
        return bytes(self._stdout)

    def get_stderr(self) -> str:
        """Stderr decoded as UTF-8, invalid sequences replaced."""
        return self._stderr.decode("utf-8", errors="replace")

    def get_stderr_binary(self) -> bytes:
        """Exact stderr bytes."""
        return bytes(self._stderr)

    def stdout_is_binary(self) -> bool:
        return is_binary_output(bytes(self._stdout))

    def reset(self) -> None:
        """Clear every buffer."""
        self._stdin = b""
        self._offset = 0
        self._stdin_attached = False
        self._stdout.clear()
        self._stderr.clear()

    def __repr__(self) -> str:
        return (
            f"VirtualIO(stdin={len(self._stdin)}B@{self._offset}, "
            f"stdout={len(self._stdout)}B, stderr={len(self._stderr)}B)"
        )
