"""
Manifest and engine-binary storage.

Adapter tools are installed from a store that holds each tool's manifest and
the engine binary its adapter loads on first use. Binaries are downloaded
over HTTP with HttpBinarySource.

Security Note:
    Manifests are validated when they are put into a store, so a manifest
    with several binary parameters can never be installed. Downloads are
    size-capped both by Content-Length and while streaming.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from toolpipe.contract import validate_manifest
from toolpipe.errors import BinaryFetchError, StoreEntryNotFoundError
from toolpipe.schema import ToolManifest

logger = logging.getLogger(__name__)

DEFAULT_MAX_BINARY_BYTES = 128 * 1024 * 1024
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0


@runtime_checkable
class ManifestStore(Protocol):
    """Lookup interface for installed tools."""

    def get_manifest(self, name: str) -> ToolManifest: ...

    def get_binary(self, name: str) -> bytes: ...

    def list_names(self) -> list[str]: ...


class MemoryManifestStore:
    """In-memory manifest store."""

    def __init__(self) -> None:
        self._manifests: dict[str, ToolManifest] = {}
        self._binaries: dict[str, bytes] = {}

    def put(self, manifest: ToolManifest, binary: bytes = b"") -> None:
        """
        Store a manifest and its engine binary.

        Raises:
            ManifestInvalidError: If the manifest breaks the manifest contract
        """
        validate_manifest(manifest)
        self._manifests[manifest.name] = manifest
        self._binaries[manifest.name] = bytes(binary)
        logger.debug("Stored %s (%d byte engine)", manifest.name, len(binary))

    def get_manifest(self, name: str) -> ToolManifest:
        try:
            return self._manifests[name]
        except KeyError:
            raise StoreEntryNotFoundError(name=name) from None

    def get_binary(self, name: str) -> bytes:
        try:
            return self._binaries[name]
        except KeyError:
            raise StoreEntryNotFoundError(name=name) from None

    def list_names(self) -> list[str]:
        return sorted(self._manifests)

    def delete(self, name: str) -> bool:
        existed = name in self._manifests
        self._manifests.pop(name, None)
        self._binaries.pop(name, None)
        return existed

    def __contains__(self, name: str) -> bool:
        return name in self._manifests

    def __len__(self) -> int:
        return len(self._manifests)


class HttpBinarySource:
    """
    Downloads engine binaries over HTTP.

    Args:
        base_url: URL that relative binary paths are resolved against
        client: httpx client to use (default: a new client per fetch)
        max_bytes: Largest accepted binary
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = "",
        client: httpx.Client | None = None,
        max_bytes: int = DEFAULT_MAX_BINARY_BYTES,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.max_bytes = max_bytes
        self.timeout = timeout

    def resolve_url(self, location: str) -> str:
        if location.startswith(("http://", "https://")) or not self.base_url:
            return location
        return f"{self.base_url}/{location.lstrip('/')}"

    def fetch(self, location: str) -> bytes:
        """
        Download a binary.

        Raises:
            BinaryFetchError: On HTTP errors, timeouts or oversized bodies
        """
        url = self.resolve_url(location)
        try:
            if self.client is not None:
                return self._download(self.client, url)
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                return self._download(client, url)
        except httpx.TimeoutException:
            raise BinaryFetchError(
                name=location,
                url=url,
                underlying_error=f"timed out after {self.timeout} seconds",
            ) from None
        except httpx.HTTPError as e:
            raise BinaryFetchError(name=location, url=url, underlying_error=str(e)) from e

    def _download(self, client: httpx.Client, url: str) -> bytes:
        with client.stream("GET", url) as response:
            if response.status_code != 200:
                raise BinaryFetchError(
                    name=url,
                    url=url,
                    underlying_error=f"HTTP {response.status_code}",
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
                raise BinaryFetchError(
                    name=url,
                    url=url,
                    underlying_error=f"binary too large: {content_length} bytes (max: {self.max_bytes})",
                )

            chunks = []
            total = 0
            for chunk in response.iter_bytes(chunk_size=65536):
                total += len(chunk)
                if total > self.max_bytes:
                    raise BinaryFetchError(
                        name=url,
                        url=url,
                        underlying_error=f"binary exceeded size limit (max: {self.max_bytes})",
                    )
                chunks.append(chunk)

        logger.info("Fetched %s (%d bytes)", url, total)
        return b"".join(chunks)

    def install(self, store: MemoryManifestStore, manifest: ToolManifest, location: str) -> None:
        """Download a binary and store it with its manifest."""
        store.put(manifest, self.fetch(location))
