"""Remote mirror backends for the sales ledger artifact.

The ledger store treats the mirror as an eventually consistent copy. Any
object implementing :class:`ObjectSink` can serve as the mirror; sinks
report every failure as :class:`MirrorUnavailable` so the store can
downgrade it to a log event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

import requests

from . import log
from .constants import DEFAULT_MIRROR_TIMEOUT

if TYPE_CHECKING:
    from .data_manager import StoreSettings


class MirrorUnavailable(Exception):
    """Raised when the remote mirror cannot be read from or written to."""


@runtime_checkable
class ObjectSink(Protocol):
    """Durable object storage holding the latest ledger artifact."""

    def put(self, data: bytes) -> None: ...

    def get_latest(self) -> Optional[bytes]: ...


class HttpObjectSink:
    """Mirror the artifact to ``{base_url}/{key}`` over plain HTTP GET/PUT.

    Args:
        base_url (str): Root URL of the object store bucket or endpoint.
        key (str): Object key the artifact is stored under.
        token (str | None): Optional bearer token sent with every request.
        timeout (float): Seconds allowed for each request.
    """

    def __init__(
        self,
        base_url: str,
        key: str,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_MIRROR_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.key = key.lstrip("/")
        self.token = token
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.key}"

    def _headers(self) -> dict[str, str]:
        headers = {"Cache-Control": "no-store"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def put(self, data: bytes) -> None:
        headers = self._headers()
        headers["Content-Type"] = "text/csv; charset=utf-8"
        try:
            response = requests.put(self.url, data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise MirrorUnavailable(f"Mirror upload to {self.url} failed: {exc}") from exc
        if not response.ok:
            raise MirrorUnavailable(f"Mirror upload to {self.url} returned HTTP {response.status_code}")
        log.debug("Pushed %d bytes to mirror '%s'", len(data), self.url)

    def get_latest(self) -> Optional[bytes]:
        try:
            response = requests.get(self.url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise MirrorUnavailable(f"Mirror download from {self.url} failed: {exc}") from exc
        if response.status_code == 404:
            return None
        if not response.ok:
            raise MirrorUnavailable(f"Mirror download from {self.url} returned HTTP {response.status_code}")
        return response.content


class MemoryObjectSink:
    """In-process sink keeping the latest artifact bytes in memory."""

    def __init__(self, data: Optional[bytes] = None) -> None:
        self.data = data
        self.put_count = 0

    def put(self, data: bytes) -> None:
        self.data = bytes(data)
        self.put_count += 1

    def get_latest(self) -> Optional[bytes]:
        return self.data


def build_sink(settings: "StoreSettings") -> Optional[ObjectSink]:
    """Return the configured mirror sink, or ``None`` for local-only storage."""

    if not settings.mirror_url:
        return None
    log.info("Mirroring ledger to '%s' (key '%s')", settings.mirror_url, settings.mirror_key)
    return HttpObjectSink(
        settings.mirror_url,
        settings.mirror_key,
        token=settings.mirror_token,
        timeout=settings.mirror_timeout,
    )


__all__ = [
    "MirrorUnavailable",
    "ObjectSink",
    "HttpObjectSink",
    "MemoryObjectSink",
    "build_sink",
]
