"""
Per-invocation metadata cache and in-flight build registry.

:class:`InMemoryIndex` holds metadata that has already been built;
:class:`InFlight` makes sure that concurrent requests for the same
fingerprint share a single build. Both live for one command invocation and
are carried around in :class:`SharedState`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from depsync.core.credentials import CredentialStore
from depsync.utils.logger import get_logger

if TYPE_CHECKING:
    from depsync.core.metadata import DistributionMetadata

logger = get_logger("index")


class InMemoryIndex:
    """Write-once mapping of fingerprint to distribution metadata."""

    def __init__(self) -> None:
        self._entries: Dict[str, "DistributionMetadata"] = {}

    def get(self, fingerprint: str) -> Optional["DistributionMetadata"]:
        return self._entries.get(fingerprint)

    def insert(self, fingerprint: str, metadata: "DistributionMetadata") -> "DistributionMetadata":
        """Store ``metadata`` unless an entry exists; return the stored entry."""
        return self._entries.setdefault(fingerprint, metadata)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class InFlight:
    """Registry of metadata builds currently running.

    :meth:`register` is synchronous, so checking for an existing build and
    claiming a new one cannot be interleaved with another task. Completed
    builds are removed; failed builds are removed too, but their exception
    is kept so later requests fail the same way instead of rebuilding.
    """

    def __init__(self) -> None:
        self._futures: Dict[str, "asyncio.Future[DistributionMetadata]"] = {}
        self._failures: Dict[str, BaseException] = {}

    def register(self, fingerprint: str) -> Tuple["asyncio.Future[DistributionMetadata]", bool]:
        """Return ``(future, owner)`` for ``fingerprint``.

        ``owner`` is True for the caller that must perform the build; every
        other caller awaits the returned future.
        """
        existing = self._futures.get(fingerprint)
        if existing is not None:
            return existing, False

        future: "asyncio.Future[DistributionMetadata]" = (
            asyncio.get_running_loop().create_future()
        )
        self._futures[fingerprint] = future
        return future, True

    def complete(self, fingerprint: str, metadata: "DistributionMetadata") -> None:
        future = self._futures.pop(fingerprint, None)
        if future is not None and not future.done():
            future.set_result(metadata)

    def fail(self, fingerprint: str, exc: BaseException) -> None:
        """Release ``fingerprint`` with an error.

        A cancelled build cancels its waiters but is not remembered as a
        failure.
        """
        future = self._futures.pop(fingerprint, None)
        if isinstance(exc, asyncio.CancelledError):
            if future is not None and not future.done():
                future.cancel()
            return

        self._failures.setdefault(fingerprint, exc)
        if future is None or future.done():
            return
        future.set_exception(exc)
        # Mark retrieved so an unawaited failure is not reported at shutdown.
        future.exception()

    def failure(self, fingerprint: str) -> Optional[BaseException]:
        """Return the recorded failure for ``fingerprint``, if any."""
        return self._failures.get(fingerprint)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._futures


@dataclass
class SharedState:
    """State shared by every resolution within one command invocation."""

    index: InMemoryIndex = field(default_factory=InMemoryIndex)
    in_flight: InFlight = field(default_factory=InFlight)
    credentials: CredentialStore = field(default_factory=CredentialStore)
