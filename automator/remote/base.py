"""
Remote Action Contracts

Operations the orchestrator drives against the remote page, plus the
image discovery feed used by watermark post-processing.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class RemoteActionError(Exception):
    """A per-item remote step failed (element missing, not ready, ...)."""


class ConnectionLostError(RemoteActionError):
    """The remote target is gone; no further item can succeed."""


@dataclass
class CompletionResult:
    """Outcome of waiting for the remote side to finish generating."""
    success: bool
    error: Optional[str] = None


_SIZE_SUFFIX = re.compile(r"=s\d+(?=[-?#]|$)")


def replace_with_normal_size(url: str) -> str:
    """Rewrite a googleusercontent `=sNNN` size suffix to request full size."""
    return _SIZE_SUFFIX.sub("=s0", url)


@dataclass(frozen=True)
class CandidateImage:
    """A generated image surfaced by the page."""
    image_id: str
    display_url: str

    @property
    def full_size_url(self) -> str:
        return replace_with_normal_size(self.display_url)


class RemoteActionAdapter(ABC):
    """
    The four operations of the per-item protocol.

    Implementations raise `RemoteActionError` for per-item failures and
    `ConnectionLostError` when the remote session is gone.
    """

    @abstractmethod
    async def probe(self) -> bool:
        """Return True if the remote target is still reachable."""

    @abstractmethod
    async def fill_input(self, content: str) -> None:
        """Submit one item to the remote input surface."""

    @abstractmethod
    async def trigger_action(self) -> None:
        """Invoke the remote generation trigger, retrying until it is available."""

    @abstractmethod
    async def await_completion(self) -> CompletionResult:
        """Block until the remote signals completion or the timeout elapses."""


class ImageFeed(ABC):
    """Source of candidate images and sink for their processed replacements."""

    @abstractmethod
    async def discover(self) -> list[CandidateImage]:
        """List the generated images currently shown."""

    @abstractmethod
    async def substitute(self, candidate: CandidateImage, data: bytes) -> None:
        """Replace the displayed image with processed PNG bytes."""
