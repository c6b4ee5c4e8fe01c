"""
Remote page integration.

Only the contracts are exported here. The Playwright adapter lives in
`automator.remote.browser`.
"""

from .base import (
    CandidateImage,
    CompletionResult,
    ConnectionLostError,
    ImageFeed,
    RemoteActionAdapter,
    RemoteActionError,
    replace_with_normal_size,
)

__all__ = [
    "CandidateImage",
    "CompletionResult",
    "ConnectionLostError",
    "ImageFeed",
    "RemoteActionAdapter",
    "RemoteActionError",
    "replace_with_normal_size",
]
