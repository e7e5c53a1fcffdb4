"""Error taxonomy for directory and persistence failures."""

from __future__ import annotations

from typing import Optional

from .constants import DUPLICATE_KEY_CODE, NO_ROWS_CODE, TIMEOUT_CODE, TRANSIENT_CODE


class DirectoryError(Exception):
    """Base class for failures reported by the remote directory."""

    code: str = TRANSIENT_CODE

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(DirectoryError):
    """Expected absence, e.g. no profile row yet."""

    code = NO_ROWS_CODE


class ProfileFetchTimeout(DirectoryError):
    """Profile read exceeded the configured bound; treated like a missing row."""

    code = TIMEOUT_CODE


class TransientError(DirectoryError):
    """Network or store failure that callers degrade around."""

    code = TRANSIENT_CODE


class DuplicateKeyError(DirectoryError):
    """Idempotent insert collided with an existing row."""

    code = DUPLICATE_KEY_CODE


_BY_CODE = {
    NO_ROWS_CODE: NotFoundError,
    DUPLICATE_KEY_CODE: DuplicateKeyError,
    TIMEOUT_CODE: ProfileFetchTimeout,
}


def classify(code: Optional[str], message: str = "") -> Optional[DirectoryError]:
    """Map a directory result code onto the exception taxonomy."""
    if code is None:
        return None
    error_cls = _BY_CODE.get(code, TransientError)
    return error_cls(message, code=code)


__all__ = [
    "DirectoryError",
    "DuplicateKeyError",
    "NotFoundError",
    "ProfileFetchTimeout",
    "TransientError",
    "classify",
]
