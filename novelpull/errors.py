"""Result kinds and exceptions shared by the fetch and decode layers.

Fetchers and decoders hand back a :class:`Result` tagged with a
:class:`ResultKind` so every call site branches on the kind explicitly.
Exceptions are reserved for failures that end the caller's unit of work.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ResultKind(Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    PARSE_ERROR = "parse_error"
    DECRYPT_ERROR = "decrypt_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class Result(Generic[T]):
    kind: ResultKind
    value: Optional[T] = None
    message: str = ""
    attempts: int = 1

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(ResultKind.OK, value)

    @classmethod
    def fail(cls, kind: ResultKind, message: str = "") -> "Result[Any]":
        if kind is ResultKind.OK:
            raise ValueError("fail() needs a failure kind")
        return cls(kind, None, message)

    @property
    def is_ok(self) -> bool:
        return self.kind is ResultKind.OK

    def with_attempts(self, attempts: int) -> "Result[T]":
        return Result(self.kind, self.value, self.message, attempts)


class NovelPullError(Exception):
    pass


class NotFoundError(NovelPullError):
    """A required structural element (title, data block, content) is absent."""


class ParseError(NovelPullError):
    """Structured data was present but malformed."""


class DecryptError(NovelPullError):
    """Encrypted envelope is malformed or failed authentication."""


class TransportError(NovelPullError):
    """The HTTP layer gave up after its own connection retries."""

    def __init__(self, url: str, reason: str = ""):
        super().__init__(f"Request to {url} failed: {reason}" if reason else f"Request to {url} failed")
        self.url = url


class BatchExhaustedError(NovelPullError):
    """A list batch spent its retry budget; ``partial`` holds what was merged before."""

    def __init__(self, message: str, partial: Optional[List[Any]] = None, pages: Optional[List[int]] = None):
        super().__init__(message)
        self.partial = list(partial or [])
        self.pages = list(pages or [])


class RateLimitedError(NovelPullError):
    """A single-shot request (catalog page, bulk list) stayed rate limited."""
