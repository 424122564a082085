"""Explicit success/failure values returned by pipeline stages.

Stages never raise for expected failures. They return :class:`Err` tagged
with an :class:`~chatcrm.errors.ErrorKind`, and the caller decides whether
to fall back, degrade or stop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from ..errors import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str = ""
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


__all__ = ["Err", "Ok", "Result"]
