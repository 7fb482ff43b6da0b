# nsefetch/http/result.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retryable:
    error: Exception


@dataclass(frozen=True)
class Fatal:
    error: Exception


# what a single fetch attempt hands back to the retry loop
AttemptResult = Union[Ok[Any], Retryable, Fatal]
