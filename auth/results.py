"""
auth/results.py -- Explicit success/failure values for the leaf components.

CredentialHasher, SessionTokenIssuer and GoogleIdentityVerifier return a
Result instead of raising. The caller branches on isinstance(result, Err)
(or result.ok) and decides the failure policy itself.

    result = await hasher.hash(password)
    if isinstance(result, Err):
        ...  # result.error is a HashingError
    digest = result.value

The error payload is always an exception instance from auth/errors.py so it
can be logged with its message or re-raised with `raise result.error`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]
