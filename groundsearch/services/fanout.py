from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    name: str
    value: T


@dataclass(frozen=True, slots=True)
class Err:
    name: str
    error: BaseException


Outcome = Ok[Any] | Err


async def best_effort(branches: dict[str, Awaitable[T]]) -> list[Ok[T] | Err]:
    """Await every branch concurrently; one failing branch never cancels the others.

    Outcomes come back in the order the branches were given.
    """
    names = list(branches)
    results = await asyncio.gather(*branches.values(), return_exceptions=True)
    outcomes: list[Ok[T] | Err] = []
    for name, result in zip(names, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            outcomes.append(Err(name, result))
        else:
            outcomes.append(Ok(name, result))
    return outcomes
