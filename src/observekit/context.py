"""Ambient "current observation" storage.

Each thread and each asyncio task sees its own value: the store is a
``ContextVar`` and scopes restore the previous value through its reset token.
"""

from __future__ import annotations

import os
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from observekit.observation import Observation

__all__ = [
    "current_observation",
    "current_trace_ids",
    "new_span_id",
    "new_trace_id",
]

_current: ContextVar[Observation | None] = ContextVar("observekit_current_observation", default=None)


def current_observation() -> Observation | None:
    """Return the innermost observation whose scope is open, or None."""
    return _current.get()


def current_trace_ids() -> tuple[str | None, str | None]:
    """Return ``(trace_id, span_id)`` of the current observation."""
    observation = _current.get()
    if observation is None:
        return None, None
    context = observation.context
    return context.trace_id, context.span_id


def new_trace_id() -> str:
    return os.urandom(16).hex()


def new_span_id() -> str:
    return os.urandom(8).hex()


def _push(observation: Observation) -> Token:
    return _current.set(observation)


def _pop(token: Token) -> None:
    _current.reset(token)
