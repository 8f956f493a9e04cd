"""
Type aliases shared by the fiberflow event loop and its collaborators.
"""

from collections.abc import Callable
from typing import Any, TypeAlias

Time: TypeAlias = float
"""Absolute loop time in seconds, as returned by :meth:`EventLoop.time`."""

DeltaTime: TypeAlias = float
"""A relative duration in seconds."""

Callback: TypeAlias = Callable[..., Any]

OnFulfilled: TypeAlias = Callable[[Any], Any]
OnRejected: TypeAlias = Callable[[Any], Any]

Resolver: TypeAlias = Callable[[Any], None]
Rejecter: TypeAlias = Callable[[Any], None]

Executor: TypeAlias = Callable[[Resolver, Rejecter], Any]
"""Called synchronously by :class:`Future` with its ``(resolve, reject)`` pair."""

Canceller: TypeAlias = Callable[[Resolver, Rejecter], Any]
"""Called by :meth:`Future.cancel` with the same ``(resolve, reject)`` pair."""
