"""Ports for durable workflow execution."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

type StepFunction[T] = Callable[[], Awaitable[T]]


@runtime_checkable
class WorkflowStep(Protocol):
    """Step/sleep contract offered by a durable-execution host or its local stand-in."""

    async def do[T](self, name: str, fn: StepFunction[T]) -> T: ...

    async def sleep(self, duration: str) -> None: ...


@runtime_checkable
class DurableExecutionFacility(Protocol):
    async def dispatch(self, path: str, payload: Mapping[str, Any]) -> Any | None:
        """Start a workflow remotely; ``None`` means the facility is unavailable."""
        ...


class WorkflowDispatchError(RuntimeError):
    """Raised by a durable-execution transport that could not start a workflow."""
