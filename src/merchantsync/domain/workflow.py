"""Timing and logging envelope for named units of work.

A ``StepRunner`` wraps any ``WorkflowStep``: the durable step object handed in by
a workflow host, or ``InProcessWorkflowStep`` when the work runs locally.
``WorkflowDispatcher`` prefers the host and falls back to running the workflow in
process when the host is absent or does not accept the request.
"""

from __future__ import annotations

import asyncio
import re
import time
from logging import getLogger
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from merchantsync.domain.ports.workflow import (
        DurableExecutionFacility,
        StepFunction,
        WorkflowStep,
    )

log = getLogger(__name__)

_DURATION = re.compile(r"^(\d+)(ms|s|m)$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\d+")
_UNIT_MS = {"ms": 1, "s": 1000, "m": 60 * 1000}


def parse_duration_ms(duration: str) -> int:
    """Parse ``"250ms"``, ``"5s"``, ``"2m"`` or a bare millisecond count."""

    trimmed = duration.strip()
    if not trimmed:
        return 0
    match = _DURATION.match(trimmed)
    if match is None:
        leading = _LEADING_INT.match(trimmed)
        return int(leading.group()) if leading else 0
    return int(match.group(1)) * _UNIT_MS[match.group(2).lower()]


class InProcessWorkflowStep:
    """Local stand-in for a durable step host: runs steps directly and sleeps in-loop."""

    def __init__(self, workflow_name: str) -> None:
        self.workflow_name = workflow_name

    async def do[T](self, name: str, fn: StepFunction[T]) -> T:
        started = time.perf_counter()
        log.debug("[%s] local step %s start", self.workflow_name, name)
        try:
            result = await fn()
        except Exception:
            log.debug(
                "[%s] local step %s failed after %.1fms",
                self.workflow_name,
                name,
                _elapsed_ms(started),
            )
            raise
        log.debug(
            "[%s] local step %s done in %.1fms", self.workflow_name, name, _elapsed_ms(started)
        )
        return result

    async def sleep(self, duration: str) -> None:
        milliseconds = parse_duration_ms(duration)
        if milliseconds <= 0:
            return
        await asyncio.sleep(milliseconds / 1000)


class StepRunner:
    """Run named steps with start/success/failure logging and timing.

    Failures are logged and re-raised; retrying is left to whoever owns the
    workflow.
    """

    def __init__(
        self,
        workflow_name: str,
        step: WorkflowStep,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.workflow_name = workflow_name
        self._step = step
        self._context = dict(context or {})

    async def run_step[T](self, name: str, fn: StepFunction[T]) -> T:
        context = {**self._context, "step": name}
        log.info("workflow=%s step=%s status=start context=%s", self.workflow_name, name, context)
        started = time.perf_counter()
        try:
            result = await self._step.do(name, fn)
        except Exception:
            log.exception(
                "workflow=%s step=%s status=failure duration_ms=%.1f context=%s",
                self.workflow_name,
                name,
                _elapsed_ms(started),
                context,
            )
            raise
        log.info(
            "workflow=%s step=%s status=success duration_ms=%.1f",
            self.workflow_name,
            name,
            _elapsed_ms(started),
        )
        return result

    async def sleep(self, duration: str) -> None:
        await self._step.sleep(duration)


type LocalWorkflow[T] = Callable[[WorkflowStep], Awaitable[T]]


class WorkflowDispatcher:
    """Start workflows on the durable-execution host, or locally when it is unavailable."""

    def __init__(self, facility: DurableExecutionFacility | None = None) -> None:
        self._facility = facility

    async def trigger[T](
        self,
        path: str,
        payload: Mapping[str, Any],
        local: LocalWorkflow[T],
        *,
        workflow_name: str | None = None,
        fallback: bool = False,
    ) -> T | Any:
        """Dispatch ``path`` remotely unless ``fallback`` forces the local run."""

        if self._facility is not None and not fallback:
            remote = await self._facility.dispatch(path, payload)
            if remote is not None:
                log.info("Workflow %s dispatched to durable execution host", path)
                return remote
            log.warning("Durable execution unavailable for %s; running in process", path)

        name = workflow_name or path.rstrip("/").rsplit("/", 1)[-1]
        return await local(InProcessWorkflowStep(name))


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
