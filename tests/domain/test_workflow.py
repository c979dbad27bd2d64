from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import pytest

from merchantsync.domain.workflow import (
    InProcessWorkflowStep,
    StepRunner,
    WorkflowDispatcher,
    parse_duration_ms,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from merchantsync.domain.ports.workflow import WorkflowStep


@pytest.mark.parametrize(
    ("duration", "expected"),
    [
        ("500ms", 500),
        ("5s", 5000),
        ("2m", 120_000),
        ("250", 250),
        ("10 seconds", 10),
        ("0ms", 0),
        ("", 0),
        ("soon", 0),
        (" 3S ", 3000),
    ],
)
def test_parse_duration_ms(duration: str, expected: int) -> None:
    assert parse_duration_ms(duration) == expected


def test_in_process_sleep_skips_non_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        slept.append(seconds)

    monkeypatch.setattr("merchantsync.domain.workflow.asyncio.sleep", fake_sleep)
    step = InProcessWorkflowStep("call-processing")

    async def scenario() -> None:
        await step.sleep("0ms")
        await step.sleep("nonsense")
        await step.sleep("1500ms")

    asyncio.run(scenario())
    assert slept == [1.5]


def test_step_runner_logs_success(caplog: pytest.LogCaptureFixture) -> None:
    runner = StepRunner("call-processing", InProcessWorkflowStep("call-processing"), {"callId": "c-1"})

    async def work() -> str:
        return "page-1"

    with caplog.at_level(logging.INFO, logger="merchantsync.domain.workflow"):
        assert asyncio.run(runner.run_step("sync-page", work)) == "page-1"

    messages = [record.getMessage() for record in caplog.records]
    assert any("step=sync-page status=start" in message and "c-1" in message for message in messages)
    assert any("step=sync-page status=success duration_ms=" in message for message in messages)


def test_step_runner_logs_and_reraises_failure(caplog: pytest.LogCaptureFixture) -> None:
    runner = StepRunner("mail-processing", InProcessWorkflowStep("mail-processing"))

    async def work() -> None:
        raise RuntimeError("ledger unavailable")

    with caplog.at_level(logging.INFO, logger="merchantsync.domain.workflow"):
        with pytest.raises(RuntimeError, match="ledger unavailable"):
            asyncio.run(runner.run_step("publish-interaction", work))

    failures = [record for record in caplog.records if "status=failure" in record.getMessage()]
    assert len(failures) == 1
    assert failures[0].levelno == logging.ERROR
    assert failures[0].exc_info is not None


def test_step_runner_delegates_to_host_step() -> None:
    calls: list[tuple[str, str]] = []

    class HostStep:
        async def do(self, name: str, fn: Any) -> Any:
            calls.append(("do", name))
            return await fn()

        async def sleep(self, duration: str) -> None:
            calls.append(("sleep", duration))

    runner = StepRunner("call-processing", HostStep())

    async def work() -> int:
        return 7

    async def scenario() -> int:
        result = await runner.run_step("find-merchant", work)
        await runner.sleep("5s")
        return result

    assert asyncio.run(scenario()) == 7
    assert calls == [("do", "find-merchant"), ("sleep", "5s")]


class FakeFacility:
    def __init__(self, response: Any | None) -> None:
        self.response = response
        self.dispatched: list[tuple[str, dict[str, Any]]] = []

    async def dispatch(self, path: str, payload: Mapping[str, Any]) -> Any | None:
        self.dispatched.append((path, dict(payload)))
        return self.response


def _local(results: list[str]) -> Any:
    async def workflow(step: WorkflowStep) -> str:
        assert isinstance(step, InProcessWorkflowStep)
        results.append(step.workflow_name)
        return "local"

    return workflow


def test_dispatcher_without_facility_runs_locally() -> None:
    ran: list[str] = []
    dispatcher = WorkflowDispatcher()

    result = asyncio.run(dispatcher.trigger("/workflows/call-processing", {"id": "c-1"}, _local(ran)))

    assert result == "local"
    assert ran == ["call-processing"]


def test_dispatcher_prefers_remote_host() -> None:
    ran: list[str] = []
    facility = FakeFacility({"id": "run-1"})
    dispatcher = WorkflowDispatcher(facility)

    result = asyncio.run(dispatcher.trigger("workflows/call-processing", {"id": "c-1"}, _local(ran)))

    assert result == {"id": "run-1"}
    assert ran == []
    assert facility.dispatched == [("workflows/call-processing", {"id": "c-1"})]


def test_dispatcher_falls_back_when_remote_unavailable() -> None:
    ran: list[str] = []
    dispatcher = WorkflowDispatcher(FakeFacility(None))

    result = asyncio.run(
        dispatcher.trigger("workflows/mail", {"id": "m-1"}, _local(ran), workflow_name="mail-processing")
    )

    assert result == "local"
    assert ran == ["mail-processing"]


def test_forced_fallback_skips_remote() -> None:
    ran: list[str] = []
    facility = FakeFacility({"id": "run-1"})
    dispatcher = WorkflowDispatcher(facility)

    result = asyncio.run(
        dispatcher.trigger("workflows/message-processing", {}, _local(ran), fallback=True)
    )

    assert result == "local"
    assert facility.dispatched == []
    assert ran == ["message-processing"]
