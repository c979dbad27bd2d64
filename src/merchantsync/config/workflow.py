"""Workflow dispatch configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var
from .http_resilience import ResilienceConfig, RetryPolicy

WORKFLOW_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Location of the host durable-execution facility, if one is deployed."""

    dispatch_url: str | None = None

    def resilience(self) -> ResilienceConfig | None:
        if self.dispatch_url is None:
            return None
        return ResilienceConfig(
            name="workflow",
            base_url=self.dispatch_url,
            timeout_seconds=WORKFLOW_TIMEOUT_SECONDS,
            # the local fallback is the retry path
            retry=RetryPolicy(total=0),
        )


def get_workflow_config() -> WorkflowConfig:
    return WorkflowConfig(dispatch_url=optional_env_var("WORKFLOW_DISPATCH_URL"))
