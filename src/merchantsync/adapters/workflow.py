"""Durable-execution facility reached over HTTP."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx

from merchantsync.adapters.http_resilience import ResilientClient
from merchantsync.domain.ports.workflow import WorkflowDispatchError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from merchantsync.config.http_resilience import ResilienceConfig

log = getLogger(__name__)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class HttpDurableExecutionFacility:
    """POSTs ``{"params": payload}`` to ``{base_url}/{path}``.

    Any transport failure, non-2xx status or non-JSON body makes ``dispatch``
    return ``None`` so the caller can run the workflow in process instead.
    """

    resilience: ResilienceConfig
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    async def dispatch(self, path: str, payload: Mapping[str, Any]) -> Any | None:
        try:
            return await self._post(path, payload)
        except WorkflowDispatchError as exc:
            log.warning("Workflow dispatch to %s failed: %s", path, exc)
            return None

    async def _post(self, path: str, payload: Mapping[str, Any]) -> Any:
        async with self.client_factory(self.resilience) as client:
            try:
                response = await client.post(path.lstrip("/"), json={"params": dict(payload)})
            except httpx.HTTPError as exc:
                raise WorkflowDispatchError(str(exc)) from exc

        if not response.is_success:
            raise WorkflowDispatchError(f"status {response.status_code}")
        if "application/json" not in response.headers.get("content-type", ""):
            raise WorkflowDispatchError("response is not JSON")
        try:
            return response.json()
        except ValueError as exc:
            raise WorkflowDispatchError("response body is not valid JSON") from exc
