"""Per-model liveness probe: one short chat completion per candidate model."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from chanwatch.errors import ProbeRequestError
from chanwatch.models.channel import Channel, ProbeOutcome

log = logging.getLogger(__name__)

PROBE_MESSAGE = "Hello! Reply in short"
DEFAULT_PROBE_TIMEOUT = 10.0
_BODY_PREVIEW_CHARS = 300


def build_probe_body(model: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [{"role": "user", "content": PROBE_MESSAGE}],
    }


class Prober:
    """Sends test completions and judges each model by HTTP status alone.

    Exactly 200 counts as working; the completion text is never inspected.
    Failures are never retried: the outcome is recorded and the caller
    moves on to the next model.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def probe(self, channel: Channel, url: str, model: str) -> ProbeOutcome:
        """Probe one model on one channel and log the outcome."""
        log.debug("probe.start channel=%s model=%s url=%s", channel.label, model, url)
        start = time.monotonic()
        try:
            resp = await self._send(channel, url, model)
        except ProbeRequestError as exc:
            outcome = ProbeOutcome(
                model=model,
                success=False,
                error=exc.message,
                elapsed_ms=(time.monotonic() - start) * 1000,
            )
            log.warning(
                "probe.failed channel=%s model=%s error=%s",
                channel.label,
                model,
                exc.message,
                extra=_fields(channel, outcome),
            )
            return outcome

        elapsed_ms = (time.monotonic() - start) * 1000
        if resp.status_code == 200:
            outcome = ProbeOutcome(
                model=model,
                success=True,
                status_code=resp.status_code,
                elapsed_ms=elapsed_ms,
            )
            log.info(
                "probe.ok channel=%s model=%s status=%d latency=%.0fms",
                channel.label,
                model,
                resp.status_code,
                elapsed_ms,
                extra=_fields(channel, outcome),
            )
            return outcome

        outcome = ProbeOutcome(
            model=model,
            success=False,
            status_code=resp.status_code,
            body=resp.text[:_BODY_PREVIEW_CHARS],
            elapsed_ms=elapsed_ms,
        )
        log.warning(
            "probe.failed channel=%s model=%s status=%d body=%s",
            channel.label,
            model,
            resp.status_code,
            outcome.body,
            extra=_fields(channel, outcome),
        )
        return outcome

    async def _send(self, channel: Channel, url: str, model: str) -> httpx.Response:
        """POST the test completion; wraps request-building and transport errors."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {channel.key}",
        }
        try:
            return await self._client.post(
                url,
                json=build_probe_body(model),
                headers=headers,
                timeout=self._timeout,
            )
        except (httpx.InvalidURL, httpx.HTTPError) as exc:
            raise ProbeRequestError(
                f"{type(exc).__name__}: {exc}",
                context={"channel_id": channel.id, "model": model, "url": url},
            ) from exc


def _fields(channel: Channel, outcome: ProbeOutcome) -> dict[str, Any]:
    return {
        "channel_id": channel.id,
        "model": outcome.model,
        "outcome": "ok" if outcome.success else "failed",
        "status_code": outcome.status_code,
    }
