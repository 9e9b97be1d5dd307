"""Candidate model discovery for a single channel."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from chanwatch.errors import DiscoveryError
from chanwatch.models.channel import Channel, Discovery
from chanwatch.runtime.discovery.endpoints import models_url

log = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 300


def parse_model_listing(data: Any) -> list[str]:
    """Extract model ids, in response order, from an OpenAI-style listing.

    Expects ``{"data": [{"id": "..."}, ...]}``. Duplicates are kept. A
    missing or null ``data`` is an empty listing.
    """
    if not isinstance(data, dict):
        raise DiscoveryError("model listing is not a JSON object")
    entries = data.get("data")
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise DiscoveryError("model listing 'data' is not a list")

    ids: list[str] = []
    for entry in entries:
        mid = entry.get("id") if isinstance(entry, dict) else None
        if not isinstance(mid, str):
            raise DiscoveryError(f"model listing entry without string id: {entry!r}")
        ids.append(mid)
    return ids


class ModelDiscoverer:
    """Asks a channel which models it serves, falling back to a static list.

    A request failure (refused connection, DNS error, timeout, redirect
    loop) means the listing endpoint is unavailable, not that the channel
    is dead, so the configured fallback list is probed instead. A listing
    that answers with anything but 200, or with a body that can't be
    parsed, raises DiscoveryError and the channel is skipped for the cycle.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        fallback_models: list[str] | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        self._client = client
        self._fallback = list(fallback_models or [])
        self._timeout = timeout

    async def discover(self, channel: Channel) -> Discovery:
        url = models_url(channel.base_url)
        headers = {"Authorization": f"Bearer {channel.key}"}
        kwargs: dict[str, Any] = {"headers": headers}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout

        try:
            resp = await self._client.get(url, **kwargs)
        except httpx.InvalidURL as exc:
            raise DiscoveryError(
                f"cannot build listing request for {url}: {exc}",
                context={"channel_id": channel.id, "url": url},
            ) from exc
        except httpx.RequestError as exc:
            log.warning(
                "discovery.fallback channel=%s error=%s models=%d",
                channel.label,
                str(exc) or type(exc).__name__,
                len(self._fallback),
                extra={"channel_id": channel.id, "source": "fallback"},
            )
            return Discovery(models=list(self._fallback), source="fallback")

        if resp.status_code != 200:
            raise DiscoveryError(
                f"model listing returned status {resp.status_code}:"
                f" {resp.text[:_BODY_PREVIEW_CHARS]}",
                status_code=resp.status_code,
                context={"channel_id": channel.id, "url": url},
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise DiscoveryError(
                f"model listing is not valid JSON: {exc}",
                context={"channel_id": channel.id, "url": url},
            ) from exc

        models = parse_model_listing(data)
        log.info(
            "discovery.listed channel=%s models=%d",
            channel.label,
            len(models),
            extra={"channel_id": channel.id, "source": "endpoint", "count": len(models)},
        )
        return Discovery(models=models, source="endpoint")
