"""One probing pass over every channel in the store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Collection
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chanwatch.errors import DiscoveryError, StoreQueryError
from chanwatch.models.channel import Channel, ChannelResult, CycleReport
from chanwatch.runtime.discovery.endpoints import resolve_chat_url
from chanwatch.runtime.exclusion import filter_excluded
from chanwatch.runtime.logging_config import ctx_channel_id, ctx_cycle_id

if TYPE_CHECKING:
    from chanwatch.runtime.discovery.discoverer import ModelDiscoverer
    from chanwatch.runtime.prober import Prober
    from chanwatch.substrate.channel_store import ChannelStore

log = logging.getLogger(__name__)


class ChannelCycleOrchestrator:
    """Runs discovery, probing and persistence for each channel in turn.

    Channels are handled strictly one after another, in store order, and a
    failure in one channel never reaches the next. The working model list
    is written once per channel, after its last probe.
    """

    def __init__(
        self,
        store: ChannelStore,
        discoverer: ModelDiscoverer,
        prober: Prober,
        excluded_ids: Collection[int] = frozenset(),
    ) -> None:
        self._store = store
        self._discoverer = discoverer
        self._prober = prober
        self._excluded = frozenset(excluded_ids)

    async def run_cycle(self) -> CycleReport:
        """Fetch, filter and probe every channel; persist each result."""
        report = CycleReport(cycle_id=uuid.uuid4().hex[:12])
        token = ctx_cycle_id.set(report.cycle_id)
        try:
            log.info("cycle.started")
            try:
                channels = await self._store.fetch_channels()
            except StoreQueryError as exc:
                report.error = exc.message
                log.error("cycle.fetch_failed error=%s", exc.message)
                return report

            report.fetched = len(channels)
            todo = filter_excluded(channels, self._excluded)
            report.excluded = report.fetched - len(todo)
            log.info(
                "cycle.channels fetched=%d to_probe=%d",
                report.fetched,
                len(todo),
                extra={"count": len(todo)},
            )

            for channel in todo:
                try:
                    result = await self.run_channel(channel)
                except Exception as exc:
                    log.exception("cycle.channel_crashed channel=%s", channel.label)
                    result = ChannelResult(
                        channel_id=channel.id,
                        channel_name=channel.name,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                report.channels.append(result)

            return report
        finally:
            report.finished_at = datetime.now(UTC)
            log.info(
                "cycle.finished channels=%d probed=%d working=%d",
                len(report.channels),
                report.probed,
                report.working,
            )
            ctx_cycle_id.reset(token)

    async def run_channel(self, channel: Channel) -> ChannelResult:
        """Probe one channel and persist its working models.

        Nothing is written when discovery failed, so the stored list from
        the previous cycle stays in place.
        """
        token = ctx_channel_id.set(str(channel.id))
        try:
            result = await self.probe_channel(channel)
            if result.skipped:
                return result

            working = result.working_models
            try:
                await self._store.update_models(channel.id, working)
            except StoreQueryError as exc:
                result.error = exc.message
                log.error(
                    "channel.persist_failed channel=%s error=%s",
                    channel.label,
                    exc.message,
                    extra={"channel_id": channel.id},
                )
                return result

            result.persisted = True
            log.info(
                "channel.persisted channel=%s models=%s",
                channel.label,
                working,
                extra={"channel_id": channel.id, "count": len(working)},
            )
            return result
        finally:
            ctx_channel_id.reset(token)

    async def probe_channel(self, channel: Channel) -> ChannelResult:
        """Discover and probe one channel without touching the store."""
        result = ChannelResult(channel_id=channel.id, channel_name=channel.name)
        log.info("channel.started channel=%s", channel.label, extra={"channel_id": channel.id})

        try:
            discovery = await self._discoverer.discover(channel)
        except DiscoveryError as exc:
            result.error = exc.message
            log.error(
                "channel.discovery_failed channel=%s error=%s",
                channel.label,
                exc.message,
                extra={"channel_id": channel.id, "status_code": exc.status_code},
            )
            return result

        result.source = discovery.source
        result.chat_url = resolve_chat_url(channel.base_url)
        for model in discovery.models:
            outcome = await self._prober.probe(channel, result.chat_url, model)
            result.outcomes.append(outcome)

        return result
