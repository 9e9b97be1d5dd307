"""Deny-list filtering of channels before a cycle."""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable

from chanwatch.models.channel import Channel

log = logging.getLogger(__name__)


def filter_excluded(
    channels: Iterable[Channel],
    excluded_ids: Collection[int],
) -> list[Channel]:
    """Drop channels whose id is excluded, keeping the store's order."""
    kept: list[Channel] = []
    for channel in channels:
        if channel.id in excluded_ids:
            log.info(
                "exclusion.skipped channel=%s",
                channel.label,
                extra={"channel_id": channel.id},
            )
            continue
        kept.append(channel)
    return kept
