"""Channel and probe result models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

MODELS_DELIMITER = ","


class Channel(BaseModel):
    """An upstream OpenAI-compatible gateway registered in the channel store."""

    id: int
    name: str = ""
    base_url: str
    key: str = ""
    status: int = 0  # opaque to the prober
    models: str = ""  # stored "available models", comma-joined

    @property
    def label(self) -> str:
        return f"{self.name}(ID:{self.id})"

    @property
    def available_models(self) -> list[str]:
        if not self.models:
            return []
        return self.models.split(MODELS_DELIMITER)


class Discovery(BaseModel):
    """Candidate models for one channel in one cycle."""

    models: list[str] = Field(default_factory=list)
    source: Literal["endpoint", "fallback"] = "endpoint"


class ProbeOutcome(BaseModel):
    """Result of one test completion against one model."""

    model: str
    success: bool
    status_code: int | None = None  # None when the request never got a response
    body: str = ""  # truncated, only kept on failure
    error: str = ""
    elapsed_ms: float = 0.0


class ChannelResult(BaseModel):
    """Everything one channel produced during a cycle."""

    channel_id: int
    channel_name: str = ""
    source: Literal["endpoint", "fallback"] | None = None
    chat_url: str = ""
    outcomes: list[ProbeOutcome] = Field(default_factory=list)
    persisted: bool = False
    error: str = ""

    @property
    def working_models(self) -> list[str]:
        return [o.model for o in self.outcomes if o.success]

    @property
    def skipped(self) -> bool:
        """True when discovery failed and no model was probed."""
        return self.source is None


class CycleReport(BaseModel):
    """Summary of one pass over all channels."""

    cycle_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    fetched: int = 0
    excluded: int = 0
    channels: list[ChannelResult] = Field(default_factory=list)
    error: str = ""

    @property
    def aborted(self) -> bool:
        return bool(self.error)

    @property
    def probed(self) -> int:
        return sum(len(c.outcomes) for c in self.channels)

    @property
    def working(self) -> int:
        return sum(len(c.working_models) for c in self.channels)


def join_models(models: list[str]) -> str:
    """Serialize a working model list for the store's models column."""
    return MODELS_DELIMITER.join(models)
