"""Structured error taxonomy for chanwatch.

Every error carries a machine-readable code, a domain and a severity so
the orchestrator can decide how far a failure propagates: CRITICAL stops
the process, ERROR abandons the current cycle or channel, WARN only
affects a single model.

Error code format: CW_<DOMAIN>_<ISSUE>
Domains: CONFIG, STORE, DISCOVERY, PROBE
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    CRITICAL = "critical"  # process cannot continue
    ERROR = "error"  # cycle or channel abandoned
    WARN = "warn"  # single model affected


class ErrorDomain(StrEnum):
    CONFIG = "CONFIG"
    STORE = "STORE"
    DISCOVERY = "DISCOVERY"
    PROBE = "PROBE"


# ── Base exception ─────────────────────────────────────────────────────────


class ChanwatchError(Exception):
    """Base exception for all chanwatch errors."""

    code: str = "CW_UNKNOWN"
    domain: ErrorDomain = ErrorDomain.PROBE
    severity: Severity = Severity.ERROR

    def __init__(
        self,
        message: str = "",
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.code
        self.context: dict[str, Any] = context or {}
        super().__init__(self.message)

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
        }


# ── Config errors ──────────────────────────────────────────────────────────


class ConfigValidationError(ChanwatchError):
    code = "CW_CONFIG_INVALID"
    domain = ErrorDomain.CONFIG
    severity = Severity.CRITICAL


# ── Store errors ───────────────────────────────────────────────────────────


class StoreConnectionError(ChanwatchError):
    code = "CW_STORE_CONNECTION"
    domain = ErrorDomain.STORE
    severity = Severity.CRITICAL


class StoreQueryError(ChanwatchError):
    code = "CW_STORE_QUERY"
    domain = ErrorDomain.STORE
    severity = Severity.ERROR


# ── Discovery errors ───────────────────────────────────────────────────────


class DiscoveryError(ChanwatchError):
    """The channel's model listing answered, but not usefully.

    Raised for a non-200 listing response, an unparseable listing body or
    a base URL that cannot form a request. Aborts the channel for the
    current cycle; request failures never raise this (they fall back to
    the configured model list instead).
    """

    code = "CW_DISCOVERY_FAILED"
    domain = ErrorDomain.DISCOVERY
    severity = Severity.ERROR

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status_code = status_code
        if status_code is not None:
            self.context.setdefault("status_code", status_code)


# ── Probe errors ───────────────────────────────────────────────────────────


class ProbeRequestError(ChanwatchError):
    """A single model's test request could not be built or sent."""

    code = "CW_PROBE_REQUEST_FAILED"
    domain = ErrorDomain.PROBE
    severity = Severity.WARN
