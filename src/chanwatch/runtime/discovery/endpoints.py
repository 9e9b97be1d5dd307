"""URL shapes for a channel's listing and chat-completion endpoints."""

from __future__ import annotations

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"

_VERSION_SEGMENT = "/v1"
_CHAT_SEGMENT = "/chat"
_COMPLETIONS_SEGMENT = "/completions"


def models_url(base_url: str) -> str:
    """Listing endpoint: the base URL with ``/v1/models`` appended verbatim."""
    return base_url + MODELS_PATH


def resolve_chat_url(base_url: str) -> str:
    """Derive the chat-completion URL for test requests from a base URL.

    A base URL that already contains ``/v1/chat/completions`` is used as
    is. Otherwise the missing tail is synthesized:

    >>> resolve_chat_url("http://x")
    'http://x/v1/chat/completions'
    >>> resolve_chat_url("http://x/v1")
    'http://x/v1/chat/completions'
    >>> resolve_chat_url("http://x/openai/chat")
    'http://x/openai/chat/completions'

    Only exact suffixes count: a trailing slash is not stripped.
    """
    if CHAT_COMPLETIONS_PATH in base_url:
        return base_url

    url = base_url
    if not url.endswith(_CHAT_SEGMENT):
        if not url.endswith(_VERSION_SEGMENT):
            url += _VERSION_SEGMENT
        url += _CHAT_SEGMENT
    return url + _COMPLETIONS_SEGMENT
