"""Model discovery and endpoint resolution for OpenAI-compatible channels."""

from chanwatch.runtime.discovery.discoverer import ModelDiscoverer, parse_model_listing
from chanwatch.runtime.discovery.endpoints import models_url, resolve_chat_url

__all__ = [
    "ModelDiscoverer",
    "models_url",
    "parse_model_listing",
    "resolve_chat_url",
]
