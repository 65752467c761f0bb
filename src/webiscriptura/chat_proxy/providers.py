"""Upstream provider resolution (standard OpenAI-compatible vs. Azure OpenAI)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from .config import AZURE_API_VERSION, DEFAULT_MODEL

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com"

AZURE_BASE_URL_ENV = "AZURE_OPENAI_API_BASE_URL"
AZURE_DEPLOYMENT_ENV = "AZURE_OPENAI_DEPLOYMENT"
AZURE_API_KEY_ENV = "AZURE_OPENAI_API_KEY"
OPENAI_BASE_URL_ENV = "OPENAI_API_BASE_URL"
OPENAI_API_KEY_ENV = "OPENAI_API_KEY"


def _strip_trailing_slash(url: str) -> str:
    """Drop exactly one trailing slash."""
    return url[:-1] if url.endswith("/") else url


def _auth_headers(api_key: str) -> dict[str, str]:
    # Bearer for OpenAI-style backends, api-key for Azure
    return {"Authorization": f"Bearer {api_key}", "api-key": api_key}


@dataclass(frozen=True)
class StandardProvider:
    base_url: str
    api_key: str
    model: str

    kind = "openai"

    @property
    def endpoint_url(self) -> str:
        return f"{_strip_trailing_slash(self.base_url)}/v1/chat/completions"

    def headers(self) -> dict[str, str]:
        return _auth_headers(self.api_key)


@dataclass(frozen=True)
class AzureProvider:
    base_url: str
    deployment: str
    api_key: str
    api_version: str = AZURE_API_VERSION

    kind = "azure"

    @property
    def model(self) -> str:
        # Azure picks the model from the deployment name
        return ""

    @property
    def endpoint_url(self) -> str:
        base = _strip_trailing_slash(self.base_url)
        return (
            f"{base}/openai/deployments/{self.deployment}/chat/completions"
            f"?api-version={self.api_version}"
        )

    def headers(self) -> dict[str, str]:
        return _auth_headers(self.api_key)


ProviderConfig = Union[StandardProvider, AzureProvider]


def resolve_provider(
    env: Optional[Mapping[str, str]] = None,
    *,
    default_model: str = DEFAULT_MODEL,
    azure_api_version: str = AZURE_API_VERSION,
) -> ProviderConfig:
    """Pick the upstream provider from environment variables.

    A non-empty ``AZURE_OPENAI_API_BASE_URL`` selects Azure; anything else
    falls back to the standard OpenAI-compatible endpoint.
    """

    env = os.environ if env is None else env
    azure_base = env.get(AZURE_BASE_URL_ENV) or ""
    if azure_base:
        return AzureProvider(
            base_url=azure_base,
            deployment=env.get(AZURE_DEPLOYMENT_ENV) or "",
            api_key=env.get(AZURE_API_KEY_ENV) or "",
            api_version=azure_api_version,
        )
    return StandardProvider(
        base_url=env.get(OPENAI_BASE_URL_ENV) or DEFAULT_OPENAI_BASE_URL,
        api_key=env.get(OPENAI_API_KEY_ENV) or "",
        model=default_model,
    )
