"""Credential providers for the generation service.

A provider is a zero-argument callable returning a key or ``None``. The
analysis invoker receives an ordered list of providers at construction time
and the first non-empty value wins.
"""

import logging
import os
from collections.abc import Callable
from collections.abc import Sequence

from finsight.core.config import Settings
from finsight.core.config import settings as default_settings
from finsight.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], str | None]

# Looked up in this exact order; names are fixed, never computed.
CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "FINSIGHT_API_KEY",
    "OPENROUTER_API_KEY",
    "OPENAI_API_KEY",
)


def env_var_provider(name: str) -> CredentialProvider:
    def _provide() -> str | None:
        return os.environ.get(name) or None

    _provide.__name__ = f"env:{name}"
    return _provide


def settings_provider(config: Settings | None = None) -> CredentialProvider:
    def _provide() -> str | None:
        return (config or default_settings).openrouter_api_key or None

    _provide.__name__ = "settings"
    return _provide


def default_providers(config: Settings | None = None) -> list[CredentialProvider]:
    """Environment variables first, then the settings object (which also reads .env)."""
    return [*(env_var_provider(name) for name in CREDENTIAL_ENV_VARS), settings_provider(config)]


def resolve_credential(providers: Sequence[CredentialProvider], explicit_key: str | None = None) -> str:
    """Return the first non-empty credential, starting with the caller-supplied key.

    Raises:
        AuthenticationError: if neither the explicit key nor any provider yields a value.
    """
    if explicit_key and explicit_key.strip():
        logger.debug("Using caller-supplied API key")
        return explicit_key.strip()

    for provider in providers:
        value = provider()
        if value and value.strip():
            logger.debug("API key resolved from provider %s", getattr(provider, "__name__", repr(provider)))
            return value.strip()

    logger.warning("No API key found in %d configured providers", len(providers))
    raise AuthenticationError("No API key configured for the generation service.")
