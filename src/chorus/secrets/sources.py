# src/chorus/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Optional, Dict, Iterable, List, Union
import getpass
import logging
import os

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)


class SecretSource(Protocol):
    def get(self, service: str) -> Optional[str]: ...


class EnvSource:
    """
    `service` may be an explicit env var name ("GROQ_API_KEY") or a provider
    id ("groq"), in which case <ID>_API_KEY and <ID> are tried.
    """
    def get(self, service: str) -> Optional[str]:
        for key in (service, f"{service.upper()}_API_KEY", service.upper()):
            val = os.getenv(key)
            if val and val.strip():
                return val.strip()
        return None


class SystemKeyringSource:
    """OS keychain via `keyring`: service = provider id, account = one of a few common names."""
    def get(self, service: str) -> Optional[str]:
        try:
            cred = keyring.get_credential(service, None)
            if cred and cred.password:
                return cred.password.strip()
            for account in ("API_KEY", f"{service.upper()}_API_KEY", "default", getpass.getuser()):
                val = keyring.get_password(service, account)
                if val:
                    return val.strip()
        except KeyringError as e:
            logger.debug("Keyring lookup for %s failed: %s", service, e)
        return None


_ALLOWED_METHODS = {"env", "keyring"}


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    methods = [method] if isinstance(method, str) else list(method)
    norm: List[str] = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_secret_sources(method: Union[str, Iterable[str]]) -> List[SecretSource]:
    sources: List[SecretSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "keyring":
            sources.append(SystemKeyringSource())
    return sources


class SecretsResolver:
    """
    Resolve secrets using one or more methods in order.
    mapping: per-provider map of names -> service/env-key
      e.g. { "groq": { "api_key": "GROQ_API_KEY" }, "openrouter": { "api_key": "openrouter" } }
    """
    def __init__(self, method: Union[str, Iterable[str]], mapping: Optional[Dict[str, Dict[str, str]]] = None):
        self._sources = build_secret_sources(method)
        self._map = mapping or {}

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        service = self._map.get(provider, {}).get(name, provider)
        for src in self._sources:
            val = src.get(service)
            if val:
                return val
        return None
