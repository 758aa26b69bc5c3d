"""Bundler endpoint resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import get_network_config

API_KEY_QUERY_MARKER = "?api-key="


def resolve_bundler_url(
    chain_id: int,
    api_key: Optional[str] = None,
    bundler_url: Optional[str] = None,
    api_key_format: Optional[str] = None,
) -> str:
    """
    Build the bundler URL for a chain.

    ``bundler_url`` overrides the network table. The API key is appended as
    ``api_key_format + api_key`` when a format is given, directly when the
    base URL already ends in ``?api-key=``, and as ``?api-key=<key>``
    otherwise.

    Raises:
        ValueError: If neither an override nor the network table yields a URL.
    """
    base_url = bundler_url
    if not base_url:
        network = get_network_config(chain_id)
        if network is None or not network.bundler_url:
            raise ValueError(f"No bundler url provided for chain ID {chain_id}")
        base_url = network.bundler_url

    if not api_key:
        return base_url
    if api_key_format:
        return f"{base_url}{api_key_format}{api_key}"
    if base_url.endswith(API_KEY_QUERY_MARKER):
        return f"{base_url}{api_key}"
    return f"{base_url}{API_KEY_QUERY_MARKER}{api_key}"


@dataclass(frozen=True)
class BundlerConfig:
    chain_id: int
    url: str
    api_key: Optional[str] = None
    timeout_seconds: float = 30.0

    @classmethod
    def build(
        cls,
        chain_id: int,
        api_key: Optional[str] = None,
        bundler_url: Optional[str] = None,
        api_key_format: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ) -> "BundlerConfig":
        url = resolve_bundler_url(chain_id, api_key, bundler_url, api_key_format)
        return cls(chain_id=chain_id, url=url, api_key=api_key, timeout_seconds=timeout_seconds)
