"""RPC provider handles for the chains Airseeker updates."""

import logging
from dataclasses import dataclass

from web3 import AsyncWeb3

from .config import AirseekerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Provider:
    """One RPC endpoint of one chain."""

    chain_id: str
    provider_name: str
    rpc_provider: AsyncWeb3

    def __str__(self) -> str:
        return f"Provider(chain={self.chain_id}, name={self.provider_name})"


def initialize_provider(chain_id: str, provider_name: str, url: str) -> Provider:
    """Create an async web3 handle for ``url``."""
    return Provider(
        chain_id=chain_id,
        provider_name=provider_name,
        rpc_provider=AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url)),
    )


def initialize_providers(config: AirseekerConfig) -> dict[str, list[Provider]]:
    """Create providers for every chain that has data feed triggers.

    Returns:
        Providers keyed by chain ID
    """
    providers: dict[str, list[Provider]] = {}
    for chain_id in config.data_feed_updates:
        chain = config.chains[chain_id]
        providers[chain_id] = [
            initialize_provider(chain_id, name, provider.url)
            for name, provider in chain.providers.items()
        ]
        logger.info(f"Initialized {len(providers[chain_id])} providers for chain {chain_id}")
    return providers
