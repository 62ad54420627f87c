"""Unit tests for provider initialization."""

from web3 import AsyncWeb3

from airseeker.providers import initialize_providers

from conftest import CHAIN_ID


def test_providers_for_chains_with_triggers(config):
    providers = initialize_providers(config)

    assert list(providers) == [CHAIN_ID]
    assert [provider.provider_name for provider in providers[CHAIN_ID]] == ["local"]
    assert isinstance(providers[CHAIN_ID][0].rpc_provider, AsyncWeb3)
    assert str(providers[CHAIN_ID][0]) == f"Provider(chain={CHAIN_ID}, name=local)"
