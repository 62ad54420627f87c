"""Shared fixtures for Airseeker tests.

Configurations are built programmatically so that template, beacon and beacon
set IDs as well as airnode signatures are derived rather than hard-coded.
"""

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from airseeker.config import (
    AirseekerConfig,
    BeaconConfig,
    BeaconSetTrigger,
    BeaconTrigger,
    ChainConfig,
    ChainOptions,
    GatewayConfig,
    ProviderConfig,
    SponsorDataFeedUpdates,
    TemplateConfig,
)
from airseeker.models import SignedData
from airseeker.providers import Provider
from airseeker.state import StateStore
from airseeker.utils.encoding import (
    derive_beacon_id,
    derive_beacon_set_id,
    derive_template_id,
    signed_data_message_hash,
)

AIRNODE_PRIVATE_KEY = "0x" + "11" * 32
TEST_MNEMONIC = "test test test test test test test test test test test junk"
SPONSOR_ADDRESS = Web3.to_checksum_address("0x" + "ab" * 20)
DAPI_SERVER_ADDRESS = Web3.to_checksum_address("0x" + "cd" * 20)
ENDPOINT_ID = "0x" + "01" * 32
CHAIN_ID = "31337"


def encode_value(value: int) -> str:
    return Web3.to_hex(encode(["int256"], [value]))


def sign_data(private_key: str, template_id: str, timestamp: int, value: int) -> SignedData:
    """Sign a beacon value the way an airnode does."""
    encoded_value = encode_value(value)
    message = encode_defunct(primitive=signed_data_message_hash(template_id, timestamp, encoded_value))
    signature = Account.sign_message(message, private_key=private_key).signature
    return SignedData(timestamp=str(timestamp), encoded_value=encoded_value, signature=Web3.to_hex(signature))


def build_config(
    airnode: str,
    *,
    beacon_count: int = 3,
    fetch_interval: float = 10,
    update_interval: float = 10,
    beacon_triggers: bool = True,
    beacon_set_triggers: bool = True,
    chain_options: ChainOptions | None = None,
) -> AirseekerConfig:
    """Configuration with ``beacon_count`` beacons of one airnode and a beacon set of all of them."""
    templates = {}
    for index in range(beacon_count):
        parameters = f"0x{index + 1:02x}"
        template_id = derive_template_id(ENDPOINT_ID, parameters)
        templates[template_id] = TemplateConfig(template_id=template_id, endpoint_id=ENDPOINT_ID, parameters=parameters)

    beacons = {}
    for template_id in templates:
        beacon_id = derive_beacon_id(airnode, template_id)
        beacons[beacon_id] = BeaconConfig(
            beacon_id=beacon_id, airnode=airnode, template_id=template_id, fetch_interval=fetch_interval
        )

    beacon_ids = tuple(beacons)
    beacon_sets = {derive_beacon_set_id(beacon_ids): beacon_ids} if beacon_count >= 2 else {}

    updates = SponsorDataFeedUpdates(
        sponsor_address=SPONSOR_ADDRESS,
        beacons=(
            (BeaconTrigger(beacon_id=beacon_ids[0], deviation_threshold=0.01, heartbeat_interval=86400),)
            if beacon_triggers and beacon_ids
            else ()
        ),
        beacon_sets=tuple(
            BeaconSetTrigger(beacon_set_id=beacon_set_id, deviation_threshold=0.01, heartbeat_interval=86400)
            for beacon_set_id in (beacon_sets if beacon_set_triggers else {})
        ),
        update_interval=update_interval,
    )

    return AirseekerConfig(
        airseeker_wallet_mnemonic=TEST_MNEMONIC,
        beacons=beacons,
        beacon_sets=beacon_sets,
        chains={
            CHAIN_ID: ChainConfig(
                chain_id=CHAIN_ID,
                dapi_server_address=DAPI_SERVER_ADDRESS,
                providers={"local": ProviderConfig(url="http://127.0.0.1:8545")},
                options=chain_options or ChainOptions(),
            )
        },
        gateways={
            Web3.to_checksum_address(airnode): (
                GatewayConfig(api_key="key-1", url="https://gateway-1.example.com/signed-data"),
                GatewayConfig(api_key="key-2", url="https://gateway-2.example.com/signed-data/"),
            )
        },
        templates=templates,
        data_feed_updates={CHAIN_ID: {SPONSOR_ADDRESS: updates}},
    )


@pytest.fixture
def airnode_account():
    """Account whose key signs the test beacon data."""
    return Account.from_key(AIRNODE_PRIVATE_KEY)


@pytest.fixture
def config(airnode_account) -> AirseekerConfig:
    return build_config(airnode_account.address)


@pytest.fixture
def beacon_ids(config) -> list[str]:
    return list(config.beacons)


@pytest.fixture
def beacon_set_id(config) -> str:
    return next(iter(config.beacon_sets))


@pytest.fixture
def store(config) -> StateStore:
    return StateStore(config)


@pytest.fixture
def signer(config) -> Callable[[str, int, int], SignedData]:
    """Sign ``(beacon_id, timestamp, value)`` with the airnode key."""

    def _sign(beacon_id: str, timestamp: int, value: int) -> SignedData:
        return sign_data(AIRNODE_PRIVATE_KEY, config.beacons[beacon_id].template_id, timestamp, value)

    return _sign


@pytest.fixture
def mock_provider() -> Provider:
    """Provider with a mocked async web3 handle."""
    w3 = MagicMock()
    w3.eth = MagicMock()
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x12" * 32)
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.get_block = AsyncMock()
    return Provider(chain_id=CHAIN_ID, provider_name="local", rpc_provider=w3)
