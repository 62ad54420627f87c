#!/usr/bin/env python3
"""Configuration management for Airseeker.

This module provides type-safe configuration dataclasses with validation for
Airseeker. Configuration is loaded from an ``airseeker.json`` file whose
``${NAME}`` placeholders are interpolated from secrets (environment variables
by default). Every cross reference is checked while loading, so the rest of
the service can trust that beacons, templates, gateways, chains and triggers
all resolve.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from string import Template
from typing import Any, ClassVar
from urllib.parse import urlparse

from web3 import Web3

from .constants import BASE_FEE_MULTIPLIER, GAS_LIMIT, PRIORITY_FEE_IN_WEI
from .utils.encoding import derive_beacon_id, derive_beacon_set_id, derive_template_id, shorten_address

# Get logger for this module
logger = logging.getLogger(__name__)


def _checksum(address: str, label: str) -> str:
    if not address:
        raise ValueError(f"{label} is required")
    if not Web3.is_address(address):
        raise ValueError(f"Invalid {label}: {address}")
    return Web3.to_checksum_address(address)


def _validate_http_url(url: str, label: str) -> None:
    if not url:
        raise ValueError(f"{label} URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Invalid {label} URL scheme: {parsed.scheme}. Expected http or https")


def _validate_bytes32(value: str, label: str) -> None:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) != 66:
        raise ValueError(f"Invalid {label}: {value}. Expected 0x prefixed 32 byte hex string")
    try:
        int(value, 16)
    except ValueError:
        raise ValueError(f"Invalid {label}: {value}. Must be hexadecimal") from None


def _require(data: Mapping[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise ValueError(f"Missing required configuration field: {path}.{key}")
    return data[key]


@dataclass(frozen=True, slots=True)
class TemplateConfig:
    """An Airnode request template."""

    template_id: str
    endpoint_id: str
    parameters: str

    def __post_init__(self) -> None:
        """Validate that the template ID matches its contents."""
        _validate_bytes32(self.template_id, "template ID")
        _validate_bytes32(self.endpoint_id, f"endpoint ID of template {self.template_id}")
        if not self.parameters.startswith("0x"):
            raise ValueError(f"Template {self.template_id} parameters must be 0x prefixed hex")

        derived = derive_template_id(self.endpoint_id, self.parameters)
        if derived.lower() != self.template_id.lower():
            raise ValueError(
                f"Invalid template ID {self.template_id}: endpoint ID and parameters hash to {derived}"
            )


@dataclass(frozen=True, slots=True)
class BeaconConfig:
    """A single data point sourced from one airnode/template pair.

    Attributes:
        beacon_id: Beacon ID, keccak256(airnode, templateId)
        airnode: Checksummed airnode address
        template_id: Template ID
        fetch_interval: Seconds between gateway fetches
    """

    beacon_id: str
    airnode: str
    template_id: str
    fetch_interval: float

    def __post_init__(self) -> None:
        """Validate beacon configuration."""
        _validate_bytes32(self.beacon_id, "beacon ID")
        object.__setattr__(self, "airnode", _checksum(self.airnode, f"airnode address of beacon {self.beacon_id}"))
        _validate_bytes32(self.template_id, f"template ID of beacon {self.beacon_id}")

        if self.fetch_interval <= 0:
            raise ValueError(f"Fetch interval must be positive, got {self.fetch_interval}")

        derived = derive_beacon_id(self.airnode, self.template_id)
        if derived.lower() != self.beacon_id.lower():
            raise ValueError(
                f"Invalid beacon ID {self.beacon_id}: airnode and template ID hash to {derived}"
            )


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """A signed data gateway endpoint."""

    api_key: str
    url: str

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("Gateway API key is required")
        _validate_http_url(self.url, "gateway")


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """An RPC endpoint of a chain."""

    url: str

    def __post_init__(self) -> None:
        _validate_http_url(self.url, "provider")


@dataclass(frozen=True, slots=True)
class PriorityFee:
    """An amount of gas price expressed in a denomination."""

    value: float
    unit: str = "wei"

    SUPPORTED_UNITS: ClassVar[set[str]] = {"wei", "kwei", "mwei", "gwei", "szabo", "finney", "ether"}

    def __post_init__(self) -> None:
        if self.unit not in self.SUPPORTED_UNITS:
            raise ValueError(
                f"Unsupported unit: {self.unit}. "
                f"Supported units: {', '.join(sorted(self.SUPPORTED_UNITS))}"
            )
        if self.value < 0:
            raise ValueError(f"Gas price value must be non-negative, got {self.value}")

    def to_wei(self) -> int:
        return int(Web3.to_wei(Decimal(str(self.value)), self.unit))


@dataclass(frozen=True, slots=True)
class LatestGasPriceOptions:
    """Tuning of the block percentile gas price estimate."""

    percentile: float = 60
    min_transaction_count: int = 20
    past_to_compare_in_blocks: int = 20
    max_deviation_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if not 0 <= self.percentile <= 100:
            raise ValueError(f"Percentile must be between 0 and 100, got {self.percentile}")
        if self.min_transaction_count < 0:
            raise ValueError(f"Minimum transaction count must be non-negative, got {self.min_transaction_count}")
        if self.past_to_compare_in_blocks <= 0:
            raise ValueError(f"Blocks to compare must be positive, got {self.past_to_compare_in_blocks}")
        if self.max_deviation_multiplier <= 0:
            raise ValueError(f"Max deviation multiplier must be positive, got {self.max_deviation_multiplier}")


@dataclass(frozen=True, slots=True)
class GasOracleConfig:
    """Gas oracle settings of a chain."""

    fallback_gas_price: PriorityFee = field(default_factory=lambda: PriorityFee(10, "gwei"))
    recommended_gas_price_multiplier: float = 1.0
    latest_gas_price_options: LatestGasPriceOptions = field(default_factory=LatestGasPriceOptions)

    def __post_init__(self) -> None:
        if self.recommended_gas_price_multiplier <= 0:
            raise ValueError(
                f"Recommended gas price multiplier must be positive, got {self.recommended_gas_price_multiplier}"
            )


@dataclass(frozen=True, slots=True)
class ChainOptions:
    """Transaction settings of a chain."""

    tx_type: str = "eip1559"
    fulfillment_gas_limit: int = GAS_LIMIT
    priority_fee: PriorityFee = field(default_factory=lambda: PriorityFee(PRIORITY_FEE_IN_WEI, "wei"))
    base_fee_multiplier: float = BASE_FEE_MULTIPLIER
    gas_oracle: GasOracleConfig = field(default_factory=GasOracleConfig)

    SUPPORTED_TX_TYPES: ClassVar[set[str]] = {"legacy", "eip1559"}

    def __post_init__(self) -> None:
        if self.tx_type not in self.SUPPORTED_TX_TYPES:
            raise ValueError(
                f"Unsupported transaction type: {self.tx_type}. "
                f"Supported types: {', '.join(sorted(self.SUPPORTED_TX_TYPES))}"
            )
        if self.fulfillment_gas_limit <= 0:
            raise ValueError(f"Fulfillment gas limit must be positive, got {self.fulfillment_gas_limit}")
        if self.base_fee_multiplier <= 0:
            raise ValueError(f"Base fee multiplier must be positive, got {self.base_fee_multiplier}")


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """A chain that data feeds are updated on.

    Attributes:
        chain_id: Chain ID as a decimal string
        dapi_server_address: Checksummed DapiServer contract address
        providers: RPC providers keyed by a human readable name
        options: Transaction and gas settings
    """

    chain_id: str
    dapi_server_address: str
    providers: dict[str, ProviderConfig]
    options: ChainOptions = field(default_factory=ChainOptions)

    def __post_init__(self) -> None:
        if not self.chain_id.isdigit():
            raise ValueError(f"Invalid chain ID: {self.chain_id}")
        object.__setattr__(
            self,
            "dapi_server_address",
            _checksum(self.dapi_server_address, f"DapiServer address of chain {self.chain_id}"),
        )
        if not self.providers:
            raise ValueError(f"Chain {self.chain_id} has no providers")


@dataclass(frozen=True, slots=True)
class BeaconTrigger:
    """Update policy of a beacon."""

    beacon_id: str
    deviation_threshold: float
    heartbeat_interval: int

    def __post_init__(self) -> None:
        if self.deviation_threshold < 0:
            raise ValueError(f"Deviation threshold must be non-negative, got {self.deviation_threshold}")
        if self.heartbeat_interval <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {self.heartbeat_interval}")


@dataclass(frozen=True, slots=True)
class BeaconSetTrigger:
    """Update policy of a beacon set."""

    beacon_set_id: str
    deviation_threshold: float
    heartbeat_interval: int

    def __post_init__(self) -> None:
        if self.deviation_threshold < 0:
            raise ValueError(f"Deviation threshold must be non-negative, got {self.deviation_threshold}")
        if self.heartbeat_interval <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {self.heartbeat_interval}")


@dataclass(frozen=True, slots=True)
class SponsorDataFeedUpdates:
    """Data feeds paid for by one sponsor on one chain."""

    sponsor_address: str
    beacons: tuple[BeaconTrigger, ...]
    beacon_sets: tuple[BeaconSetTrigger, ...]
    update_interval: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "sponsor_address", _checksum(self.sponsor_address, "sponsor address"))
        if self.update_interval <= 0:
            raise ValueError(f"Update interval must be positive, got {self.update_interval}")


class SecretTemplate(Template):
    """Template that substitutes only the braced ``${NAME}`` form.

    Bare ``$NAME`` and stray ``$`` characters are left untouched.
    """

    pattern = r"""
    \$(?:
        (?P<escaped>(?!))
        | (?P<named>(?!))
        | {(?P<braced>[_a-z][_a-z0-9]*)}
        | (?P<invalid>(?!))
    )
    """


def interpolate_secrets(raw_config: str, secrets: Mapping[str, str]) -> str:
    """Replace ``${NAME}`` placeholders in the raw configuration.

    Raises:
        ValueError: If a referenced secret is missing
    """
    try:
        return SecretTemplate(raw_config).substitute(secrets)
    except KeyError as e:
        raise ValueError(f"Missing secret referenced by configuration: {e.args[0]}") from None


@dataclass(frozen=True, slots=True)
class AirseekerConfig:
    """Main configuration for Airseeker.

    Attributes:
        airseeker_wallet_mnemonic: Mnemonic that sponsor wallets are derived from
        beacons: Beacons keyed by beacon ID
        beacon_sets: Member beacon IDs keyed by beacon set ID
        chains: Chains keyed by chain ID
        gateways: Signed data gateways keyed by airnode address
        templates: Templates keyed by template ID
        data_feed_updates: Sponsor triggers keyed by chain ID and sponsor address
    """

    airseeker_wallet_mnemonic: str
    beacons: dict[str, BeaconConfig]
    beacon_sets: dict[str, tuple[str, ...]]
    chains: dict[str, ChainConfig]
    gateways: dict[str, tuple[GatewayConfig, ...]]
    templates: dict[str, TemplateConfig]
    data_feed_updates: dict[str, dict[str, SponsorDataFeedUpdates]]

    VALID_MNEMONIC_LENGTHS: ClassVar[set[int]] = {12, 15, 18, 21, 24}

    def __post_init__(self) -> None:
        """Validate that every reference in the configuration resolves."""
        if len(self.airseeker_wallet_mnemonic.split()) not in self.VALID_MNEMONIC_LENGTHS:
            raise ValueError("Invalid Airseeker wallet mnemonic. Expected 12, 15, 18, 21 or 24 words")

        for beacon_id, beacon in self.beacons.items():
            if beacon_id != beacon.beacon_id:
                raise ValueError(f"Beacon key {beacon_id} does not match beacon ID {beacon.beacon_id}")
            if beacon.template_id not in self.templates:
                raise ValueError(f"Template {beacon.template_id} of beacon {beacon_id} is not configured")
            if not self.gateways.get(beacon.airnode):
                raise ValueError(f"No gateways configured for airnode {beacon.airnode} of beacon {beacon_id}")

        for beacon_set_id, beacon_ids in self.beacon_sets.items():
            _validate_bytes32(beacon_set_id, "beacon set ID")
            if len(beacon_ids) < 2:
                raise ValueError(f"Beacon set {beacon_set_id} must have at least two beacons")
            for beacon_id in beacon_ids:
                if beacon_id not in self.beacons:
                    raise ValueError(f"Beacon {beacon_id} of beacon set {beacon_set_id} is not configured")
            derived_id = derive_beacon_set_id(beacon_ids)
            if derived_id.lower() != beacon_set_id.lower():
                raise ValueError(
                    f"Beacon set ID {beacon_set_id} does not match its beacons, expected {derived_id}"
                )

        for chain_id, updates_per_sponsor in self.data_feed_updates.items():
            if chain_id not in self.chains:
                raise ValueError(f"Triggers reference chain {chain_id} which is not configured")
            for sponsor, updates in updates_per_sponsor.items():
                for trigger in updates.beacons:
                    if trigger.beacon_id not in self.beacons:
                        raise ValueError(
                            f"Trigger for sponsor {sponsor} on chain {chain_id} "
                            f"references unknown beacon {trigger.beacon_id}"
                        )
                for set_trigger in updates.beacon_sets:
                    if set_trigger.beacon_set_id not in self.beacon_sets:
                        raise ValueError(
                            f"Trigger for sponsor {sponsor} on chain {chain_id} "
                            f"references unknown beacon set {set_trigger.beacon_set_id}"
                        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AirseekerConfig":
        """Build the configuration from parsed ``airseeker.json`` contents.

        Raises:
            ValueError: If a field is missing, has the wrong type or is invalid
        """
        try:
            return cls._parse(data)
        except (TypeError, KeyError, AttributeError) as e:
            raise ValueError(f"Malformed configuration: {e!r}") from e

    @classmethod
    def _parse(cls, data: Mapping[str, Any]) -> "AirseekerConfig":
        templates = {
            template_id: TemplateConfig(
                template_id=template_id,
                endpoint_id=_require(template, "endpointId", f"templates.{template_id}"),
                parameters=_require(template, "parameters", f"templates.{template_id}"),
            )
            for template_id, template in _require(data, "templates", "config").items()
        }

        beacons = {
            beacon_id: BeaconConfig(
                beacon_id=beacon_id,
                airnode=_require(beacon, "airnode", f"beacons.{beacon_id}"),
                template_id=_require(beacon, "templateId", f"beacons.{beacon_id}"),
                fetch_interval=_require(beacon, "fetchInterval", f"beacons.{beacon_id}"),
            )
            for beacon_id, beacon in _require(data, "beacons", "config").items()
        }

        beacon_sets = {
            beacon_set_id: tuple(beacon_ids)
            for beacon_set_id, beacon_ids in data.get("beaconSets", {}).items()
        }

        chains = {
            chain_id: cls._parse_chain(chain_id, chain)
            for chain_id, chain in _require(data, "chains", "config").items()
        }

        gateways = {
            Web3.to_checksum_address(airnode): tuple(
                GatewayConfig(
                    api_key=_require(gateway, "apiKey", f"gateways.{airnode}"),
                    url=_require(gateway, "url", f"gateways.{airnode}"),
                )
                for gateway in airnode_gateways
            )
            for airnode, airnode_gateways in _require(data, "gateways", "config").items()
        }

        triggers = _require(data, "triggers", "config")
        data_feed_updates: dict[str, dict[str, SponsorDataFeedUpdates]] = {}
        for chain_id, updates_per_sponsor in _require(triggers, "dataFeedUpdates", "triggers").items():
            data_feed_updates[chain_id] = {}
            for sponsor, updates in updates_per_sponsor.items():
                path = f"triggers.dataFeedUpdates.{chain_id}.{sponsor}"
                sponsor_updates = SponsorDataFeedUpdates(
                    sponsor_address=sponsor,
                    beacons=tuple(
                        BeaconTrigger(
                            beacon_id=_require(trigger, "beaconId", path),
                            deviation_threshold=_require(trigger, "deviationThreshold", path),
                            heartbeat_interval=_require(trigger, "heartbeatInterval", path),
                        )
                        for trigger in updates.get("beacons", [])
                    ),
                    beacon_sets=tuple(
                        BeaconSetTrigger(
                            beacon_set_id=_require(trigger, "beaconSetId", path),
                            deviation_threshold=_require(trigger, "deviationThreshold", path),
                            heartbeat_interval=_require(trigger, "heartbeatInterval", path),
                        )
                        for trigger in updates.get("beaconSets", [])
                    ),
                    update_interval=_require(updates, "updateInterval", path),
                )
                data_feed_updates[chain_id][sponsor_updates.sponsor_address] = sponsor_updates

        return cls(
            airseeker_wallet_mnemonic=_require(data, "airseekerWalletMnemonic", "config"),
            beacons=beacons,
            beacon_sets=beacon_sets,
            chains=chains,
            gateways=gateways,
            templates=templates,
            data_feed_updates=data_feed_updates,
        )

    @staticmethod
    def _parse_chain(chain_id: str, chain: Mapping[str, Any]) -> ChainConfig:
        path = f"chains.{chain_id}"
        contracts = _require(chain, "contracts", path)
        providers = {
            name: ProviderConfig(url=_require(provider, "url", f"{path}.providers.{name}"))
            for name, provider in _require(chain, "providers", path).items()
        }

        options = chain.get("options", {})
        gas_oracle = options.get("gasOracle", {})
        latest_options = gas_oracle.get("latestGasPriceOptions", {})
        fallback = gas_oracle.get("fallbackGasPrice")
        priority_fee = options.get("priorityFee")

        return ChainConfig(
            chain_id=chain_id,
            dapi_server_address=_require(contracts, "DapiServer", f"{path}.contracts"),
            providers=providers,
            options=ChainOptions(
                tx_type=options.get("txType", "eip1559"),
                fulfillment_gas_limit=options.get("fulfillmentGasLimit", GAS_LIMIT),
                priority_fee=(
                    PriorityFee(
                        _require(priority_fee, "value", f"{path}.options.priorityFee"),
                        priority_fee.get("unit", "wei"),
                    )
                    if priority_fee
                    else PriorityFee(PRIORITY_FEE_IN_WEI, "wei")
                ),
                base_fee_multiplier=options.get("baseFeeMultiplier", BASE_FEE_MULTIPLIER),
                gas_oracle=GasOracleConfig(
                    fallback_gas_price=(
                        PriorityFee(
                            _require(fallback, "value", f"{path}.options.gasOracle.fallbackGasPrice"),
                            fallback.get("unit", "wei"),
                        )
                        if fallback
                        else PriorityFee(10, "gwei")
                    ),
                    recommended_gas_price_multiplier=gas_oracle.get("recommendedGasPriceMultiplier", 1.0),
                    latest_gas_price_options=LatestGasPriceOptions(
                        percentile=latest_options.get("percentile", 60),
                        min_transaction_count=latest_options.get("minTransactionCount", 20),
                        past_to_compare_in_blocks=latest_options.get("pastToCompareInBlocks", 20),
                        max_deviation_multiplier=latest_options.get("maxDeviationMultiplier", 2.0),
                    ),
                ),
            ),
        )

    @classmethod
    def from_file(cls, path: str | Path, secrets: Mapping[str, str] | None = None) -> "AirseekerConfig":
        """Load configuration from ``airseeker.json``.

        Args:
            path: Path of the configuration file
            secrets: Values for ``${NAME}`` placeholders (defaults to the environment)

        Returns:
            AirseekerConfig instance with loaded values

        Raises:
            ValueError: If the file is missing, not valid JSON or fails validation
        """
        config_path = Path(path)
        try:
            raw = config_path.read_text()
        except OSError as e:
            raise ValueError(f"Unable to read configuration file {config_path}: {e}") from e

        interpolated = interpolate_secrets(raw, os.environ if secrets is None else secrets)
        try:
            data = json.loads(interpolated)
        except json.JSONDecodeError as e:
            raise ValueError(f"Configuration file {config_path} is not valid JSON: {e}") from e

        return cls.from_dict(data)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Airseeker Configuration")
        logger.info("=" * 60)

        logger.info(f"Beacons: {len(self.beacons)}")
        for beacon_id, beacon in self.beacons.items():
            logger.info(
                f"  {beacon_id[:10]}... airnode={shorten_address(beacon.airnode)} "
                f"fetch interval={beacon.fetch_interval}s"
            )
        logger.info(f"Beacon sets: {len(self.beacon_sets)}")

        logger.info("Chains:")
        for chain_id, chain in self.chains.items():
            logger.info(f"  Chain {chain_id}: DapiServer {chain.dapi_server_address}")
            logger.info(f"    Providers: {', '.join(chain.providers)}")
            logger.info(f"    Transaction type: {chain.options.tx_type}")

        logger.info("Data feed updates:")
        for chain_id, updates_per_sponsor in self.data_feed_updates.items():
            for sponsor, updates in updates_per_sponsor.items():
                logger.info(
                    f"  Chain {chain_id}, sponsor {shorten_address(sponsor)}: "
                    f"{len(updates.beacons)} beacons, {len(updates.beacon_sets)} beacon sets "
                    f"every {updates.update_interval}s"
                )

        logger.info("Wallet mnemonic: [CONFIGURED]")
        logger.info("=" * 60)
