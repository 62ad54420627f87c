#!/usr/bin/env python3
"""Data feed update coordination for Airseeker.

One update loop runs per (chain, provider, sponsor) group. Each cycle reads
the chain, compares the cached gateway values with the on-chain data feeds
and sends update transactions for the feeds that are stale or deviate
enough. Every call of a cycle shares the cycle's budget of one update
interval.
"""

import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Coroutine, Sequence

from eth_account.signers.local import LocalAccount

from .chain_reads import get_current_block_number, get_transaction_count, read_data_feed_with_id
from .check_condition import (
    check_onchain_data_freshness,
    check_signed_data_freshness,
    check_update_condition,
)
from .config import BeaconSetTrigger, BeaconTrigger, ChainConfig
from .constants import NO_DATA_FEEDS_EXIT_CODE, PROTOCOL_ID
from .feed_submitter import FeedSubmitter
from .gas_oracle import GasOracle, GasTarget
from .models import BeaconValue, DataFeedValue
from .providers import Provider
from .state import State, StateStore
from .utils.contract_utility import ContractUtility
from .utils.encoding import SignedDataIntegrityError, decode_beacon_value, shorten_address
from .utils.retry import prepare_go_options
from .utils.scheduler import IntervalLoop

# Get logger for this module
logger = logging.getLogger(__name__)


class CycleDeadlineExceeded(Exception):
    """The update cycle ran out of budget; remaining feeds are left for the next cycle."""


class BeaconValueUnavailable(Exception):
    """A beacon set member has neither a cached nor an on-chain value."""


@dataclass(frozen=True, slots=True)
class ProviderSponsorDataFeeds:
    """Data feeds one sponsor wallet keeps updated through one provider.

    Attributes:
        provider: Provider the updates are read and sent through
        chain: Chain configuration of the provider
        sponsor_address: Sponsor whose wallet pays for the updates
        update_interval: Seconds between update cycles, also the cycle budget
        beacons: Beacon triggers
        beacon_sets: Beacon set triggers
    """

    provider: Provider
    chain: ChainConfig
    sponsor_address: str
    update_interval: float
    beacons: tuple[BeaconTrigger, ...]
    beacon_sets: tuple[BeaconSetTrigger, ...]

    @property
    def log_prefix(self) -> str:
        return (
            f"[chain={self.provider.chain_id} provider={self.provider.provider_name} "
            f"sponsor={shorten_address(self.sponsor_address)}]"
        )


def group_data_feeds_by_provider_sponsor(state: State) -> list[ProviderSponsorDataFeeds]:
    """Build one update group per (chain, provider, sponsor) with anything to update."""
    config = state.config
    groups: list[ProviderSponsorDataFeeds] = []
    for chain_id, sponsors in config.data_feed_updates.items():
        for provider in state.providers.get(chain_id, []):
            for sponsor_address, updates in sponsors.items():
                if not updates.beacons and not updates.beacon_sets:
                    continue
                groups.append(
                    ProviderSponsorDataFeeds(
                        provider=provider,
                        chain=config.chains[chain_id],
                        sponsor_address=sponsor_address,
                        update_interval=updates.update_interval,
                        beacons=updates.beacons,
                        beacon_sets=updates.beacon_sets,
                    )
                )
    return groups


def initiate_data_feed_updates(store: StateStore) -> list[Coroutine]:
    """Create one update loop per provider and sponsor.

    Exits the process with NO_DATA_FEEDS_EXIT_CODE when there is nothing to update.
    """
    logger.debug("Initiating data feed updates")
    groups = group_data_feeds_by_provider_sponsor(store.get())
    if not groups:
        logger.error("No data feeds for processing found. Stopping.")
        sys.exit(NO_DATA_FEEDS_EXIT_CODE)

    logger.info(f"Updating data feeds for {len(groups)} provider and sponsor groups")
    return [update_data_feeds_in_loop(store, group) for group in groups]


async def update_data_feeds_in_loop(store: StateStore, group: ProviderSponsorDataFeeds) -> None:
    """Run update cycles for ``group`` every update interval until the stop flag is set."""
    loop = IntervalLoop(
        name=f"update-{group.provider.chain_id}-{group.provider.provider_name}-{group.sponsor_address}",
        interval=group.update_interval,
        iteration=partial(update_data_feeds, store, group),
        store=store,
    )
    await loop.run()


def median(values: Sequence[int]) -> int:
    """Median of integer values.

    An even count yields the mean of the two middle values, truncated toward
    zero.
    """
    if not values:
        raise ValueError("Median of an empty sequence")

    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]

    total = ordered[middle - 1] + ordered[middle]
    return total // 2 if total >= 0 else -(-total // 2)


def aggregate_timestamp(timestamps: Sequence[int]) -> int:
    """Floor of the mean timestamp."""
    if not timestamps:
        raise ValueError("Aggregate timestamp of an empty sequence")
    return sum(timestamps) // len(timestamps)


def get_sponsor_wallet(store: StateStore, sponsor_address: str) -> LocalAccount:
    """Sponsor wallet from the state cache, derived and cached on first use."""
    state = store.get()
    if (wallet := state.sponsor_wallets.get(sponsor_address)) is not None:
        return wallet

    utility = ContractUtility(state.config.airseeker_wallet_mnemonic, PROTOCOL_ID)
    wallet = utility.derive_sponsor_wallet(sponsor_address)
    store.set_sponsor_wallet(sponsor_address, wallet)
    logger.debug(f"Derived sponsor wallet {wallet.address} for sponsor {sponsor_address}")
    return wallet


class UpdateCycle:
    """
    One update cycle of a provider and sponsor group.

    Holds the cycle's start time, budget and local nonce. The nonce starts at
    the sponsor wallet's transaction count and grows by one for every
    transaction the provider accepted.
    """

    def __init__(self, store: StateStore, group: ProviderSponsorDataFeeds) -> None:
        self.store = store
        self.group = group
        self.provider = group.provider
        self.log_prefix = group.log_prefix

        self.start_time = time.monotonic()
        self.total_timeout = group.update_interval

        self.contract = ContractUtility.get_dapi_server_contract(
            self.provider.rpc_provider, group.chain.dapi_server_address
        )
        self.gas_oracle = GasOracle(self.provider, group.chain.options)
        self.nonce: int | None = None
        self.submitter: FeedSubmitter | None = None

    async def run(self) -> None:
        """Prepare the sponsor wallet and nonce, then process beacons and beacon sets in order."""
        block_number = await get_current_block_number(
            self.provider, prepare_go_options(self.start_time, self.total_timeout), self.log_prefix
        )
        if block_number is None:
            return

        wallet = get_sponsor_wallet(self.store, self.group.sponsor_address)
        transaction_count = await get_transaction_count(
            self.provider,
            wallet.address,
            block_number,
            prepare_go_options(self.start_time, self.total_timeout),
            self.log_prefix,
        )
        if transaction_count is None:
            return

        self.nonce = transaction_count
        self.submitter = FeedSubmitter(
            provider=self.provider,
            contract=self.contract,
            sponsor_wallet=wallet,
            gas_limit=self.group.chain.options.fulfillment_gas_limit,
            log_prefix=self.log_prefix,
        )

        try:
            for beacon_trigger in self.group.beacons:
                await self.update_beacon(beacon_trigger)
            for beacon_set_trigger in self.group.beacon_sets:
                await self.update_beacon_set(beacon_set_trigger)
        except CycleDeadlineExceeded as e:
            logger.warning(f"{self.log_prefix} Update cycle aborted: {e}")

    async def read_on_chain_value(self, data_feed_id: str) -> DataFeedValue:
        """On-chain value of a data feed.

        A read that fails for any reason but the deadline is reported as an
        uninitialized feed, which forces an update.

        Raises:
            CycleDeadlineExceeded: If the cycle budget ran out during the read
        """
        result = await read_data_feed_with_id(
            self.contract,
            data_feed_id,
            prepare_go_options(self.start_time, self.total_timeout),
            self.log_prefix,
        )
        if result.deadline_exceeded:
            raise CycleDeadlineExceeded(f"Deadline exceeded while reading data feed {data_feed_id}")
        if not result.success:
            logger.warning(f"{self.log_prefix} Treating data feed {data_feed_id} as not initialized")
            return DataFeedValue(value=0, timestamp=0)
        return result.data

    def should_update(
        self,
        data_feed_id: str,
        on_chain: DataFeedValue,
        value: int,
        timestamp: int,
        deviation_threshold: float,
        heartbeat_interval: int,
    ) -> bool:
        """Whether a candidate value should be written over the on-chain value."""
        if not check_signed_data_freshness(on_chain.timestamp, timestamp):
            logger.debug(
                f"{self.log_prefix} Skipping {data_feed_id}: candidate timestamp {timestamp} "
                f"is not newer than on-chain timestamp {on_chain.timestamp}"
            )
            return False

        if not on_chain.is_initialized:
            logger.info(f"{self.log_prefix} Data feed {data_feed_id} is not initialized, forcing update")
            return True

        if not check_onchain_data_freshness(on_chain.timestamp, heartbeat_interval):
            logger.info(
                f"{self.log_prefix} On-chain timestamp of {data_feed_id} is older than "
                f"the heartbeat interval of {heartbeat_interval}s, updating"
            )
            return True

        if check_update_condition(on_chain.value, deviation_threshold, value):
            logger.info(
                f"{self.log_prefix} Value of {data_feed_id} deviates from {on_chain.value} to {value} "
                f"by at least {deviation_threshold * 100}%, updating"
            )
            return True

        logger.debug(f"{self.log_prefix} No update needed for {data_feed_id}")
        return False

    def cached_beacon_value(self, beacon_id: str) -> BeaconValue | None:
        """Beacon value from the gateway cache, if present and decodable."""
        state = self.store.get()
        if (signed_data := state.beacon_values.get(beacon_id)) is None:
            return None

        beacon = state.config.beacons[beacon_id]
        try:
            value = decode_beacon_value(signed_data.encoded_value)
        except SignedDataIntegrityError as e:
            logger.warning(f"{self.log_prefix} Cached value of beacon {beacon_id} is invalid: {e}")
            return None

        return BeaconValue(
            beacon_id=beacon_id,
            airnode=beacon.airnode,
            template_id=beacon.template_id,
            timestamp=int(signed_data.timestamp),
            encoded_value=signed_data.encoded_value,
            signature=signed_data.signature,
            value=value,
        )

    async def submit(self, send: Callable[[int, GasTarget], Awaitable[str | None]]) -> None:
        """Price and send one update, consuming the nonce only if the provider accepted it."""
        gas_target = await self.gas_oracle.get_gas_target(self.start_time, self.total_timeout)
        if await send(self.nonce, gas_target) is not None:
            self.nonce += 1

    async def update_beacon(self, trigger: BeaconTrigger) -> None:
        """Update a single beacon from the gateway cache if its conditions are met."""
        beacon_id = trigger.beacon_id
        if (candidate := self.cached_beacon_value(beacon_id)) is None:
            logger.info(f"{self.log_prefix} No cached value for beacon {beacon_id}, skipping")
            return

        on_chain = await self.read_on_chain_value(beacon_id)
        if not self.should_update(
            beacon_id,
            on_chain,
            candidate.value,
            candidate.timestamp,
            trigger.deviation_threshold,
            trigger.heartbeat_interval,
        ):
            return

        await self.submit(
            lambda nonce, gas_target: self.submitter.submit_beacon_update(
                candidate, nonce, gas_target, self.start_time, self.total_timeout
            )
        )

    async def member_value(self, beacon_id: str) -> BeaconValue:
        """Value of a beacon set member, preferring the gateway cache over the chain.

        Raises:
            BeaconValueUnavailable: If neither source has a value
            CycleDeadlineExceeded: If the cycle budget ran out during the read
        """
        if (cached := self.cached_beacon_value(beacon_id)) is not None:
            return cached

        on_chain = await self.read_on_chain_value(beacon_id)
        if not on_chain.is_initialized:
            raise BeaconValueUnavailable(f"Beacon {beacon_id} has no cached or on-chain value")

        beacon = self.store.get().config.beacons[beacon_id]
        return BeaconValue(
            beacon_id=beacon_id,
            airnode=beacon.airnode,
            template_id=beacon.template_id,
            timestamp=on_chain.timestamp,
            encoded_value="0x",
            signature="0x",
            value=on_chain.value,
        )

    async def update_beacon_set(self, trigger: BeaconSetTrigger) -> None:
        """Aggregate the member values of a beacon set and update it if its conditions are met."""
        beacon_set_id = trigger.beacon_set_id
        member_ids = self.store.get().config.beacon_sets[beacon_set_id]

        results = await asyncio.gather(
            *(self.member_value(beacon_id) for beacon_id in member_ids),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, CycleDeadlineExceeded):
                raise result
        if errors := [result for result in results if isinstance(result, BaseException)]:
            for error in errors:
                logger.warning(f"{self.log_prefix} Skipping beacon set {beacon_set_id}: {error}")
            return

        members: list[BeaconValue] = list(results)
        if on_chain_members := [member.beacon_id for member in members if member.from_chain]:
            logger.info(
                f"{self.log_prefix} Using on-chain values for beacons {', '.join(on_chain_members)} "
                f"of beacon set {beacon_set_id}"
            )
        value = median([member.value for member in members])
        timestamp = aggregate_timestamp([member.timestamp for member in members])
        logger.debug(
            f"{self.log_prefix} Aggregated beacon set {beacon_set_id} to value {value} at timestamp {timestamp}"
        )

        on_chain = await self.read_on_chain_value(beacon_set_id)
        if not self.should_update(
            beacon_set_id,
            on_chain,
            value,
            timestamp,
            trigger.deviation_threshold,
            trigger.heartbeat_interval,
        ):
            return

        await self.submit(
            lambda nonce, gas_target: self.submitter.submit_beacon_set_update(
                beacon_set_id, members, nonce, gas_target, self.start_time, self.total_timeout
            )
        )


async def update_data_feeds(store: StateStore, group: ProviderSponsorDataFeeds) -> None:
    """Run one update cycle for ``group``."""
    logger.debug(f"{group.log_prefix} Starting update cycle")
    await UpdateCycle(store, group).run()
    logger.debug(f"{group.log_prefix} Update cycle finished")
