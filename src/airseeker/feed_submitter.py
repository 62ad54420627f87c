#!/usr/bin/env python3
"""Data feed update submission for Airseeker.

This module builds, signs and sends beacon and beacon set update transactions
to the DapiServer contract. Transactions are signed locally with the sponsor
wallet and sent raw; the caller owns the nonce and the gas pricing.
"""

import logging
from typing import Any, Sequence

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import AsyncContract
from web3.contract.async_contract import AsyncContractFunction
from web3.types import HexBytes, TxParams

from .gas_oracle import GasTarget
from .models import BeaconValue
from .providers import Provider
from .utils.retry import GoOptions, calculate_timeout, go

logger = logging.getLogger(__name__)


class FeedSubmitter:
    """Handles update transactions of one sponsor wallet on one provider."""

    def __init__(
        self,
        provider: Provider,
        contract: AsyncContract,
        sponsor_wallet: LocalAccount,
        gas_limit: int,
        log_prefix: str = ""
    ) -> None:
        """
        Initialize the FeedSubmitter.

        Args:
            provider: Provider the transactions are sent through
            contract: DapiServer contract bound to the provider
            sponsor_wallet: Wallet that signs and pays for the updates
            gas_limit: Fixed gas limit of every update transaction
            log_prefix: Context prepended to log lines
        """
        self.provider = provider
        self.contract = contract
        self.sponsor_wallet = sponsor_wallet
        self.gas_limit = gas_limit
        self.log_prefix = log_prefix

    async def submit_beacon_update(
        self,
        beacon: BeaconValue,
        nonce: int,
        gas_target: GasTarget,
        start_time: float,
        total_timeout: float,
    ) -> str | None:
        """
        Submit a single beacon update with its signed data.

        Args:
            beacon: Signed beacon value from the gateway cache
            nonce: Nonce to send the transaction with
            gas_target: Gas pricing of the transaction
            start_time: Monotonic start time of the update cycle
            total_timeout: Total budget of the update cycle in seconds

        Returns:
            Transaction hash, or None if the submission failed
        """
        logger.info(
            f"{self.log_prefix} Updating beacon {beacon.beacon_id} to value {beacon.value} "
            f"at timestamp {beacon.timestamp} with nonce {nonce}"
        )
        function_call = self.contract.functions.updateBeaconWithSignedData(
            Web3.to_checksum_address(beacon.airnode),
            beacon.template_id,
            beacon.timestamp,
            Web3.to_bytes(hexstr=beacon.encoded_value),
            Web3.to_bytes(hexstr=beacon.signature),
        )
        return await self._submit(function_call, nonce, gas_target, start_time, total_timeout)

    async def submit_beacon_set_update(
        self,
        beacon_set_id: str,
        beacons: Sequence[BeaconValue],
        nonce: int,
        gas_target: GasTarget,
        start_time: float,
        total_timeout: float,
    ) -> str | None:
        """
        Submit a beacon set update.

        Members read from chain are sent with empty data and signature, which
        makes the contract reuse their stored values.

        Returns:
            Transaction hash, or None if the submission failed
        """
        logger.info(
            f"{self.log_prefix} Updating beacon set {beacon_set_id} from {len(beacons)} beacons with nonce {nonce}"
        )
        function_call = self.contract.functions.updateBeaconSetWithSignedData(
            [Web3.to_checksum_address(beacon.airnode) for beacon in beacons],
            [beacon.template_id for beacon in beacons],
            [beacon.timestamp for beacon in beacons],
            [Web3.to_bytes(hexstr=beacon.encoded_value) for beacon in beacons],
            [Web3.to_bytes(hexstr=beacon.signature) for beacon in beacons],
        )
        return await self._submit(function_call, nonce, gas_target, start_time, total_timeout)

    async def _submit(
        self,
        function_call: AsyncContractFunction,
        nonce: int,
        gas_target: GasTarget,
        start_time: float,
        total_timeout: float,
    ) -> str | None:
        """Sign and send ``function_call`` once within the remaining cycle budget."""
        tx_params: TxParams = {
            "from": self.sponsor_wallet.address,
            "nonce": nonce,
            "gas": self.gas_limit,
            "chainId": int(self.provider.chain_id),
            **gas_target.to_tx_params(),
        }

        async def send() -> HexBytes:
            tx: dict[str, Any] = await function_call.build_transaction(tx_params)
            signed = self.sponsor_wallet.sign_transaction(tx)
            return await self.provider.rpc_provider.eth.send_raw_transaction(signed.raw_transaction)

        result = await go(send, GoOptions(retries=0, total_timeout=calculate_timeout(start_time, total_timeout)))
        if not result.success:
            logger.error(f"{self.log_prefix} Failed to submit transaction with nonce {nonce}: {result.error}")
            return None

        tx_hash = Web3.to_hex(result.data)
        logger.info(f"{self.log_prefix} ✓ Transaction submitted with nonce {nonce}: {tx_hash}")
        return tx_hash
