"""Budget-bounded chain reads used by the update cycle."""

import logging

from web3.contract import AsyncContract
from web3.exceptions import ContractLogicError

from .constants import ZERO_ADDRESS
from .models import DataFeedValue
from .providers import Provider
from .utils.encoding import shorten_address
from .utils.retry import GoOptions, GoResult, go

logger = logging.getLogger(__name__)


async def get_current_block_number(provider: Provider, go_options: GoOptions, log_prefix: str = "") -> int | None:
    """Latest block number, or None when the budget ran out."""

    async def fetch_block_number() -> int:
        return await provider.rpc_provider.eth.block_number

    result = await go(
        fetch_block_number,
        go_options.with_attempt_error(
            lambda error, _attempt: logger.warning(f"{log_prefix} Failed attempt to get block number. Error: {error}")
        ),
    )
    if not result.success:
        logger.warning(f"{log_prefix} Unable to get block number. Error: {result.error}")
        return None

    logger.debug(f"{log_prefix} Current block number is {result.data}")
    return result.data


async def get_transaction_count(
    provider: Provider,
    sponsor_wallet_address: str,
    block_number: int,
    go_options: GoOptions,
    log_prefix: str = "",
) -> int | None:
    """Transaction count of the sponsor wallet at ``block_number``, or None on failure."""

    async def fetch_transaction_count() -> int:
        return await provider.rpc_provider.eth.get_transaction_count(sponsor_wallet_address, block_number)

    result = await go(
        fetch_transaction_count,
        go_options.with_attempt_error(
            lambda error, _attempt: logger.warning(
                f"{log_prefix} Failed attempt to get transaction count. Error: {error}"
            )
        ),
    )
    if not result.success:
        logger.warning(f"{log_prefix} Unable to get transaction count. Error: {result.error}")
        return None

    logger.debug(
        f"{log_prefix} Transaction count for sponsor wallet "
        f"{shorten_address(sponsor_wallet_address)} is {result.data}"
    )
    return result.data


async def read_data_feed_with_id(
    contract: AsyncContract,
    data_feed_id: str,
    go_options: GoOptions,
    log_prefix: str = "",
) -> GoResult[DataFeedValue]:
    """Read a beacon or beacon set value from the DapiServer.

    The read is made from the zero address, which DapiServer allows to read
    any data feed. A revert means the feed was never initialized and is
    reported as a zero timestamp rather than retried.
    """

    async def read() -> DataFeedValue:
        try:
            value, timestamp = await contract.functions.readDataFeedWithId(data_feed_id).call(
                {"from": ZERO_ADDRESS}
            )
        except ContractLogicError as e:
            logger.info(f"{log_prefix} Data feed {data_feed_id} is not initialized ({e})")
            return DataFeedValue(value=0, timestamp=0)
        return DataFeedValue(value=int(value), timestamp=int(timestamp))

    result = await go(
        read,
        go_options.with_attempt_error(
            lambda error, _attempt: logger.warning(
                f"{log_prefix} Failed attempt to read data feed {data_feed_id}. Error: {error}"
            )
        ),
    )
    if not result.success:
        logger.warning(f"{log_prefix} Unable to read data feed {data_feed_id}. Error: {result.error}")
    return result
