"""Beacon fetch loops.

One loop per beacon keeps the gateway cache in the shared state fresh. Loops
only write to the state; they never touch the chain.
"""

import logging
import sys
from functools import partial
from typing import Coroutine

from .config import AirseekerConfig
from .constants import (
    GATEWAY_TIMEOUT,
    INFINITE_RETRIES,
    NO_FETCH_EXIT_CODE,
    RANDOM_BACKOFF_MAX,
    RANDOM_BACKOFF_MIN,
)
from .gateway import TemplateRequest, make_signed_data_gateway_requests
from .models import SignedData
from .state import StateStore
from .utils.encoding import SignedDataIntegrityError, decode_beacon_value, verify_signed_data
from .utils.retry import GoOptions, RandomDelay, go
from .utils.scheduler import IntervalLoop

logger = logging.getLogger(__name__)


def get_beacon_ids_to_fetch(config: AirseekerConfig) -> list[str]:
    """Beacons referenced by any trigger, directly or as a beacon set member.

    Returns:
        Beacon IDs without duplicates, in first-seen order
    """
    beacon_ids: dict[str, None] = {}
    for sponsors in config.data_feed_updates.values():
        for updates in sponsors.values():
            for beacon_trigger in updates.beacons:
                beacon_ids.setdefault(beacon_trigger.beacon_id)
            for beacon_set_trigger in updates.beacon_sets:
                for beacon_id in config.beacon_sets[beacon_set_trigger.beacon_set_id]:
                    beacon_ids.setdefault(beacon_id)
    return list(beacon_ids)


def initiate_fetching_beacon_data(store: StateStore) -> list[Coroutine]:
    """Create one fetch loop per beacon.

    Exits the process with NO_FETCH_EXIT_CODE when there is nothing to fetch.
    """
    logger.debug("Initiating fetching all beacon data")
    beacon_ids = get_beacon_ids_to_fetch(store.get().config)
    if not beacon_ids:
        logger.error("No beacons to fetch data for found. Stopping.")
        sys.exit(NO_FETCH_EXIT_CODE)

    logger.info(f"Fetching signed data for {len(beacon_ids)} beacons")
    return [fetch_beacon_data_in_loop(store, beacon_id) for beacon_id in beacon_ids]


async def fetch_beacon_data_in_loop(store: StateStore, beacon_id: str) -> None:
    """Fetch ``beacon_id`` every fetch interval until the stop flag is set."""
    beacon = store.get().config.beacons[beacon_id]
    loop = IntervalLoop(
        name=f"fetch-{beacon_id}",
        interval=beacon.fetch_interval,
        iteration=partial(fetch_beacon_data, store, beacon_id),
        store=store,
    )
    await loop.run()


async def fetch_beacon_data(store: StateStore, beacon_id: str) -> SignedData | None:
    """
    Fetch signed data for one beacon and merge it into the state.

    The gateways are retried until the fetch interval is used up. The response
    must be signed by the beacon's airnode and hold a value in int224 range,
    otherwise it is dropped.

    Returns:
        The stored signed data, or None if nothing was stored
    """
    log_prefix = f"[beacon={beacon_id}]"
    logger.debug(f"{log_prefix} Fetching beacon data")

    config = store.get().config
    beacon = config.beacons[beacon_id]
    template = config.templates[beacon.template_id]
    gateways = config.gateways[beacon.airnode]
    request = TemplateRequest(
        template_id=template.template_id,
        endpoint_id=template.endpoint_id,
        parameters=template.parameters,
    )

    result = await go(
        lambda: make_signed_data_gateway_requests(gateways, request),
        GoOptions(
            attempt_timeout=GATEWAY_TIMEOUT,
            retries=INFINITE_RETRIES,
            total_timeout=beacon.fetch_interval,
            delay=RandomDelay(RANDOM_BACKOFF_MIN, RANDOM_BACKOFF_MAX),
            on_attempt_error=lambda error, attempt: logger.warning(
                f"{log_prefix} Failed attempt {attempt + 1} to fetch beacon data. Error: {error}"
            ),
        ),
    )
    if not result.success:
        logger.warning(f"{log_prefix} Unable to fetch beacon data. Error: {result.error}")
        return None

    signed_data: SignedData = result.data
    try:
        verify_signed_data(
            beacon.airnode,
            beacon.template_id,
            signed_data.timestamp,
            signed_data.encoded_value,
            signed_data.signature,
        )
        value = decode_beacon_value(signed_data.encoded_value)
    except SignedDataIntegrityError as e:
        logger.warning(f"{log_prefix} Dropping invalid signed data: {e}")
        return None

    store.set_beacon_value(beacon_id, signed_data)
    logger.info(f"{log_prefix} Stored value {value} with timestamp {signed_data.timestamp}")
    return signed_data
