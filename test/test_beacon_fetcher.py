#!/usr/bin/env python3
"""Unit tests for the beacon fetch loops."""

import pytest
from unittest.mock import AsyncMock, patch

from airseeker.beacon_fetcher import (
    fetch_beacon_data,
    get_beacon_ids_to_fetch,
    initiate_fetching_beacon_data,
)
from airseeker.constants import NO_FETCH_EXIT_CODE
from airseeker.gateway import GatewayRequestError
from airseeker.models import SignedData
from airseeker.state import StateStore

from conftest import build_config, encode_value, sign_data


class TestBeaconSelection:
    """Test suite for selecting the beacons to fetch."""

    def test_direct_and_beacon_set_members_deduplicated(self, config, beacon_ids):
        assert get_beacon_ids_to_fetch(config) == beacon_ids

    def test_only_direct_beacons(self, airnode_account):
        config = build_config(airnode_account.address, beacon_set_triggers=False)

        assert get_beacon_ids_to_fetch(config) == [next(iter(config.beacons))]

    def test_exits_without_beacons(self, airnode_account):
        config = build_config(airnode_account.address, beacon_triggers=False, beacon_set_triggers=False)

        with pytest.raises(SystemExit) as exc_info:
            initiate_fetching_beacon_data(StateStore(config))

        assert exc_info.value.code == NO_FETCH_EXIT_CODE

    def test_one_loop_per_beacon(self, store, beacon_ids):
        coroutines = initiate_fetching_beacon_data(store)
        try:
            assert len(coroutines) == len(beacon_ids)
        finally:
            for coroutine in coroutines:
                coroutine.close()


class TestFetchBeaconData:
    """Test suite for fetch_beacon_data."""

    @pytest.mark.asyncio
    async def test_stores_valid_signed_data(self, store, beacon_ids, signer):
        signed_data = signer(beacon_ids[0], 1_700_000_000, 123)

        with patch(
            "airseeker.beacon_fetcher.make_signed_data_gateway_requests",
            AsyncMock(return_value=signed_data),
        ) as mock_request:
            result = await fetch_beacon_data(store, beacon_ids[0])

        assert result == signed_data
        assert store.get().beacon_values == {beacon_ids[0]: signed_data}
        gateways, template = mock_request.await_args.args
        assert gateways == store.get().config.gateways[store.get().config.beacons[beacon_ids[0]].airnode]
        assert template.template_id == store.get().config.beacons[beacon_ids[0]].template_id

    @pytest.mark.asyncio
    async def test_rejects_signature_of_other_key(self, store, beacon_ids, config):
        signed_data = sign_data("0x" + "22" * 32, config.beacons[beacon_ids[0]].template_id, 1_700_000_000, 123)

        with patch(
            "airseeker.beacon_fetcher.make_signed_data_gateway_requests",
            AsyncMock(return_value=signed_data),
        ):
            result = await fetch_beacon_data(store, beacon_ids[0])

        assert result is None
        assert store.get().beacon_values == {}

    @pytest.mark.asyncio
    async def test_rejects_signature_for_other_template(self, store, beacon_ids, signer):
        signed_data = signer(beacon_ids[1], 1_700_000_000, 123)

        with patch(
            "airseeker.beacon_fetcher.make_signed_data_gateway_requests",
            AsyncMock(return_value=signed_data),
        ):
            assert await fetch_beacon_data(store, beacon_ids[0]) is None

    @pytest.mark.asyncio
    async def test_rejects_out_of_range_value(self, store, beacon_ids, config):
        template_id = config.beacons[beacon_ids[0]].template_id
        signed_data = sign_data("0x" + "11" * 32, template_id, 1_700_000_000, 2**223)

        with patch(
            "airseeker.beacon_fetcher.make_signed_data_gateway_requests",
            AsyncMock(return_value=signed_data),
        ):
            assert await fetch_beacon_data(store, beacon_ids[0]) is None
        assert store.get().beacon_values == {}

    @pytest.mark.asyncio
    async def test_bounded_attempts_with_fixed_backoff(self, airnode_account):
        """A 200ms backoff fits three failing attempts into a 500ms fetch interval."""
        config = build_config(airnode_account.address, fetch_interval=0.5)
        store = StateStore(config)
        beacon_id = next(iter(config.beacons))
        mock_request = AsyncMock(side_effect=GatewayRequestError("all gateways failed"))

        with patch("airseeker.beacon_fetcher.make_signed_data_gateway_requests", mock_request), \
                patch("airseeker.utils.retry.random.random", return_value=0.08):
            result = await fetch_beacon_data(store, beacon_id)

        assert result is None
        assert mock_request.await_count == 3
        assert store.get().beacon_values == {}

    @pytest.mark.asyncio
    async def test_keeps_previous_value_on_failure(self, store, beacon_ids):
        previous = SignedData(timestamp="1", encoded_value=encode_value(1), signature="0x" + "11" * 65)
        store.set_beacon_value(beacon_ids[0], previous)

        with patch("airseeker.beacon_fetcher.go", AsyncMock()) as mock_go:
            mock_go.return_value.success = False
            await fetch_beacon_data(store, beacon_ids[0])

        assert store.get().beacon_values[beacon_ids[0]] is previous
