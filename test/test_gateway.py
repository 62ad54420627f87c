#!/usr/bin/env python3
"""Unit tests for the signed data gateway client."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from airseeker.config import GatewayConfig
from airseeker.constants import GATEWAY_TIMEOUT
from airseeker.gateway import (
    GatewayRequestError,
    TemplateRequest,
    make_signed_data_gateway_requests,
    parse_signed_data_response,
    url_join,
)

VALID_SIGNATURE = "0x" + "ab" * 65
VALID_BODY = {
    "data": {"timestamp": "1700000000", "value": "0x" + "00" * 31 + "2a"},
    "signature": VALID_SIGNATURE,
}


@pytest.fixture
def template():
    return TemplateRequest(template_id="0x" + "02" * 32, endpoint_id="0x" + "01" * 32, parameters="0x1234")


@pytest.fixture
def gateways():
    return [
        GatewayConfig(api_key="key-1", url="https://g1.example.com/"),
        GatewayConfig(api_key="key-2", url="https://g2.example.com"),
        GatewayConfig(api_key="key-3", url="https://g3.example.com/signed"),
    ]


def make_response(status_code: int, body) -> httpx.Response:
    return httpx.Response(status_code, json=body, request=httpx.Request("POST", "https://example.com"))


class TestUrlJoin:
    """Test suite for url_join."""

    @pytest.mark.parametrize(
        "base, path, expected",
        [
            ("https://g.example.com", "0xabc", "https://g.example.com/0xabc"),
            ("https://g.example.com/", "0xabc", "https://g.example.com/0xabc"),
            ("https://g.example.com/signed/", "/0xabc", "https://g.example.com/signed/0xabc"),
        ],
    )
    def test_single_slash(self, base, path, expected):
        assert url_join(base, path) == expected


class TestParseSignedDataResponse:
    """Test suite for response parsing."""

    def test_valid_body(self):
        result = parse_signed_data_response(VALID_BODY)

        assert result.success
        assert result.errors is None
        assert result.signed_data.timestamp == "1700000000"
        assert result.signed_data.encoded_value == VALID_BODY["data"]["value"]
        assert result.signed_data.signature == VALID_SIGNATURE

    def test_short_signature(self):
        body = {**VALID_BODY, "signature": "0x1234"}

        result = parse_signed_data_response(body)

        assert not result.success
        assert any(error["loc"] == ["signature"] for error in result.errors)

    def test_missing_data(self):
        result = parse_signed_data_response({"signature": VALID_SIGNATURE})

        assert not result.success
        assert ["data"] in [error["loc"] for error in result.errors]

    def test_non_numeric_timestamp(self):
        body = {"data": {"timestamp": "soon", "value": "0x00"}, "signature": VALID_SIGNATURE}

        result = parse_signed_data_response(body)

        assert not result.success
        assert ["data", "timestamp"] in [error["loc"] for error in result.errors]

    def test_not_an_object(self):
        assert not parse_signed_data_response(["unexpected"]).success


class TestMakeSignedDataGatewayRequests:
    """Test suite for the gateway fallback chain."""

    @pytest.mark.asyncio
    async def test_falls_through_to_first_valid_gateway(self, gateways, template):
        post = AsyncMock(side_effect=[RuntimeError("connection refused"), {"invalid": True}, VALID_BODY])

        with patch("airseeker.gateway._post_gateway", post):
            signed_data = await make_signed_data_gateway_requests(gateways, template)

        assert post.await_count == 3
        assert [call.args[1] for call in post.await_args_list] == gateways
        assert signed_data.signature == VALID_SIGNATURE
        assert signed_data.timestamp == "1700000000"

    @pytest.mark.asyncio
    async def test_returns_first_valid_without_trying_rest(self, gateways, template):
        post = AsyncMock(return_value=VALID_BODY)

        with patch("airseeker.gateway._post_gateway", post):
            await make_signed_data_gateway_requests(gateways, template)

        post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_all_gateways_fail(self, gateways, template, caplog):
        post = AsyncMock(side_effect=RuntimeError("down"))

        with patch("airseeker.gateway._post_gateway", post):
            with pytest.raises(GatewayRequestError):
                await make_signed_data_gateway_requests(gateways, template)

        assert post.await_count == 3
        assert "All gateway requests have failed" in caplog.text
        assert 'gateway: "https://g1.example.com/0x' in caplog.text

    @pytest.mark.asyncio
    async def test_request_shape(self, gateways, template):
        mock_client = MagicMock()
        mock_client.post = AsyncMock(return_value=make_response(200, VALID_BODY))
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)

        with patch("airseeker.gateway.httpx.AsyncClient", return_value=mock_client):
            await make_signed_data_gateway_requests(gateways[:1], template)

        mock_client.post.assert_awaited_once_with(
            f"https://g1.example.com/{template.endpoint_id}",
            json={"encodedParameters": "0x1234"},
            headers={"Content-Type": "application/json", "x-api-key": "key-1"},
            timeout=GATEWAY_TIMEOUT,
        )

    @pytest.mark.asyncio
    async def test_http_error_moves_to_next_gateway(self, gateways, template):
        mock_client = MagicMock()
        mock_client.post = AsyncMock(
            side_effect=[make_response(500, {"message": "internal error"}), make_response(200, VALID_BODY)]
        )
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)

        with patch("airseeker.gateway.httpx.AsyncClient", return_value=mock_client):
            signed_data = await make_signed_data_gateway_requests(gateways, template)

        assert mock_client.post.await_count == 2
        assert signed_data.signature == VALID_SIGNATURE
