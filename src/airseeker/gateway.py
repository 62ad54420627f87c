"""Signed data gateway client.

Requests signed data for a template from an airnode's gateways, falling back
through the configured gateways in order. Retrying the whole gateway list is
left to the caller.
"""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from .config import GatewayConfig
from .constants import GATEWAY_TIMEOUT
from .models import SignedData

logger = logging.getLogger(__name__)


class GatewayRequestError(Exception):
    """Raised when no gateway returned usable signed data."""


class SignedDataPayload(BaseModel):
    timestamp: str = Field(pattern=r"^\d+$")
    value: str = Field(pattern=r"^0x[a-fA-F0-9]*$")


class SignedDataResponse(BaseModel):
    """Schema of a signed data gateway response body."""

    data: SignedDataPayload
    signature: str = Field(pattern=r"^0x[a-fA-F0-9]{130}$")


@dataclass(frozen=True, slots=True)
class TemplateRequest:
    """The template a gateway is asked to serve."""

    template_id: str
    endpoint_id: str
    parameters: str


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Typed outcome of parsing a gateway response body."""

    signed_data: SignedData | None = None
    errors: list[dict[str, Any]] | None = None

    @property
    def success(self) -> bool:
        return self.signed_data is not None


def url_join(base_url: str, path: str) -> str:
    """Join a gateway base URL and an endpoint ID with exactly one slash."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def parse_signed_data_response(body: Any) -> ParseResult:
    """Validate a gateway response body.

    Returns:
        ParseResult holding either the signed data or field-level errors
    """
    try:
        response = SignedDataResponse.model_validate(body)
    except ValidationError as e:
        return ParseResult(
            errors=[
                {"loc": list(error["loc"]), "type": error["type"], "msg": error["msg"]}
                for error in e.errors()
            ]
        )

    return ParseResult(
        signed_data=SignedData(
            timestamp=response.data.timestamp,
            encoded_value=response.data.value,
            signature=response.signature,
        )
    )


async def _post_gateway(client: httpx.AsyncClient, gateway: GatewayConfig, template: TemplateRequest) -> Any:
    """Post one signed data request and return the decoded JSON body."""
    response: httpx.Response = await client.post(
        url_join(gateway.url, template.endpoint_id),
        json={"encodedParameters": template.parameters},
        headers={"Content-Type": "application/json", "x-api-key": gateway.api_key},
        timeout=GATEWAY_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


async def make_signed_data_gateway_requests(
    gateways: Sequence[GatewayConfig],
    template: TemplateRequest,
) -> SignedData:
    """Fetch signed data from the first gateway that returns a valid response.

    Args:
        gateways: Gateways of the template's airnode, tried in order
        template: Template to request signed data for

    Returns:
        The first valid signed data

    Raises:
        GatewayRequestError: If every gateway failed
    """
    log_prefix = f"[template={template.template_id}]"

    async with httpx.AsyncClient() as client:
        for gateway in gateways:
            full_url = url_join(gateway.url, template.endpoint_id)
            try:
                body = await _post_gateway(client, gateway, template)
            except Exception as e:
                logger.error(
                    f'{log_prefix} Failed to make signed data gateway request for gateway: "{full_url}". '
                    f'Error: "{e!r}"'
                )
                continue

            parsed = parse_signed_data_response(body)
            if not parsed.success:
                logger.error(
                    f'{log_prefix} Failed to parse signed data response for gateway: "{full_url}". '
                    f'Error: "{json.dumps(parsed.errors, indent=2)}"'
                )
                continue

            logger.debug(f'{log_prefix} Using the following signed data response: "{parsed.signed_data}"')
            return parsed.signed_data

    logger.error(f"{log_prefix} All gateway requests have failed with an error. No response to be used")
    raise GatewayRequestError(f"All {len(gateways)} gateway requests failed for template {template.template_id}")
