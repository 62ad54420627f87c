"""
ID derivation and signed data integrity helpers.

These mirror the on-chain DapiServer derivations so that configuration and
gateway responses can be checked before anything is submitted.
"""

from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from ..constants import INT224_MAX, INT224_MIN


class SignedDataIntegrityError(ValueError):
    """Signed data that must not be relayed (bad signature or value)."""


def derive_template_id(endpoint_id: str, parameters: str) -> str:
    """keccak256(abi.encodePacked(endpointId, parameters))"""
    return Web3.to_hex(Web3.solidity_keccak(["bytes32", "bytes"], [endpoint_id, parameters]))


def derive_beacon_id(airnode: str, template_id: str) -> str:
    """keccak256(abi.encodePacked(airnode, templateId))"""
    return Web3.to_hex(
        Web3.solidity_keccak(["address", "bytes32"], [Web3.to_checksum_address(airnode), template_id])
    )


def derive_beacon_set_id(beacon_ids: list[str] | tuple[str, ...]) -> str:
    """keccak256(abi.encode(beaconIds))"""
    encoded = encode(["bytes32[]"], [[Web3.to_bytes(hexstr=beacon_id) for beacon_id in beacon_ids]])
    return Web3.to_hex(Web3.keccak(encoded))


def decode_beacon_value(encoded_value: str) -> int:
    """Decode an ABI encoded int256 and check that it fits in int224.

    Raises:
        SignedDataIntegrityError: If the payload is malformed or out of range
    """
    try:
        (value,) = decode(["int256"], Web3.to_bytes(hexstr=encoded_value))
    except Exception as e:
        raise SignedDataIntegrityError(f"Unable to decode beacon value {encoded_value}: {e}") from e

    if value > INT224_MAX or value < INT224_MIN:
        raise SignedDataIntegrityError(f"Beacon value {value} is out of int224 range")
    return value


def signed_data_message_hash(template_id: str, timestamp: int | str, encoded_value: str) -> bytes:
    """Hash that the airnode signs: keccak256(abi.encodePacked(templateId, timestamp, data))"""
    return bytes(Web3.solidity_keccak(["bytes32", "uint256", "bytes"], [template_id, int(timestamp), encoded_value]))


def recover_signer(template_id: str, timestamp: int | str, encoded_value: str, signature: str) -> str:
    """Recover the address that produced ``signature`` over the signed data."""
    message = encode_defunct(primitive=signed_data_message_hash(template_id, timestamp, encoded_value))
    return Account.recover_message(message, signature=signature)


def verify_signed_data(airnode: str, template_id: str, timestamp: int | str, encoded_value: str, signature: str) -> None:
    """Check that the signed data was signed by ``airnode``.

    Raises:
        SignedDataIntegrityError: If the signature is invalid or belongs to another key
    """
    try:
        signer = recover_signer(template_id, timestamp, encoded_value, signature)
    except Exception as e:
        raise SignedDataIntegrityError(f"Unable to recover signer: {e}") from e

    if signer != Web3.to_checksum_address(airnode):
        raise SignedDataIntegrityError(f"Signature was produced by {signer}, expected airnode {airnode}")


def shorten_address(address: str) -> str:
    """0x1234...abcd style address for log lines."""
    return f"{address[:6]}...{address[-4:]}" if len(address) > 12 else address
