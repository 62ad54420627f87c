from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

# Subset of the DapiServer ABI used by Airseeker
DAPI_SERVER_ABI: list[dict[str, Any]] = [
    {
        "name": "readDataFeedWithId",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "dataFeedId", "type": "bytes32"}],
        "outputs": [
            {"name": "value", "type": "int224"},
            {"name": "timestamp", "type": "uint32"},
        ],
    },
    {
        "name": "updateBeaconWithSignedData",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "airnode", "type": "address"},
            {"name": "templateId", "type": "bytes32"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [{"name": "beaconId", "type": "bytes32"}],
    },
    {
        "name": "updateBeaconSetWithSignedData",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "airnodes", "type": "address[]"},
            {"name": "templateIds", "type": "bytes32[]"},
            {"name": "timestamps", "type": "uint256[]"},
            {"name": "data", "type": "bytes[]"},
            {"name": "signatures", "type": "bytes[]"},
        ],
        "outputs": [{"name": "beaconSetId", "type": "bytes32"}],
    },
]

Account.enable_unaudited_hdwallet_features()


class ContractUtility:
    """
    Utility for DapiServer contract access and sponsor wallet derivation.

    Sponsor wallets follow the Airnode convention: the derivation path encodes
    the protocol ID and the sponsor address split into six 31-bit chunks, so
    every sponsor gets its own deterministic signing key from one mnemonic.
    """

    def __init__(self, mnemonic: str, protocol_id: str) -> None:
        """
        Initialize the ContractUtility.

        Args:
            mnemonic: Airseeker wallet mnemonic
            protocol_id: Airnode protocol ID used in derivation paths
        """
        if not mnemonic:
            raise ValueError("Mnemonic is required for sponsor wallet derivation")

        self.mnemonic = mnemonic
        self.protocol_id = protocol_id

    @staticmethod
    def derive_wallet_path_from_sponsor_address(sponsor_address: str, protocol_id: str) -> str:
        """Derivation path suffix ``{protocol_id}/{chunk0}/.../{chunk5}`` for a sponsor.

        Args:
            sponsor_address: Sponsor address
            protocol_id: Airnode protocol ID

        Returns:
            The path below ``m/44'/60'/0'``
        """
        sponsor = int(Web3.to_checksum_address(sponsor_address), 16)
        chunks = [str((sponsor >> (31 * i)) & (2**31 - 1)) for i in range(6)]
        return f"{protocol_id}/{'/'.join(chunks)}"

    def derive_sponsor_wallet(self, sponsor_address: str) -> LocalAccount:
        """Derive the signing wallet of ``sponsor_address`` from the mnemonic."""
        path = self.derive_wallet_path_from_sponsor_address(sponsor_address, self.protocol_id)
        return Account.from_mnemonic(self.mnemonic, account_path=f"m/44'/60'/0'/{path}")

    @staticmethod
    def get_dapi_server_contract(w3: AsyncWeb3, address: str) -> AsyncContract:
        """Bind the DapiServer ABI to ``address`` on the given provider."""
        return w3.eth.contract(address=Web3.to_checksum_address(address), abi=DAPI_SERVER_ABI)
