"""Public-ledger client used to anchor certificate fingerprints.

Anchoring is a zero-value self-transaction whose ``data`` field carries the
UTF-8 JSON anchor payload, signed by the platform key.  Nothing here holds
custody of tokens; the chain only stores proof that a fingerprint existed at
a given time.

The same key is the platform signer for certificate dual signatures.  Tenant
signatures are produced by the tenant's own wallet and only recovered here.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct

from tokenledger.core.config import settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class Network:
    key: str
    name: str
    chain_id: int
    explorer: str
    is_testnet: bool = False


NETWORKS: dict[str, Network] = {
    "polygon": Network("polygon", "Polygon Mainnet", 137, "https://polygonscan.com"),
    "base": Network("base", "Base Mainnet", 8453, "https://basescan.org"),
    "polygon-amoy": Network(
        "polygon-amoy", "Polygon Amoy (Testnet)", 80002, "https://amoy.polygonscan.com", True
    ),
    "base-sepolia": Network(
        "base-sepolia", "Base Sepolia (Testnet)", 84532, "https://sepolia.basescan.org", True
    ),
}


def get_network(key: str) -> Network:
    try:
        return NETWORKS[key]
    except KeyError:
        raise ChainError(f"Unsupported blockchain network '{key}'") from None


def explorer_tx_url(network: str, tx_hash: str) -> str:
    return f"{get_network(network).explorer}/tx/{tx_hash}"


class ChainError(Exception):
    """Submission, confirmation or lookup failed on the chain side."""


class ChainReverted(ChainError):
    """The transaction was mined but reverted; it can safely be resubmitted."""


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    block_number: int | None
    success: bool


@dataclass(frozen=True)
class SignedMessage:
    signature: str
    address: str


def recover_signer(message: str, signature: str) -> str | None:
    """Address that personal-signed (EIP-191) ``message``, or None for a malformed signature."""
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:  # noqa: BLE001
        logger.info("chain.signature_unrecoverable", error=str(exc))
        return None


def signature_matches(message: str | None, signature: str | None, address: str | None) -> bool:
    if not (message and signature and address):
        return False
    recovered = recover_signer(message, signature)
    return recovered is not None and recovered.lower() == address.lower()


class ChainClient(ABC):
    """Interface every anchoring backend implements."""

    network: str = ""
    enabled: bool = True

    @property
    @abstractmethod
    def address(self) -> str | None:
        """Signer address, or None when no key is configured."""

    @abstractmethod
    async def submit(self, payload: dict[str, Any]) -> str:
        """Send the payload and return its transaction hash."""

    @abstractmethod
    async def confirm(self, tx_hash: str) -> ChainReceipt:
        """Wait for inclusion. Raise ChainError if the transaction reverted."""

    @abstractmethod
    async def balance(self) -> Decimal:
        """Native-currency balance of the signer."""

    @abstractmethod
    async def decode(self, tx_hash: str) -> dict[str, Any]:
        """Read back the payload stored by ``submit``."""

    @abstractmethod
    async def sign_message(self, message: str) -> SignedMessage:
        """Personal-sign ``message`` with the platform signer."""

    def recover(self, message: str, signature: str) -> str | None:
        return recover_signer(message, signature)

    def explorer_url(self, tx_hash: str) -> str:
        return explorer_tx_url(self.network, tx_hash)


def encode_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode()


def decode_payload(data: bytes) -> dict[str, Any]:
    try:
        return json.loads(data.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ChainError("Transaction data is not an anchor payload") from exc


class Web3ChainClient(ChainClient):
    """web3.py backend: signs locally, talks to an HTTP JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        network: str = "polygon",
        receipt_timeout: int = 120,
    ) -> None:
        from web3 import AsyncWeb3

        self.network = get_network(network).key
        self.chain_id = get_network(network).chain_id
        self.receipt_timeout = receipt_timeout
        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account = self._w3.eth.account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def submit(self, payload: dict[str, Any]) -> str:
        from web3 import Web3

        try:
            tx: dict[str, Any] = {
                "from": self.address,
                "to": self.address,
                "value": 0,
                "data": Web3.to_hex(encode_payload(payload)),
                "nonce": await self._w3.eth.get_transaction_count(self.address, "pending"),
                "gasPrice": await self._w3.eth.gas_price,
                "chainId": self.chain_id,
            }
            tx["gas"] = await self._w3.eth.estimate_gas(tx)
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            logger.error("chain.submit_failed", network=self.network, error=str(exc))
            raise ChainError(f"Anchor submission failed: {exc}") from exc
        return Web3.to_hex(tx_hash)

    async def confirm(self, tx_hash: str) -> ChainReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except Exception as exc:
            raise ChainError(f"No receipt for {tx_hash}: {exc}") from exc
        if receipt["status"] != 1:
            raise ChainReverted(f"Anchor transaction {tx_hash} reverted")
        return ChainReceipt(tx_hash=tx_hash, block_number=receipt["blockNumber"], success=True)

    async def balance(self) -> Decimal:
        from web3 import Web3

        try:
            wei = await self._w3.eth.get_balance(self.address)
        except Exception as exc:
            raise ChainError(f"Balance lookup failed: {exc}") from exc
        return Decimal(Web3.from_wei(wei, "ether"))

    async def decode(self, tx_hash: str) -> dict[str, Any]:
        try:
            tx = await self._w3.eth.get_transaction(tx_hash)
        except Exception as exc:
            raise ChainError(f"Transaction {tx_hash} not found: {exc}") from exc
        return decode_payload(bytes(tx["input"]))

    async def sign_message(self, message: str) -> SignedMessage:
        from web3 import Web3

        signed = self._account.sign_message(encode_defunct(text=message))
        return SignedMessage(signature=Web3.to_hex(signed.signature), address=self.address)


class DisabledChainClient(ChainClient):
    """Stand-in used when BLOCKCHAIN_ENABLED is off or no key is configured."""

    enabled = False

    def __init__(self, network: str = "polygon") -> None:
        self.network = network

    @property
    def address(self) -> None:
        return None

    async def submit(self, payload: dict[str, Any]) -> str:
        raise ChainError("Blockchain anchoring is not configured")

    async def confirm(self, tx_hash: str) -> ChainReceipt:
        raise ChainError("Blockchain anchoring is not configured")

    async def balance(self) -> Decimal:
        return Decimal("0")

    async def decode(self, tx_hash: str) -> dict[str, Any]:
        raise ChainError("Blockchain anchoring is not configured")

    async def sign_message(self, message: str) -> SignedMessage:
        raise ChainError("Platform signer is not configured")


@lru_cache(maxsize=1)
def get_chain_client() -> ChainClient:
    """FastAPI dependency; tests override it with an in-memory client."""
    if (
        settings.BLOCKCHAIN_ENABLED
        and settings.BLOCKCHAIN_RPC_URL
        and settings.BLOCKCHAIN_PRIVATE_KEY
    ):
        return Web3ChainClient(
            settings.BLOCKCHAIN_RPC_URL,
            settings.BLOCKCHAIN_PRIVATE_KEY,
            network=settings.BLOCKCHAIN_NETWORK,
            receipt_timeout=settings.ANCHOR_RECEIPT_TIMEOUT,
        )
    logger.info("chain.disabled", network=settings.BLOCKCHAIN_NETWORK)
    return DisabledChainClient(settings.BLOCKCHAIN_NETWORK)
