"""Chain access over JSON-RPC for framework-deployments library."""

import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from eth_utils import decode_hex, to_checksum_address

from .exceptions import TransactionFailure

logger = logging.getLogger(__name__)


class ChainProvider(ABC):
    """Minimal chain access needed to deploy and upgrade contracts."""

    @abstractmethod
    def get_code(self, address: str) -> bytes:
        """Runtime code at an address, b"" if none."""

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Balance in wei."""

    @abstractmethod
    def call(self, tx: Dict[str, Any]) -> bytes:
        """Execute a read-only call against the latest block."""

    @abstractmethod
    def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a transaction signed by tx["from"] and wait for its receipt.

        Raises:
            TransactionFailure: If the transaction is rejected or reverts
        """

    def has_code(self, address: Optional[str]) -> bool:
        if not address:
            return False
        return len(self.get_code(address)) > 0


class JsonRpcProvider(ChainProvider):
    """
    Ethereum JSON-RPC provider.

    Transactions are signed by the node (eth_sendTransaction), so the signer
    is any account unlocked on the RPC endpoint.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 30,
        poll_interval: float = 1.0,
        receipt_timeout: Optional[float] = None,
    ):
        """
        Args:
            rpc_url: RPC endpoint URL
            timeout: Per-request HTTP timeout in seconds
            poll_interval: Seconds between receipt polls
            receipt_timeout: Give up waiting for a receipt after this many
                             seconds (None waits forever)
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout
        self._ids = itertools.count(1)

    def _request(self, method: str, params: List[Any]) -> Any:
        """
        Perform a JSON-RPC request.

        Raises:
            ValueError: If the RPC returns an error
            RuntimeError: If a network or HTTP error occurs
        """
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params,
                    "id": next(self._ids),
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RuntimeError(f"Network error during RPC call: {e}") from e

        if response.status_code != 200:
            raise RuntimeError(f"RPC request failed with status {response.status_code}")

        result = response.json()
        if "error" in result:
            raise ValueError(f"RPC error: {result['error']}")

        logger.debug("%s -> %s", method, result.get("result"))
        return result.get("result")

    def get_code(self, address: str) -> bytes:
        result = self._request("eth_getCode", [to_checksum_address(address), "latest"])
        return decode_hex(result or "0x")

    def get_balance(self, address: str) -> int:
        result = self._request("eth_getBalance", [to_checksum_address(address), "latest"])
        return int(result, 16)

    def call(self, tx: Dict[str, Any]) -> bytes:
        result = self._request("eth_call", [tx, "latest"])
        return decode_hex(result or "0x")

    def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        try:
            tx_hash = self._request("eth_sendTransaction", [tx])
        except (RuntimeError, ValueError) as e:
            raise TransactionFailure(f"Transaction rejected: {e}") from e

        logger.info("   > transaction hash:   %s", tx_hash)
        receipt = self._wait_for_receipt(tx_hash)

        if int(str(receipt.get("status", "0x1")), 16) != 1:
            raise TransactionFailure(f"Transaction reverted: {tx_hash}")
        gas_used = receipt.get("gasUsed")
        if gas_used is not None:
            logger.info("   > gas used:           %s", f"{int(str(gas_used), 16):,}")
        return receipt

    def _wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        started = time.monotonic()
        while True:
            try:
                receipt = self._request("eth_getTransactionReceipt", [tx_hash])
            except (RuntimeError, ValueError) as e:
                raise TransactionFailure(f"Cannot fetch receipt of {tx_hash}: {e}") from e
            if receipt:
                return receipt
            if (
                self.receipt_timeout is not None
                and time.monotonic() - started > self.receipt_timeout
            ):
                raise TransactionFailure(f"No receipt for {tx_hash} after {self.receipt_timeout}s")
            time.sleep(self.poll_interval)
