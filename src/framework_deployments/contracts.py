"""Call wrappers for the on-chain contracts a deployment talks to."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .provider import ChainProvider
from .versions import version_tag_from_bytes32

logger = logging.getLogger(__name__)


def encode_call(signature: str, types: Sequence[str] = (), values: Sequence[Any] = ()) -> str:
    """
    ABI-encode a function call.

    Args:
        signature: Canonical signature, e.g. "deploy(bytes,bytes32)"
        types: Argument types, same order as in the signature
        values: Argument values

    Returns:
        0x-prefixed calldata
    """
    data = function_signature_to_4byte_selector(signature)
    if types:
        data += encode(list(types), list(values))
    return "0x" + data.hex()


class _Contract:
    def __init__(self, provider: ChainProvider, address: str):
        self.provider = provider
        self.address = to_checksum_address(address)

    def _call(self, signature: str, types: Sequence[str], values: Sequence[Any], returns: List[str]):
        raw = self.provider.call({"to": self.address, "data": encode_call(signature, types, values)})
        return decode(returns, raw)

    def _transact(
        self, sender: str, signature: str, types: Sequence[str], values: Sequence[Any]
    ) -> Dict[str, Any]:
        return self.provider.send_transaction(
            {
                "from": sender,
                "to": self.address,
                "data": encode_call(signature, types, values),
            }
        )


class DeployerFactory(_Contract):
    """Deterministic-deployment factory: CREATE2 deploys and proxy creation."""

    def determine_addr(self, init_code: bytes, salt: bytes) -> str:
        (address,) = self._call(
            "determineAddr(bytes,bytes32)", ["bytes", "bytes32"], [init_code, salt], ["address"]
        )
        return to_checksum_address(address)

    def determine_proxy_addr(self, salt: bytes) -> str:
        (address,) = self._call("determineProxyAddr(bytes32)", ["bytes32"], [salt], ["address"])
        return to_checksum_address(address)

    def deploy(self, init_code: bytes, salt: bytes, sender: str) -> Dict[str, Any]:
        return self._transact(sender, "deploy(bytes,bytes32)", ["bytes", "bytes32"], [init_code, salt])

    def proxify(self, salt: bytes, logic: str, init_data: bytes, sender: str) -> Dict[str, Any]:
        return self._transact(
            sender,
            "proxify(bytes32,address,bytes)",
            ["bytes32", "address", "bytes"],
            [salt, to_checksum_address(logic), init_data],
        )


class UpgradableProxy(_Contract):
    """Proxy forwarding calls to a repointable logic contract."""

    def implementation(self) -> str:
        (address,) = self._call("implementation()", [], [], ["address"])
        return to_checksum_address(address)

    def upgrade_to(self, logic: str, init_data: bytes, sender: str) -> Dict[str, Any]:
        return self._transact(
            sender,
            "upgradeTo(address,bytes)",
            ["address", "bytes"],
            [to_checksum_address(logic), init_data],
        )


class LogicContract(_Contract):
    """Introspection of a deployed implementation."""

    def version(self) -> str:
        """
        Version tag reported by the contract.

        Legacy implementations may report a malformed tag, a raw bytes32, or
        nothing at all; those yield whatever could be decoded, possibly "".
        """
        raw = self.provider.call({"to": self.address, "data": encode_call("version()")})
        if not raw:
            return ""
        try:
            (version,) = decode(["string"], raw)
            return version.rstrip("\x00")
        except (DecodingError, UnicodeDecodeError, ValueError):
            logger.debug("version() of %s is not a string, reading it as bytes32", self.address)
        if len(raw) >= 32:
            return version_tag_from_bytes32(raw[:32])
        return ""

    def class_name(self) -> Optional[str]:
        """Contract class reported by the implementation, None if not decodable."""
        raw = self.provider.call({"to": self.address, "data": encode_call("class()")})
        if not raw:
            return None
        try:
            (name,) = decode(["string"], raw)
        except (DecodingError, UnicodeDecodeError):
            logger.debug("class() of %s is not a string", self.address)
            return None
        return name
