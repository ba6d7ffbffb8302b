"""Deterministic deployment address derivation."""

from typing import Optional, Union

from eth_utils import decode_hex, is_hex, keccak, to_checksum_address

from .constants import (
    CREATE_FIRST_NONCE,
    CREATE_RLP_PREFIX,
    NULL_ADDRESS,
    PROXY_FACTORY_CODEHASH,
)
from .exceptions import PreconditionError

BytesLike = Union[bytes, bytearray, str]


def _to_bytes(value: BytesLike, what: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        if value in ("", "0x"):
            return b""
        if not is_hex(value):
            raise PreconditionError(f"{what} is not valid hex: {value!r}")
        text = value[2:] if value.startswith(("0x", "0X")) else value
        if len(text) % 2:
            raise PreconditionError(f"{what} has an odd number of hex digits: {value!r}")
        return decode_hex(value)
    raise PreconditionError(f"{what} must be bytes or hex string, got {type(value).__name__}")


def _exact(value: BytesLike, size: int, what: str) -> bytes:
    data = _to_bytes(value, what)
    if len(data) != size:
        raise PreconditionError(f"{what} must be {size} bytes, got {len(data)}")
    return data


def determine_addr(deployer: BytesLike, salt: BytesLike, init_code: BytesLike) -> str:
    """
    Predict the address a CREATE2 deployment will land on.

    address = last20(keccak(0xff ++ deployer ++ salt ++ keccak(init_code)))

    Args:
        deployer: 20-byte address of the deploying factory
        salt: 32-byte salt
        init_code: Creation code, constructor args included

    Returns:
        Checksummed address

    Raises:
        PreconditionError: If deployer or salt have the wrong length
    """
    deployer_bytes = _exact(deployer, 20, "deployer address")
    salt_bytes = _exact(salt, 32, "salt")
    code_hash = keccak(_to_bytes(init_code, "init code"))
    digest = keccak(b"\xff" + deployer_bytes + salt_bytes + code_hash)
    return to_checksum_address(digest[-20:])


def determine_proxy_addr(deployer: BytesLike, salt: BytesLike) -> str:
    """
    Predict the address of a proxy created through the factory's transient deployer.

    The transient deployer lands on a CREATE2 address computed from a fixed code
    hash, and creates the proxy with its first nonce, so the result only depends
    on (deployer, salt), never on the proxied code.

    Args:
        deployer: 20-byte address of the deploying factory
        salt: 32-byte salt

    Returns:
        Checksummed address

    Raises:
        PreconditionError: If deployer or salt have the wrong length
    """
    deployer_bytes = _exact(deployer, 20, "deployer address")
    salt_bytes = _exact(salt, 32, "salt")
    factory = keccak(b"\xff" + deployer_bytes + salt_bytes + PROXY_FACTORY_CODEHASH)[-20:]
    digest = keccak(CREATE_RLP_PREFIX + factory + CREATE_FIRST_NONCE)
    return to_checksum_address(digest[-20:])


def salt_from_vanity(vanity: Optional[Union[int, BytesLike]]) -> bytes:
    """
    Left-pad a vanity number (or short hex value) to a 32-byte salt.

    Args:
        vanity: Integer, bytes or hex string; None and 0 give the zero salt

    Returns:
        32-byte salt

    Raises:
        PreconditionError: If the vanity is negative or longer than 32 bytes
    """
    if vanity is None:
        return bytes(32)
    if isinstance(vanity, int):
        if vanity < 0:
            raise PreconditionError(f"vanity must be non-negative, got {vanity}")
        if vanity.bit_length() > 256:
            raise PreconditionError(f"vanity does not fit in 32 bytes: {vanity}")
        return vanity.to_bytes(32, "big")
    data = _to_bytes(vanity, "vanity")
    if len(data) > 32:
        raise PreconditionError(f"vanity does not fit in 32 bytes: {len(data)} bytes")
    return data.rjust(32, b"\x00")


def is_null_address(address: Optional[str]) -> bool:
    """True for None, empty strings and the zero address."""
    return not address or address.lower() == NULL_ADDRESS


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if is_null_address(a) or is_null_address(b):
        return False
    return a.lower() == b.lower()
