"""Version tag encoding and decoding for framework-deployments library.

A version tag is the short string every upgradable logic contract carries in
its constructor args and reports through ``version()``:

    SSSSS-CCCCCCC-HHHHHHH
    |     |       |
    |     |       +-- first 7 hex chars of keccak(linked bytecode)
    |     +---------- abbreviated commit hash of the contracts sources
    +---------------- semver, exactly 5 chars (e.g. "2.1.0")

Tags read back from chain may be empty, NUL-padded or shorter than this
layout; decoding never raises on them.
"""

import re
import subprocess
from pathlib import Path
from typing import Optional, Union

from eth_utils import keccak

from .constants import VERSION_FRAGMENT_LENGTH, VERSION_SEMVER_LENGTH, VERSION_TAG_MAX_BYTES
from .exceptions import PreconditionError

_FRAGMENT_RE = re.compile(r"^[0-9a-f]{%d}$" % VERSION_FRAGMENT_LENGTH)

_COMMIT_START = VERSION_SEMVER_LENGTH + 1
_COMMIT_END = _COMMIT_START + VERSION_FRAGMENT_LENGTH
_FULL_LENGTH = _COMMIT_END + 1 + VERSION_FRAGMENT_LENGTH


def _clean(version: Optional[Union[str, bytes]]) -> str:
    if not version:
        return ""
    if isinstance(version, (bytes, bytearray)):
        version = bytes(version).rstrip(b"\x00").decode("ascii", errors="ignore")
    return version.rstrip("\x00")


def build_version(semver: str, commit: str) -> str:
    """
    Compose the build-time part of a version tag.

    Args:
        semver: Package version, exactly 5 chars
        commit: Abbreviated commit hash, 7 lowercase hex chars

    Returns:
        "{semver}-{commit}"

    Raises:
        PreconditionError: If either part does not fit the tag layout
    """
    if len(semver) != VERSION_SEMVER_LENGTH:
        raise PreconditionError(
            f"semver must be {VERSION_SEMVER_LENGTH} chars long, got {semver!r}"
        )
    commit = commit.lower()
    if not _FRAGMENT_RE.match(commit):
        raise PreconditionError(
            f"commit fragment must be {VERSION_FRAGMENT_LENGTH} hex chars, got {commit!r}"
        )
    return f"{semver}-{commit}"


def codehash_fragment(bytecode: Union[str, bytes]) -> str:
    """First 7 hex chars of keccak over the (linked) bytecode bytes."""
    if isinstance(bytecode, str):
        bytecode = bytes.fromhex(bytecode[2:] if bytecode.startswith("0x") else bytecode)
    return keccak(bytecode).hex()[:VERSION_FRAGMENT_LENGTH]


def version_tag_for(build: str, linked_bytecode: Union[str, bytes]) -> str:
    """
    Append the codehash fragment of fully linked bytecode to a build version.

    Args:
        build: Output of build_version()
        linked_bytecode: Init code with every library placeholder resolved,
                         without constructor args

    Returns:
        Complete version tag
    """
    return f"{build}-{codehash_fragment(linked_bytecode)}"


def version_tag_of(version: Optional[Union[str, bytes]]) -> str:
    """Semver segment, or "" if the tag is empty."""
    return _clean(version)[:VERSION_SEMVER_LENGTH]


def version_last_commit_of(version: Optional[Union[str, bytes]]) -> str:
    """Commit fragment, or "" if the tag is too short to hold one."""
    version = _clean(version)
    if len(version) < _COMMIT_END:
        return ""
    return version[_COMMIT_START:_COMMIT_END]


def version_codehash_of(version: Optional[Union[str, bytes]]) -> str:
    """Codehash fragment, or "" if the tag is too short to hold one."""
    version = _clean(version)
    if len(version) < _FULL_LENGTH - 1:
        return ""
    return version[-VERSION_FRAGMENT_LENGTH:]


def version_tag_to_bytes32(version: str) -> bytes:
    """
    Right-pad a version tag with NULs to its on-chain bytes32 form.

    Raises:
        PreconditionError: If the tag does not fit in 32 bytes
    """
    data = version.encode("ascii")
    if len(data) > VERSION_TAG_MAX_BYTES:
        raise PreconditionError(f"version tag longer than 32 bytes: {version!r}")
    return data.ljust(VERSION_TAG_MAX_BYTES, b"\x00")


def version_tag_from_bytes32(data: Optional[bytes]) -> str:
    return _clean(data)


def read_last_commit(path: Union[Path, str] = ".") -> str:
    """
    Get the abbreviated hash of the last commit touching a path.

    Args:
        path: File or directory inside a git checkout (e.g. the contracts folder)

    Returns:
        7-char lowercase commit fragment

    Raises:
        RuntimeError: If git fails or the path has no history
    """
    path = Path(path)
    cwd = path if path.is_dir() else path.parent
    try:
        result = subprocess.run(
            ["git", "log", "-1", "--format=%h", "--", str(path.absolute())],
            check=True,
            capture_output=True,
            text=True,
            cwd=str(cwd),
        )
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Failed to read last commit of {path}: {e.stderr}") from e

    commit = result.stdout.strip()
    if not commit:
        raise RuntimeError(f"No commits found touching {path}")
    return commit[:VERSION_FRAGMENT_LENGTH].lower()
