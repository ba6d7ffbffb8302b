"""Library linking for framework-deployments library."""

from typing import List, Mapping

from eth_utils import is_address, remove_0x_prefix

from .constants import LIBRARY_PLACEHOLDER_LENGTH, LIBRARY_PLACEHOLDER_MARKER
from .exceptions import MissingLibraryError, PreconditionError


def placeholder_for(library: str) -> str:
    """
    Build the placeholder token the compiler leaves for a library reference.

    Args:
        library: Library artifact name

    Returns:
        "__{library}" padded with "_" to 40 chars
    """
    token = f"{LIBRARY_PLACEHOLDER_MARKER}{library}"
    if len(token) > LIBRARY_PLACEHOLDER_LENGTH:
        raise PreconditionError(f"library name too long for a placeholder: {library}")
    return token.ljust(LIBRARY_PLACEHOLDER_LENGTH, "_")


def find_placeholders(bytecode: str) -> List[str]:
    """
    List library names still referenced by placeholders, in order of first appearance.

    Args:
        bytecode: Hex bytecode, with or without 0x prefix

    Returns:
        Distinct library names
    """
    names: List[str] = []
    index = bytecode.find(LIBRARY_PLACEHOLDER_MARKER)
    while index > -1:
        token = bytecode[index : index + LIBRARY_PLACEHOLDER_LENGTH]
        name = token.strip("_")
        if name not in names:
            names.append(name)
        index = bytecode.find(LIBRARY_PLACEHOLDER_MARKER, index + LIBRARY_PLACEHOLDER_LENGTH)
    return names


def link_libraries(bytecode: str, libraries: Mapping[str, str]) -> str:
    """
    Replace library placeholders with deployed library addresses.

    Args:
        bytecode: Hex bytecode as emitted by the compiler
        libraries: Library artifact name -> address

    Returns:
        Linked hex bytecode, same length as the input

    Raises:
        PreconditionError: If a supplied address is malformed
        MissingLibraryError: If any placeholder is left after substitution
    """
    for name, address in libraries.items():
        if not is_address(address):
            raise PreconditionError(f"invalid address for library {name}: {address!r}")
        bytecode = bytecode.replace(placeholder_for(name), remove_0x_prefix(address).lower())

    missing = find_placeholders(bytecode)
    if missing:
        raise MissingLibraryError(
            f"Bytecode depends on library '{missing[0]}', "
            "which is not known or has not been deployed",
            library=missing[0],
        )
    return bytecode
