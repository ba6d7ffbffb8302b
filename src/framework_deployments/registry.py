"""Deployed address registry for framework-deployments library.

Two documents are kept per registry:

- addresses:         {network: {domain: {artifact: address}}}
- constructor args:  {network: {artifact: hex_encoded_args}}

Entries only change through explicit deploy or upgrade decisions. The registry
assumes a single writer; callers must not run two orchestrators against the
same files at once.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .constants import ADDRESSES_FILE, CONSTRUCTOR_ARGS_FILE, DEFAULT_REGISTRY_DIR

logger = logging.getLogger(__name__)


class AddressRegistry(ABC):
    """Repository interface injected into the orchestrator."""

    @abstractmethod
    def get(self, network: str, domain: str, name: str) -> Optional[str]:
        """Recorded address, or None."""

    @abstractmethod
    def set(self, network: str, domain: str, name: str, address: str) -> None:
        """Record an address. Not durable until flush()."""

    @abstractmethod
    def names(self, network: str, domain: str) -> List[str]:
        """Artifact names recorded under a domain."""

    @abstractmethod
    def get_constructor_args(self, network: str, name: str) -> Optional[str]:
        """Recorded hex-encoded constructor args, or None."""

    @abstractmethod
    def set_constructor_args(self, network: str, name: str, args_hex: str) -> None:
        """Record constructor args. Not durable until flush()."""

    @abstractmethod
    def flush(self) -> None:
        """Persist pending changes."""


class InMemoryAddressRegistry(AddressRegistry):
    """Dictionary-backed registry; flush() is a no-op."""

    def __init__(
        self,
        addresses: Optional[Dict[str, Any]] = None,
        constructor_args: Optional[Dict[str, Any]] = None,
    ):
        self.addresses: Dict[str, Dict[str, Dict[str, str]]] = addresses or {}
        self.constructor_args: Dict[str, Dict[str, str]] = constructor_args or {}

    def get(self, network: str, domain: str, name: str) -> Optional[str]:
        return self.addresses.get(network, {}).get(domain, {}).get(name)

    def set(self, network: str, domain: str, name: str, address: str) -> None:
        previous = self.get(network, domain, name)
        if previous and previous != address:
            logger.info("Registry %s/%s/%s: %s -> %s", network, domain, name, previous, address)
        self.addresses.setdefault(network, {}).setdefault(domain, {})[name] = address

    def names(self, network: str, domain: str) -> List[str]:
        return list(self.addresses.get(network, {}).get(domain, {}).keys())

    def get_constructor_args(self, network: str, name: str) -> Optional[str]:
        return self.constructor_args.get(network, {}).get(name)

    def set_constructor_args(self, network: str, name: str, args_hex: str) -> None:
        self.constructor_args.setdefault(network, {})[name] = args_hex

    def flush(self) -> None:
        pass


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        return {}


def _save_json(data: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=4)


class JsonFileAddressRegistry(InMemoryAddressRegistry):
    """
    Registry backed by addresses.json and constructorArgs.json.

    Unlike a cache, a corrupted registry file is an error: it is the only state
    telling which artifacts were already deployed.
    """

    def __init__(
        self,
        addresses_path: Optional[Union[Path, str]] = None,
        constructor_args_path: Optional[Union[Path, str]] = None,
    ):
        """
        Args:
            addresses_path: Path to addresses.json (defaults to ./migrations/addresses.json)
            constructor_args_path: Path to constructorArgs.json
                                   (defaults to ./migrations/constructorArgs.json)

        Raises:
            json.JSONDecodeError: If an existing file is not valid JSON
        """
        default_dir = Path.cwd() / DEFAULT_REGISTRY_DIR
        self.addresses_path = Path(addresses_path or default_dir / ADDRESSES_FILE)
        self.constructor_args_path = Path(
            constructor_args_path or default_dir / CONSTRUCTOR_ARGS_FILE
        )
        super().__init__(
            _load_json(self.addresses_path),
            _load_json(self.constructor_args_path),
        )

    @classmethod
    def in_directory(cls, registry_dir: Union[Path, str]) -> "JsonFileAddressRegistry":
        """Registry whose two documents sit side by side in one directory."""
        registry_dir = Path(registry_dir)
        return cls(registry_dir / ADDRESSES_FILE, registry_dir / CONSTRUCTOR_ARGS_FILE)

    def flush(self) -> None:
        _save_json(self.addresses, self.addresses_path)
        _save_json(self.constructor_args, self.constructor_args_path)
        logger.debug("Registry flushed to %s", self.addresses_path.parent)
