"""Layered per-network settings for framework-deployments library.

Settings live in a single JSON document:

    {
      "artifacts": {
        "default": {
          "deployer": "WitnetDeployer",
          "libs": {"WitOracleDataLib": "WitOracleDataLib"},
          "core": {"WitOracle": "WitOracleTrustableDefault"},
          "apps": {"WitRandomness": "WitRandomnessV3"}
        },
        "<ecosystem>": {...},
        "<ecosystem>:<network>": {...}
      },
      "specs": {
        "default": {"WitOracle": {"base_deps": [...], "base_libs": [...], "vanity": 1}},
        ...
      },
      "descriptors": {"WitOracleTrustableDefault": {"ancestry": [...], "upgradable": true}},
      "domain_deps": {"apps": ["WitOracle"]},
      "order": {"core": ["WitOracleRadonRegistry", "WitOracle"]}
    }

"artifacts" and "specs" are resolved per network by deep-merging the
"default" layer, the ecosystem layer (network name up to the first ":") and
the network layer, in that order.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .constants import DEFAULT_DOMAIN_ORDER, DEFAULT_LAYER, DEPLOYER_DOMAIN, LIBS_DOMAIN

logger = logging.getLogger(__name__)

SPEC_KEYS = ("base_deps", "base_libs", "signer", "vanity", "immutables", "mutables")


def get_realm_network(network: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Split a network name into (ecosystem, network).

    "polygon:amoy" -> ("polygon", "polygon:amoy"); "mainnet" -> (None, "mainnet")
    """
    network = network.lower() if network else "development"
    if ":" in network:
        return network.split(":")[0], network
    return None, network


def is_dry_run(network: str) -> bool:
    """
    True for local test networks, forks and development chains.

    Forks are recognized by a "-fork" second segment ("mainnet-fork",
    "polygon:amoy-fork-2"). The registry is never written on dry-run networks.
    """
    parts = network.split("-")
    return network == "test" or (len(parts) > 1 and parts[1] == "fork") or parts[0] == "develop"


def deep_merge(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge mappings left to right; nested mappings merge, anything else is replaced.

    Inputs are never mutated.
    """
    result: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
    return result


@dataclass
class NetworkSettings:
    """Artifacts and deployment specs as they apply to one network."""

    network: str
    artifacts: Dict[str, Any] = field(default_factory=dict)
    specs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    domain_deps: Dict[str, List[str]] = field(default_factory=dict)
    order: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return is_dry_run(self.network)

    @property
    def deployer_artifact(self) -> Optional[str]:
        return self.artifacts.get(DEPLOYER_DOMAIN)

    @property
    def libs(self) -> Dict[str, str]:
        return dict(self.artifacts.get(LIBS_DOMAIN, {}))

    def domains(self) -> List[str]:
        """
        Framework domains in deployment order.

        Known domains ("core", "apps") come first, any others follow in
        declaration order. Libraries and the deployer are not framework domains.
        """
        declared = [
            name
            for name, value in self.artifacts.items()
            if isinstance(value, Mapping) and name not in (LIBS_DOMAIN, DEPLOYER_DOMAIN)
        ]
        ordered = [d for d in DEFAULT_DOMAIN_ORDER if d in declared]
        return ordered + [d for d in declared if d not in ordered]

    def bases(self, domain: str) -> List[str]:
        """Base names of a domain; those listed under "order" go first."""
        names = list(self.artifacts.get(domain, {}).keys())
        first = [name for name in self.order.get(domain, []) if name in names]
        return first + [name for name in names if name not in first]

    def impl_of(self, domain: str, base: str) -> str:
        """
        Implementation artifact currently targeted for a base.

        Raises:
            KeyError: If the base is not declared in the domain
        """
        return self.artifacts[domain][base]

    def find_domain(self, base: str) -> Optional[str]:
        """First framework domain declaring a base, or None."""
        for domain in self.domains():
            if base in self.artifacts.get(domain, {}):
                return domain
        return None

    def spec_settings(self, name: str, domain: Optional[str] = None) -> Dict[str, Any]:
        """
        Deployment settings declared for one ancestor name.

        Domain-wide dependencies are prepended to the base_deps of the bases
        declared in that domain.
        """
        settings = copy.deepcopy(self.specs.get(name, {}))
        if domain and name in self.artifacts.get(domain, {}):
            extra = [d for d in self.domain_deps.get(domain, []) if d != name]
            if extra:
                own = settings.get("base_deps", [])
                settings["base_deps"] = extra + [d for d in own if d not in extra]
        return settings


class FrameworkSettings:
    """Raw settings document, resolved per network on demand."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data or {})

    @classmethod
    def from_file(cls, path: Union[Path, str]) -> "FrameworkSettings":
        return cls(load_settings(path))

    @property
    def descriptors(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._data.get("descriptors", {}))

    def _layered(self, section: str, network: str) -> Dict[str, Any]:
        ecosystem, network = get_realm_network(network)
        layers = self._data.get(section, {})
        return deep_merge(
            layers.get(DEFAULT_LAYER),
            layers.get(ecosystem) if ecosystem else None,
            layers.get(network),
        )

    def for_network(self, network: str) -> NetworkSettings:
        """
        Resolve artifacts and specs for a network.

        Args:
            network: Network name, optionally prefixed by "<ecosystem>:"

        Returns:
            NetworkSettings
        """
        _, network = get_realm_network(network)
        specs = self._layered("specs", network)
        for name, entry in specs.items():
            unknown = set(entry) - set(SPEC_KEYS)
            if unknown:
                logger.warning("Ignoring unknown spec keys for %s: %s", name, sorted(unknown))
        return NetworkSettings(
            network=network,
            artifacts=self._layered("artifacts", network),
            specs=specs,
            domain_deps=copy.deepcopy(self._data.get("domain_deps", {})),
            order=copy.deepcopy(self._data.get("order", {})),
        )


def load_settings(path: Union[Path, str]) -> Dict[str, Any]:
    """
    Load a settings JSON document.

    Args:
        path: Path to settings JSON file

    Returns:
        Settings dictionary

    Raises:
        FileNotFoundError: If the file does not exist
    """
    with open(path) as f:
        return json.load(f)
