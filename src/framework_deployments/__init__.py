"""
framework-deployments: deterministic deployment and upgrade of multi-contract EVM frameworks
"""

import logging
from importlib.metadata import PackageNotFoundError, version

from .addresses import determine_addr, determine_proxy_addr, salt_from_vanity
from .artifacts import ArtifactRegistry
from .deployments import DeploymentOrchestrator, decide_upgrade, deploy_framework
from .exceptions import (
    AddressMismatchError,
    DependencyCycleError,
    DeploymentError,
    MissingLibraryError,
    PreconditionError,
    StaleLocalChangesWarning,
    TransactionFailure,
)
from .linker import link_libraries
from .provider import ChainProvider, JsonRpcProvider
from .registry import AddressRegistry, InMemoryAddressRegistry, JsonFileAddressRegistry
from .settings import FrameworkSettings, NetworkSettings
from .specs import DependencySpecResolver
from .types import Action, ContractArtifact, DeploymentOutcome, DeploymentSpec, UpgradeDecision

try:
    __version__ = version("framework-deployments")
except PackageNotFoundError:
    __version__ = None

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "deploy_framework",
    "DeploymentOrchestrator",
    "decide_upgrade",
    "DependencySpecResolver",
    "determine_addr",
    "determine_proxy_addr",
    "salt_from_vanity",
    "link_libraries",
    "ArtifactRegistry",
    "FrameworkSettings",
    "NetworkSettings",
    "AddressRegistry",
    "InMemoryAddressRegistry",
    "JsonFileAddressRegistry",
    "ChainProvider",
    "JsonRpcProvider",
    "Action",
    "ContractArtifact",
    "DeploymentOutcome",
    "DeploymentSpec",
    "UpgradeDecision",
    "DeploymentError",
    "PreconditionError",
    "MissingLibraryError",
    "DependencyCycleError",
    "AddressMismatchError",
    "TransactionFailure",
    "StaleLocalChangesWarning",
]
