"""Shared pytest fixtures for framework-deployments tests."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from framework_deployments.addresses import determine_addr, determine_proxy_addr
from framework_deployments.artifacts import ArtifactRegistry, describe_artifact
from framework_deployments.exceptions import TransactionFailure
from framework_deployments.provider import ChainProvider
from framework_deployments.registry import InMemoryAddressRegistry
from framework_deployments.settings import FrameworkSettings

NETWORK = "ethereum:sepolia"
SIGNER = "0x" + "5" * 40
FACTORY_ADDRESS = to_checksum_address("0x" + "fa" * 20)
SEMVER = "0.1.0"
COMMIT = "abcdef1"

_VERSION_RE = re.compile(rb"\d\.\d\.\d-[0-9a-f]{7}-[0-9a-f]{7}")


def _selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


class FakeChain(ChainProvider):
    """
    In-memory chain emulating a deterministic-deployment factory and its proxies.

    Contract creation through the factory stores the init code as runtime code,
    so version() can be answered by scanning it for a version tag.
    """

    SELECTORS = {
        _selector("determineAddr(bytes,bytes32)"): "determineAddr",
        _selector("determineProxyAddr(bytes32)"): "determineProxyAddr",
        _selector("deploy(bytes,bytes32)"): "deploy",
        _selector("proxify(bytes32,address,bytes)"): "proxify",
        _selector("implementation()"): "implementation",
        _selector("upgradeTo(address,bytes)"): "upgradeTo",
        _selector("version()"): "version",
        _selector("class()"): "class",
    }

    def __init__(self, factory_address: Optional[str] = FACTORY_ADDRESS):
        self.code: Dict[str, bytes] = {}
        self.implementations: Dict[str, str] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.factory_address = factory_address
        self.lie_about_addresses = False
        self.revert_next = False
        if factory_address:
            self.code[factory_address.lower()] = b"\x01factory"

    def _tx_hash(self) -> str:
        return "0x" + keccak(str(len(self.transactions)).encode()).hex()

    def set_code(self, address: str, code: bytes) -> None:
        self.code[address.lower()] = code

    def get_code(self, address: str) -> bytes:
        return self.code.get(address.lower(), b"")

    def get_balance(self, address: str) -> int:
        return 10**18

    def call(self, tx: Dict[str, Any]) -> bytes:
        to = tx["to"].lower()
        data = bytes.fromhex(tx["data"][2:])
        method = self.SELECTORS[data[:4]]
        payload = data[4:]

        if method == "determineAddr":
            init_code, salt = decode(["bytes", "bytes32"], payload)
            address = determine_addr(to, salt, init_code)
            if self.lie_about_addresses:
                address = "0x" + "be" * 20
            return encode(["address"], [address])
        if method == "determineProxyAddr":
            (salt,) = decode(["bytes32"], payload)
            return encode(["address"], [determine_proxy_addr(to, salt)])
        if method == "implementation":
            return encode(["address"], [self.implementations.get(to, "0x" + "00" * 20)])
        if method == "version":
            match = _VERSION_RE.search(self.code.get(to, b""))
            if not match:
                return b""
            return encode(["string"], [match.group(0).decode()])
        if method == "class":
            return encode(["string"], ["Fake"])
        raise AssertionError(f"unexpected call {method}")

    def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        if self.revert_next:
            self.revert_next = False
            raise TransactionFailure("Transaction reverted: fake")

        self.transactions.append(tx)
        receipt: Dict[str, Any] = {"transactionHash": self._tx_hash(), "status": "0x1"}
        data = bytes.fromhex(tx["data"][2:])

        if "to" not in tx:
            address = to_checksum_address(keccak(data + bytes(len(self.transactions)))[-20:])
            self.code[address.lower()] = data
            receipt["contractAddress"] = address
            return receipt

        to = tx["to"].lower()
        method = self.SELECTORS[data[:4]]
        payload = data[4:]
        if method == "deploy":
            init_code, salt = decode(["bytes", "bytes32"], payload)
            address = determine_addr(to, salt, init_code)
            self.code[address.lower()] = init_code
        elif method == "proxify":
            salt, logic, _ = decode(["bytes32", "address", "bytes"], payload)
            address = determine_proxy_addr(to, salt)
            self.code[address.lower()] = b"\x02proxy"
            self.implementations[address.lower()] = to_checksum_address(logic)
        elif method == "upgradeTo":
            logic, _ = decode(["address", "bytes"], payload)
            self.implementations[to] = to_checksum_address(logic)
        else:
            raise AssertionError(f"unexpected transaction {method}")
        return receipt


def _settings_document() -> Dict[str, Any]:
    return {
        "artifacts": {
            "default": {
                "deployer": "WitnetDeployer",
                "libs": {"WitOracleDataLib": "WitOracleDataLib"},
                "core": {
                    "WitOracleRadonRegistry": "WitOracleRadonRegistryUpgradableDefault",
                    "WitOracle": "WitOracleTrustableDefault",
                },
                "apps": {
                    "WitPriceFeeds": "WitPriceFeedsUpgradable",
                    "WitRandomness": "WitRandomnessV21",
                },
            },
        },
        "specs": {
            "default": {
                "WitOracle": {
                    "base_deps": ["WitOracleRadonRegistry"],
                    "base_libs": ["WitOracleDataLib"],
                    "vanity": 1,
                },
                "WitOracleRadonRegistry": {"vanity": 2},
                "WitPriceFeeds": {"vanity": 3},
                "WitRandomness": {
                    "immutables": {"types": ["address"], "values": [SIGNER]},
                },
            },
        },
        "descriptors": {
            "WitOracleTrustableDefault": {
                "ancestry": ["WitOracle", "WitOracleTrustable"],
                "upgradable": True,
                "trustable": True,
            },
            "WitOracleRadonRegistryUpgradableDefault": {
                "ancestry": ["WitOracleRadonRegistry"],
                "upgradable": True,
            },
            "WitPriceFeedsUpgradable": {"ancestry": ["WitPriceFeeds"], "upgradable": True},
            "WitRandomnessV21": {"ancestry": ["WitRandomness"], "upgradable": False},
            "WitRandomnessV2": {"ancestry": ["WitRandomness"], "upgradable": False},
        },
        "domain_deps": {"apps": ["WitOracle"]},
        "order": {"core": ["WitOracleRadonRegistry", "WitOracle"]},
    }


def _bytecode(tag: str, placeholder: str = "") -> str:
    return "0x6080" + tag.encode().hex() + placeholder + "00"


def _artifacts(settings: FrameworkSettings, oracle_tag: str = "oracle") -> ArtifactRegistry:
    descriptors = settings.descriptors
    oracle_lib_placeholder = "__WitOracleDataLib".ljust(40, "_")
    entries = {
        "WitnetDeployer": _bytecode("deployer"),
        "WitOracleDataLib": _bytecode("datalib"),
        "WitOracleTrustableDefault": _bytecode(oracle_tag, oracle_lib_placeholder),
        "WitOracleRadonRegistryUpgradableDefault": _bytecode("registry"),
        "WitPriceFeedsUpgradable": _bytecode("pricefeeds"),
        "WitRandomnessV21": _bytecode("randomness21"),
        "WitRandomnessV2": _bytecode("randomness2"),
        "WitOracle": "0x",
    }
    registry = ArtifactRegistry()
    for name, bytecode in entries.items():
        registry.register(describe_artifact(name, bytecode, [], descriptors.get(name)))
    return registry


@pytest.fixture
def settings_document() -> Dict[str, Any]:
    """Return a raw settings document for a small oracle framework."""
    return _settings_document()


@pytest.fixture
def framework_settings(settings_document: Dict[str, Any]) -> FrameworkSettings:
    return FrameworkSettings(settings_document)


@pytest.fixture
def network_settings(framework_settings: FrameworkSettings):
    return framework_settings.for_network(NETWORK)


@pytest.fixture
def artifacts(framework_settings: FrameworkSettings) -> ArtifactRegistry:
    return _artifacts(framework_settings)


@pytest.fixture
def make_artifacts(framework_settings: FrameworkSettings):
    """Return a factory building artifacts with a custom oracle bytecode."""

    def _make(oracle_tag: str = "oracle") -> ArtifactRegistry:
        return _artifacts(framework_settings, oracle_tag)

    return _make


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def address_registry() -> InMemoryAddressRegistry:
    """Registry with the deployer factory already on file."""
    return InMemoryAddressRegistry({NETWORK: {"deployer": {"WitnetDeployer": FACTORY_ADDRESS}}})


@pytest.fixture
def settings_file(tmp_path: Path, settings_document: Dict[str, Any]) -> Path:
    """Write the settings document to a temporary JSON file."""
    path = tmp_path / "settings.json"
    with open(path, "w") as f:
        json.dump(settings_document, f, indent=2)
    return path


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """Create a temporary build directory with truffle and foundry artifacts."""
    build = tmp_path / "build" / "contracts"
    build.mkdir(parents=True)
    (build / "WitOracleDataLib.json").write_text(
        json.dumps({"contractName": "WitOracleDataLib", "abi": [], "bytecode": "0x600100"})
    )
    (build / "WitPriceFeedsUpgradable.json").write_text(
        json.dumps({"abi": [], "bytecode": {"object": "0x600200"}})
    )
    (build / "notes.json").write_text(json.dumps({"hello": "world"}))
    (build / "broken.json").write_text("{ invalid json")
    return build
