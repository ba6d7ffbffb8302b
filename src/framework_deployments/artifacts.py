"""Compiled artifact loading for framework-deployments library."""

import json
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .constants import TRUSTABLE_MARKER, UPGRADABLE_MARKERS
from .exceptions import PreconditionError
from .types import ContractArtifact

logger = logging.getLogger(__name__)

_CAPITAL_SPLIT = re.compile(r"(?=[A-Z])")


class ArtifactFormat(Enum):
    """
    Compiled artifact file formats.

    - TRUFFLE: top-level "contractName", "abi", hex "bytecode"
    - HARDHAT: like truffle, tagged with "_format": "hh-sol-artifact-1"
    - FOUNDRY: "bytecode" is an object holding the hex under "object"
    """

    TRUFFLE = "truffle"
    HARDHAT = "hardhat"
    FOUNDRY = "foundry"


def detect_artifact_format(data: Mapping[str, Any]) -> Optional[ArtifactFormat]:
    """
    Detect which compiler toolchain produced an artifact.

    Args:
        data: Parsed artifact JSON

    Returns:
        ArtifactFormat, or None if the document is not a contract artifact
    """
    if "abi" not in data or "bytecode" not in data:
        return None
    if isinstance(data["bytecode"], dict):
        return ArtifactFormat.FOUNDRY
    if str(data.get("_format", "")).startswith("hh-sol-artifact"):
        return ArtifactFormat.HARDHAT
    return ArtifactFormat.TRUFFLE


def infer_ancestry(name: str) -> List[str]:
    """
    Infer abstract ancestors from a CamelCase implementation name.

    "WitOracleTrustableDefault" -> ["Wit", "WitOracle", "WitOracleTrustable"]

    Only used when no ancestry is declared for an artifact.
    """
    ancestry: List[str] = []
    prefix = ""
    for part in _CAPITAL_SPLIT.split(name):
        if not part:
            continue
        prefix += part
        if prefix != name:
            ancestry.append(prefix)
    return ancestry


def describe_artifact(
    name: str,
    bytecode: str,
    abi: Optional[List[Dict[str, Any]]] = None,
    descriptor: Optional[Mapping[str, Any]] = None,
) -> ContractArtifact:
    """
    Build a ContractArtifact, taking traits from a descriptor when declared.

    Args:
        name: Artifact name
        bytecode: Hex init code
        abi: Contract ABI
        descriptor: Optional {"ancestry": [...], "upgradable": bool, "trustable": bool}

    Returns:
        ContractArtifact
    """
    descriptor = descriptor or {}
    ancestry = descriptor.get("ancestry")
    if ancestry is None:
        ancestry = infer_ancestry(name)
    upgradable = descriptor.get("upgradable")
    if upgradable is None:
        upgradable = any(marker in name for marker in UPGRADABLE_MARKERS)
    trustable = descriptor.get("trustable")
    if trustable is None:
        trustable = TRUSTABLE_MARKER in name

    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return ContractArtifact(
        name=name,
        bytecode=bytecode,
        abi=list(abi or []),
        is_upgradable=bool(upgradable),
        is_trustable=bool(trustable),
        ancestry=list(ancestry),
    )


def parse_artifact_file(
    file_path: Path, descriptors: Optional[Mapping[str, Mapping[str, Any]]] = None
) -> Optional[ContractArtifact]:
    """
    Parse a compiled artifact JSON file.

    Args:
        file_path: Path to {ContractName}.json
        descriptors: Declared traits by artifact name

    Returns:
        ContractArtifact, or None if the file is not a contract artifact
    """
    with open(file_path) as f:
        data = json.load(f)

    artifact_format = detect_artifact_format(data)
    match artifact_format:
        case ArtifactFormat.TRUFFLE | ArtifactFormat.HARDHAT:
            bytecode = data["bytecode"] or "0x"
        case ArtifactFormat.FOUNDRY:
            bytecode = data["bytecode"].get("object") or "0x"
        case _:
            return None

    name = data.get("contractName") or file_path.stem
    return describe_artifact(name, bytecode, data["abi"], (descriptors or {}).get(name))


class ArtifactRegistry:
    """Artifacts by name, populated once at startup."""

    def __init__(self, artifacts: Optional[Mapping[str, ContractArtifact]] = None):
        self._artifacts: Dict[str, ContractArtifact] = dict(artifacts or {})

    @classmethod
    def from_directory(
        cls,
        build_dir: Union[Path, str],
        descriptors: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> "ArtifactRegistry":
        """
        Load every contract artifact found under a build directory.

        Args:
            build_dir: Directory searched recursively for *.json artifacts
            descriptors: Declared traits by artifact name

        Returns:
            ArtifactRegistry

        Raises:
            PreconditionError: If the build directory does not exist
        """
        build_dir = Path(build_dir)
        if not build_dir.is_dir():
            raise PreconditionError(f"Build directory not found: {build_dir}")

        descriptors = descriptors or {}
        registry = cls()
        for file_path in sorted(build_dir.rglob("*.json")):
            try:
                artifact = parse_artifact_file(file_path, descriptors)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON file %s", file_path)
                continue
            if artifact is None:
                continue
            registry.register(artifact)

        logger.debug("Loaded %d artifacts from %s", len(registry), build_dir)
        return registry

    def register(self, artifact: ContractArtifact) -> None:
        self._artifacts[artifact.name] = artifact

    def get(self, name: str) -> ContractArtifact:
        """
        Get an artifact by name.

        Raises:
            PreconditionError: If no such artifact was loaded
        """
        try:
            return self._artifacts[name]
        except KeyError:
            raise PreconditionError(f"Unknown artifact: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._artifacts

    def __iter__(self) -> Iterator[str]:
        return iter(self._artifacts)

    def __len__(self) -> int:
        return len(self._artifacts)
