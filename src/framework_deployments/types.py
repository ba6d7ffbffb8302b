"""Data types and dataclasses for framework-deployments library."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from eth_abi import encode

from .addresses import salt_from_vanity


@dataclass
class TypedArgs:
    """ABI types and values to be encoded side by side."""

    types: List[str] = field(default_factory=list)
    values: List[Any] = field(default_factory=list)

    def extend(self, other: Optional["TypedArgs"]) -> None:
        if other is None:
            return
        self.types.extend(other.types)
        self.values.extend(other.values)

    def copy(self) -> "TypedArgs":
        return TypedArgs(list(self.types), list(self.values))

    def encode(self) -> bytes:
        """
        ABI-encode values against types.

        Whitespace inside tuple types (e.g. "(uint32, uint32)") is tolerated.

        Returns:
            Encoded bytes, empty if there are no types
        """
        if not self.types:
            return b""
        types = ["".join(t.split()) for t in self.types]
        return encode(types, self.values)

    def __len__(self) -> int:
        return len(self.types)


@dataclass
class ContractArtifact:
    """A compiled contract and its declared deployment traits."""

    name: str
    bytecode: str  # Hex init code, may contain library placeholders
    abi: List[Dict[str, Any]] = field(default_factory=list)
    is_upgradable: bool = False
    is_trustable: bool = False
    ancestry: List[str] = field(default_factory=list)  # Abstract ancestors, base first

    @property
    def is_abstract(self) -> bool:
        code = self.bytecode[2:] if self.bytecode.startswith("0x") else self.bytecode
        return len(code) == 0

    def lineage(self) -> List[str]:
        """Ancestry followed by the artifact itself, without repetitions."""
        names: List[str] = []
        for name in [*self.ancestry, self.name]:
            if name not in names:
                names.append(name)
        return names


@dataclass
class DeploymentSpec:
    """Deployment settings merged along an artifact's ancestry. Never persisted."""

    base: str
    target: str
    signer: str
    is_upgradable: bool = False
    vanity: int = 0
    base_dependencies: List[str] = field(default_factory=list)
    required_libraries: List[str] = field(default_factory=list)
    immutable_args: TypedArgs = field(default_factory=TypedArgs)
    intrinsic_args: TypedArgs = field(default_factory=TypedArgs)
    mutable_args: TypedArgs = field(default_factory=TypedArgs)
    version_tag: Optional[str] = None

    @property
    def constructor_args(self) -> TypedArgs:
        """
        Immutables, then intrinsics, then (immutable targets only) mutables.

        Upgradable targets receive their mutables through the proxy initializer.
        """
        args = self.immutable_args.copy()
        args.extend(self.intrinsic_args)
        if not self.is_upgradable:
            args.extend(self.mutable_args)
        return args

    @property
    def salt(self) -> bytes:
        return salt_from_vanity(self.vanity)


@dataclass
class ProxyRecord:
    """Live state of a proxy during an upgrade decision."""

    address: str
    implementation: str  # Read live from chain
    target: str  # Predicted logic address, not yet confirmed


class Action(Enum):
    """
    Decision taken for an artifact during a run.

    Value strings are what gets logged and reported.
    """

    SKIPPED = "skipped"
    DEPLOYED = "deployed"
    UP_TO_DATE = "up-to-date"
    DEFERRED = "deferred"
    UPGRADED = "upgraded"


@dataclass
class DeploymentOutcome:
    """What happened to one artifact during a run."""

    domain: str
    base: str
    target: str
    action: Action
    address: Optional[str] = None  # Proxy address for upgradable bases
    implementation: Optional[str] = None  # Logic address behind a proxy
    version: Optional[str] = None
    legacy_version: Optional[str] = None
    transactions: List[str] = field(default_factory=list)


class UpgradeDecision(Enum):
    """Outcome of comparing a proxy's live logic version with the target version."""

    UP_TO_DATE = "up-to-date"
    DEFERRED = "deferred"
    NEEDS_UPGRADE = "needs-upgrade"
