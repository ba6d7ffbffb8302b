"""Deployment spec resolution for framework-deployments library."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from eth_utils import to_checksum_address

from .addresses import determine_addr, determine_proxy_addr, salt_from_vanity
from .artifacts import ArtifactRegistry
from .exceptions import DependencyCycleError, PreconditionError
from .linker import link_libraries
from .settings import NetworkSettings
from .types import ContractArtifact, DeploymentSpec, TypedArgs
from .versions import version_tag_for, version_tag_to_bytes32

logger = logging.getLogger(__name__)


def _union(current: List[str], extra: Optional[Iterable[str]]) -> List[str]:
    merged = list(current)
    for item in extra or []:
        if item not in merged:
            merged.append(item)
    return merged


def _typed_args(entry: Optional[Mapping[str, Any]]) -> TypedArgs:
    if not entry:
        return TypedArgs()
    return TypedArgs(list(entry.get("types", [])), list(entry.get("values", [])))


class DependencySpecResolver:
    """
    Merges per-ancestor settings into a DeploymentSpec and resolves dependency addresses.

    Addresses are computed locally from the deployer factory address, so
    dependencies can be embedded into constructor args before they exist.
    Immutable dependencies already settled on chain are embedded at their
    settled address instead, which may differ from their current prediction.
    """

    def __init__(
        self,
        settings: NetworkSettings,
        artifacts: ArtifactRegistry,
        deployer: str,
        build: str,
        signer: str,
        libraries: Optional[Mapping[str, str]] = None,
        resolved: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            settings: Settings resolved for the target network
            artifacts: Loaded artifacts
            deployer: Address of the deterministic-deployment factory
            build: Build version, "{semver}-{commit}"
            signer: Default transaction sender
            libraries: Library artifact name -> deployed address
            resolved: Base name -> address already settled on chain; read live,
                      so entries added later are seen by later resolutions
        """
        self.settings = settings
        self.artifacts = artifacts
        self.deployer = to_checksum_address(deployer)
        self.build = build
        self.signer = signer
        self.libraries: Dict[str, str] = dict(libraries or {})
        self.resolved: Mapping[str, str] = resolved if resolved is not None else {}

    def set_library(self, name: str, address: str) -> None:
        self.libraries[name] = address

    def resolve(
        self,
        domain: str,
        impl: str,
        base: str,
        ancestors: Tuple[str, ...] = (),
    ) -> DeploymentSpec:
        """
        Build the deployment spec of an implementation artifact.

        Walks the artifact's lineage from `base` down to `impl`, merging the
        settings declared for every ancestor on the way: dependencies and
        libraries are unioned, signer and (immutable targets only) vanity are
        taken from the latest match, immutables and mutables are appended.

        Args:
            domain: Framework domain the base belongs to
            impl: Implementation artifact name
            base: Base name the implementation is deployed as
            ancestors: Bases already being resolved up the dependency chain

        Returns:
            DeploymentSpec with constructor args ready to encode

        Raises:
            DependencyCycleError: If base is already among the ancestors
            PreconditionError: If impl does not descend from base, or is unknown
        """
        if base in ancestors:
            cycle = (*ancestors, base)
            raise DependencyCycleError(
                f"Dependencies loop detected: '{base}' in {list(ancestors)}", cycle=cycle
            )

        artifact = self.artifacts.get(impl)
        lineage = artifact.lineage()
        if base not in lineage:
            raise PreconditionError(f"Artifact '{impl}' does not descend from '{base}'")

        base_settings = self.settings.spec_settings(base, domain)
        spec = DeploymentSpec(
            base=base,
            target=impl,
            signer=self.signer,
            is_upgradable=artifact.is_upgradable,
            vanity=base_settings.get("vanity") or 0,
        )

        for name in lineage[lineage.index(base) :]:
            entry = self.settings.spec_settings(name, domain)
            if not entry:
                continue
            spec.base_dependencies = _union(spec.base_dependencies, entry.get("base_deps"))
            spec.required_libraries = _union(spec.required_libraries, entry.get("base_libs"))
            if entry.get("signer") and not self.settings.dry_run:
                spec.signer = entry["signer"]
            if entry.get("vanity") and not artifact.is_upgradable:
                spec.vanity = entry["vanity"]
            spec.immutable_args.extend(_typed_args(entry.get("immutables")))
            spec.mutable_args.extend(_typed_args(entry.get("mutables")))

        for dependency in spec.base_dependencies:
            spec.intrinsic_args.types.append("address")
            spec.intrinsic_args.values.append(
                self._dependency_address(domain, dependency, (*ancestors, base))
            )

        if artifact.is_upgradable:
            spec.version_tag = version_tag_for(self.build, self.linked_bytecode(spec))
            spec.intrinsic_args.types.append("bytes32")
            spec.intrinsic_args.values.append(version_tag_to_bytes32(spec.version_tag))
            if not artifact.is_trustable:
                spec.intrinsic_args.types.append("bool")
                spec.intrinsic_args.values.append(True)

        return spec

    def _dependency_address(self, domain: str, dependency: str, ancestors: Tuple[str, ...]) -> str:
        dep_domain = self.settings.find_domain(dependency) or domain
        try:
            dep_impl = self.settings.impl_of(dep_domain, dependency)
        except KeyError:
            raise PreconditionError(
                f"Dependency '{dependency}' is not declared in any domain"
            ) from None

        if self.artifacts.get(dep_impl).is_upgradable:
            vanity = self.settings.spec_settings(dependency).get("vanity") or 0
            return determine_proxy_addr(self.deployer, salt_from_vanity(vanity))

        dep_spec = self.resolve(dep_domain, dep_impl, dependency, ancestors)
        predicted = self.predict_address(dep_spec)
        settled = self.resolved.get(dependency)
        if settled and settled.lower() != predicted.lower():
            logger.info(
                "   > dependency '%s' kept at %s (predicted %s)", dependency, settled, predicted
            )
            return to_checksum_address(settled)
        return predicted

    def library_addresses(self, spec: DeploymentSpec) -> Dict[str, str]:
        """Library artifact name -> address, for the libraries a spec requires."""
        libs = self.settings.libs
        resolved: Dict[str, str] = {}
        for base in spec.required_libraries:
            impl = libs.get(base, base)
            if impl in self.libraries:
                resolved[impl] = self.libraries[impl]
        return resolved

    def linked_bytecode(self, spec: DeploymentSpec) -> str:
        """
        Init code of the spec's target, library placeholders resolved, no constructor args.

        Raises:
            PreconditionError: If the target is abstract
            MissingLibraryError: If a library address is unknown
        """
        artifact: ContractArtifact = self.artifacts.get(spec.target)
        if artifact.is_abstract:
            raise PreconditionError(f"Cannot deploy abstract artifact {spec.target}")
        return link_libraries(artifact.bytecode, self.library_addresses(spec))

    def init_code(self, spec: DeploymentSpec) -> bytes:
        """Linked bytecode followed by ABI-encoded constructor args."""
        code = bytes.fromhex(self.linked_bytecode(spec)[2:])
        return code + spec.constructor_args.encode()

    def predict_address(self, spec: DeploymentSpec) -> str:
        """CREATE2 address of the spec's target, deployed through the factory."""
        return determine_addr(self.deployer, spec.salt, self.init_code(spec))

    def predict_proxy_address(self, spec: DeploymentSpec) -> str:
        """Address of the proxy for the spec's base."""
        return determine_proxy_addr(self.deployer, spec.salt)
