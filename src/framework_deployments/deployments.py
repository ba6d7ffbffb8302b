"""Main API for framework-deployments library."""

import logging
import os
import warnings
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .addresses import determine_addr, determine_proxy_addr, is_null_address, same_address, salt_from_vanity
from .artifacts import ArtifactRegistry
from .constants import (
    CORE_DOMAIN,
    DEFAULT_RPC_ENV,
    DEPLOYER_DOMAIN,
    LIBS_DOMAIN,
    ZERO_SALT,
)
from .contracts import DeployerFactory, LogicContract, UpgradableProxy
from .exceptions import AddressMismatchError, PreconditionError, StaleLocalChangesWarning
from .linker import find_placeholders, link_libraries
from .provider import ChainProvider, JsonRpcProvider
from .registry import AddressRegistry, JsonFileAddressRegistry
from .settings import FrameworkSettings, NetworkSettings
from .specs import DependencySpecResolver
from .types import Action, DeploymentOutcome, DeploymentSpec, ProxyRecord, UpgradeDecision
from .versions import (
    build_version,
    read_last_commit,
    version_codehash_of,
    version_last_commit_of,
    version_tag_of,
)

logger = logging.getLogger(__name__)


def decide_upgrade(target_version: str, legacy_version: str, forced: bool) -> UpgradeDecision:
    """
    Decide whether a proxy must be repointed to a freshly built implementation.

    Only the codehash fragments are compared: two builds of identical bytecode
    are equivalent whatever their semver or commit fragments say.

    Args:
        target_version: Version tag of the would-be-deployed implementation
        legacy_version: Version tag reported by the proxy's current implementation
        forced: Whether an upgrade was requested ("upgrade all" or explicit selection)

    Returns:
        UpgradeDecision
    """
    target_codehash = version_codehash_of(target_version)
    if target_codehash and target_codehash == version_codehash_of(legacy_version):
        return UpgradeDecision.UP_TO_DATE
    if forced:
        return UpgradeDecision.NEEDS_UPGRADE
    return UpgradeDecision.DEFERRED


class DeploymentOrchestrator:
    """
    Decides, per framework artifact, whether to skip, deploy or upgrade it.

    Artifacts are processed strictly in order: the deployer factory, then
    libraries, then every framework domain base by base. The registry is
    flushed after each deployment so an interrupted run can be resumed.
    """

    def __init__(
        self,
        settings: NetworkSettings,
        artifacts: ArtifactRegistry,
        registry: AddressRegistry,
        provider: ChainProvider,
        signer: str,
        build: str,
        selection: Iterable[str] = (),
        upgrade_all: bool = False,
        include_domains: Iterable[str] = (),
    ):
        """
        Args:
            settings: Settings resolved for the target network
            artifacts: Loaded artifacts
            registry: Deployed address registry
            provider: Chain access
            signer: Default transaction sender
            build: Build version, "{semver}-{commit}"
            selection: Artifact names (bases or implementations) explicitly selected
            upgrade_all: Upgrade every artifact whose bytecode changed
            include_domains: Non-core domains whose undeployed bases should be deployed
        """
        self.settings = settings
        self.network = settings.network
        self.artifacts = artifacts
        self.registry = registry
        self.provider = provider
        self.signer = signer
        self.build = build
        self.selection = set(selection)
        self.upgrade_all = upgrade_all
        self.include_domains = set(include_domains)

        self.factory: Optional[DeployerFactory] = None
        self.resolver: Optional[DependencySpecResolver] = None
        self.resolved: Dict[str, str] = {}
        self.outcomes: List[DeploymentOutcome] = []

    def is_selected(self, *names: str) -> bool:
        return any(name in self.selection for name in names)

    def resolved_address(self, base: str) -> Optional[str]:
        """Address exposed to dependents for a base, once processed in this run."""
        return self.resolved.get(base)

    def run(self) -> List[DeploymentOutcome]:
        """
        Deploy or upgrade every framework artifact that needs it.

        Returns:
            One DeploymentOutcome per processed artifact

        Raises:
            AddressMismatchError: If an observed address differs from its prediction
            TransactionFailure: If the chain rejects a transaction
            MissingLibraryError: If bytecode references an unknown library
            DependencyCycleError: If dependencies loop
            PreconditionError: On malformed settings or artifacts
        """
        self.outcomes = []
        self.resolved = {}

        factory_address = self.ensure_deployer()
        self.factory = DeployerFactory(self.provider, factory_address)
        self.resolver = DependencySpecResolver(
            self.settings,
            self.artifacts,
            factory_address,
            self.build,
            self.signer,
            resolved=self.resolved,
        )

        self.deploy_libraries()
        for domain in self.settings.domains():
            self.deploy_domain(domain)

        return self.outcomes

    def _is_live(self, address: Optional[str]) -> bool:
        return not is_null_address(address) and self.provider.has_code(address)

    def _flush(self) -> None:
        if self.settings.dry_run:
            logger.debug("Dry-run network '%s': registry not written", self.network)
            return
        self.registry.flush()

    def _settle(self, domain: str, name: str, address: str) -> None:
        self.registry.set(self.network, domain, name, address)
        self._flush()

    def _record(self, outcome: DeploymentOutcome) -> DeploymentOutcome:
        logger.info(
            "%s '%s' (%s): %s%s",
            outcome.domain,
            outcome.base,
            outcome.target,
            outcome.action.value,
            f" @ {outcome.address}" if outcome.address else "",
        )
        self.outcomes.append(outcome)
        return outcome

    # -- deployer factory ---------------------------------------------------

    def ensure_deployer(self) -> str:
        """
        Get the deterministic-deployment factory, deploying it if none is on file.

        The factory itself is created with a plain transaction; its address
        depends on the signer's nonce and is recorded, never predicted.

        Returns:
            Factory address

        Raises:
            PreconditionError: If no factory is on file and no deployer artifact is configured
            AddressMismatchError: If no code is found where the factory was reported
        """
        impl = self.settings.deployer_artifact
        names = [impl] if impl else self.registry.names(self.network, DEPLOYER_DOMAIN)
        for name in names:
            address = self.registry.get(self.network, DEPLOYER_DOMAIN, name)
            if self._is_live(address):
                logger.info("Skipped '%s' @ %s", name, address)
                return address

        if not impl:
            raise PreconditionError(
                f"No deployer factory on file for network '{self.network}' "
                "and no deployer artifact configured"
            )

        artifact = self.artifacts.get(impl)
        if artifact.is_abstract:
            raise PreconditionError(f"Cannot deploy abstract artifact {impl}")
        bytecode = link_libraries(artifact.bytecode, {})

        logger.info("Deploying '%s'...", impl)
        receipt = self.provider.send_transaction({"from": self.signer, "data": bytecode})
        address = receipt.get("contractAddress")
        if not self._is_live(address):
            raise AddressMismatchError(
                f"Deployment of '{impl}' failed: no code at {address}", observed=str(address)
            )

        self._settle(DEPLOYER_DOMAIN, impl, address)
        self._record(
            DeploymentOutcome(
                domain=DEPLOYER_DOMAIN,
                base=impl,
                target=impl,
                action=Action.DEPLOYED,
                address=address,
                transactions=[receipt.get("transactionHash", "")],
            )
        )
        return address

    def _deploy_through_factory(
        self, name: str, init_code: bytes, salt: bytes, predicted: str, sender: str
    ) -> Dict[str, Any]:
        onchain = self.factory.determine_addr(init_code, salt)
        if not same_address(onchain, predicted):
            raise AddressMismatchError(
                f"Factory predicts {onchain} for '{name}', expected {predicted}",
                expected=predicted,
                observed=onchain,
            )

        logger.info("Deploying '%s'...", name)
        logger.info("   > account:            %s", sender)
        logger.info("   > balance:            %s wei", self.provider.get_balance(sender))
        receipt = self.factory.deploy(init_code, salt, sender)

        if not self.provider.has_code(predicted):
            raise AddressMismatchError(
                f"Deployment of '{name}' into {predicted} failed", expected=predicted
            )
        return receipt

    # -- libraries ----------------------------------------------------------

    def deploy_libraries(self) -> None:
        """Deploy (or recover) every library, making its address available for linking."""
        for base, impl in self.settings.libs.items():
            artifact = self.artifacts.get(impl)
            if artifact.is_abstract:
                raise PreconditionError(f"Cannot deploy abstract artifact {impl}")
            init_code = bytes.fromhex(link_libraries(artifact.bytecode, {})[2:])
            predicted = determine_addr(self.factory.address, ZERO_SALT, init_code)
            recorded = self.registry.get(self.network, LIBS_DOMAIN, impl)

            outcome = DeploymentOutcome(
                domain=LIBS_DOMAIN, base=base, target=impl, action=Action.UP_TO_DATE
            )
            if (
                self.is_selected(base, impl)
                or not self._is_live(recorded)
                or (self.upgrade_all and not same_address(predicted, recorded))
            ):
                if not self.provider.has_code(predicted):
                    receipt = self._deploy_through_factory(
                        impl, init_code, ZERO_SALT, predicted, self.signer
                    )
                    outcome.action = Action.DEPLOYED
                    outcome.transactions.append(receipt.get("transactionHash", ""))
                else:
                    logger.info("Recovered '%s' @ %s", impl, predicted)
                self._settle(LIBS_DOMAIN, impl, predicted)
                address = predicted
            else:
                address = recorded
                if not same_address(predicted, recorded):
                    logger.info("   > library address:  %s != %s", recorded, predicted)

            outcome.address = address
            self.resolver.set_library(impl, address)
            self._record(outcome)

    # -- framework domains --------------------------------------------------

    def deploy_domain(self, domain: str) -> None:
        """Process every base of a framework domain, in configured order."""
        for base in self.settings.bases(domain):
            impl = self.settings.impl_of(domain, base)
            artifact = self.artifacts.get(impl)
            if base not in artifact.lineage():
                raise PreconditionError(
                    f"Mismatching inheriting artifact names: {base} <! {impl}"
                )

            if artifact.is_upgradable:
                proxy_addr = self.registry.get(self.network, domain, base)
                if (
                    domain != CORE_DOMAIN
                    and not self.is_selected(base, impl)
                    and domain not in self.include_domains
                    and not self._is_live(proxy_addr)
                ):
                    self._record(
                        DeploymentOutcome(domain=domain, base=base, target=impl, action=Action.SKIPPED)
                    )
                    continue
                self.deploy_upgradable(domain, base, impl)
            else:
                self.deploy_immutable(domain, base, impl)

    def _check_dependencies(self, domain: str, spec: DeploymentSpec) -> None:
        """
        Refuse to embed an immutable dependency at an address other than the live one on file.

        Raises:
            PreconditionError: If a dependency not yet processed in this run is
                               live at a different address than the one embedded
        """
        for dependency, address in zip(spec.base_dependencies, spec.intrinsic_args.values):
            if dependency in self.resolved:
                continue
            dep_domain = self.settings.find_domain(dependency) or domain
            dep_impl = self.settings.impl_of(dep_domain, dependency)
            if self.artifacts.get(dep_impl).is_upgradable:
                continue
            recorded = self.registry.get(self.network, dep_domain, dep_impl)
            if self._is_live(recorded) and not same_address(recorded, address):
                raise PreconditionError(
                    f"Dependency '{dependency}' of '{spec.base}' is live at {recorded}, "
                    f"not at {address}: deploy '{dependency}' first"
                )

    def _deploy_target(
        self, domain: str, spec: DeploymentSpec, init_code: bytes, target_addr: str
    ) -> Dict[str, Any]:
        self._check_dependencies(domain, spec)
        args = spec.constructor_args
        for lib, address in self.resolver.library_addresses(spec).items():
            logger.info("   > external library:   %s @ %s", lib, address)
        if len(args):
            logger.info("   > constructor types:  %s", args.types)

        receipt = self._deploy_through_factory(spec.target, init_code, spec.salt, target_addr, spec.signer)
        self.registry.set_constructor_args(self.network, spec.target, args.encode().hex())
        self._flush()
        return receipt

    def _predict_proxy(self, spec: DeploymentSpec) -> str:
        predicted = determine_proxy_addr(self.factory.address, spec.salt)
        onchain = self.factory.determine_proxy_addr(spec.salt)
        if not same_address(onchain, predicted):
            raise AddressMismatchError(
                f"Factory predicts proxy {onchain} for '{spec.base}', expected {predicted}",
                expected=predicted,
                observed=onchain,
            )
        return predicted

    def _deploy_proxy(
        self, spec: DeploymentSpec, proxy_addr: str, target_addr: str, init_data: bytes
    ) -> Dict[str, Any]:
        logger.info("Deploying new proxy for '%s'...", spec.base)
        if init_data:
            logger.info("   > initdata types:     %s", spec.mutable_args.types)
        receipt = self.factory.proxify(spec.salt, target_addr, init_data, spec.signer)

        if not self.provider.has_code(proxy_addr):
            raise AddressMismatchError(
                f"Proxy was not deployed on the expected address: {proxy_addr}", expected=proxy_addr
            )
        return receipt

    def deploy_upgradable(self, domain: str, base: str, impl: str) -> DeploymentOutcome:
        """
        Deploy a proxied base, or decide whether its proxy must be upgraded.

        - No live proxy on file nor on chain: deploy the implementation (if
          needed) and a fresh proxy pointing at it.
        - Proxy found on chain but not on file: record it, then decide as below.
        - Live proxy whose implementation has the target's codehash: up to date.
        - Codehash differs, no "upgrade all" and base not selected: deferred.
        - Otherwise: deploy the implementation (if needed) and repoint the proxy.
        """
        spec = self.resolver.resolve(domain, impl, base)
        init_code = self.resolver.init_code(spec)
        target_addr = determine_addr(self.factory.address, spec.salt, init_code)
        init_data = spec.mutable_args.encode()
        outcome = DeploymentOutcome(
            domain=domain, base=base, target=impl, action=Action.DEPLOYED, version=spec.version_tag
        )

        proxy_addr = self.registry.get(self.network, domain, base)
        if not self._is_live(proxy_addr):
            predicted = self._predict_proxy(spec)
            if self.provider.has_code(predicted):
                logger.info("Recovered proxy of '%s' @ %s", base, predicted)
                self._settle(domain, base, predicted)
                proxy_addr = predicted
            else:
                if not self.provider.has_code(target_addr):
                    receipt = self._deploy_target(domain, spec, init_code, target_addr)
                    outcome.transactions.append(receipt.get("transactionHash", ""))
                receipt = self._deploy_proxy(spec, predicted, target_addr, init_data)
                outcome.transactions.append(receipt.get("transactionHash", ""))
                self._settle(domain, base, predicted)
                outcome.address = predicted
                outcome.implementation = target_addr
                self.resolved[base] = predicted
                return self._record(outcome)

        proxy = UpgradableProxy(self.provider, proxy_addr)
        record = ProxyRecord(address=proxy_addr, implementation=proxy.implementation(), target=target_addr)
        if is_null_address(record.implementation):
            legacy_version = ""
            decision = UpgradeDecision.NEEDS_UPGRADE
        else:
            logic = LogicContract(self.provider, record.implementation)
            legacy_version = logic.version()
            logger.info(
                "   > implementation:     %s (%s)", record.implementation, logic.class_name() or "?"
            )
            logger.info("   > version:            %s", legacy_version or "?")
            decision = decide_upgrade(
                spec.version_tag, legacy_version, self.upgrade_all or self.is_selected(base, impl)
            )

        outcome.address = proxy_addr
        outcome.implementation = record.implementation
        outcome.legacy_version = legacy_version
        self.resolved[base] = proxy_addr

        match decision:
            case UpgradeDecision.UP_TO_DATE:
                if self.is_selected(base, impl):
                    logger.info("   > nothing to upgrade for '%s'", base)
                outcome.action = Action.UP_TO_DATE

            case UpgradeDecision.DEFERRED:
                self._warn_deferred(base, spec.version_tag, legacy_version)
                outcome.action = Action.DEFERRED

            case UpgradeDecision.NEEDS_UPGRADE:
                if version_last_commit_of(legacy_version) == version_last_commit_of(spec.version_tag):
                    logger.warning("   > latest changes to '%s' were not committed", impl)
                if not self.provider.has_code(record.target):
                    receipt = self._deploy_target(domain, spec, init_code, record.target)
                    outcome.transactions.append(receipt.get("transactionHash", ""))

                logger.info("Upgrading '%s'...", base)
                if init_data:
                    logger.info("   > initdata types:     %s", spec.mutable_args.types)
                receipt = proxy.upgrade_to(record.target, init_data, spec.signer)
                outcome.transactions.append(receipt.get("transactionHash", ""))

                observed = proxy.implementation()
                if not same_address(observed, record.target):
                    raise AddressMismatchError(
                        f"Proxy '{base}' points to {observed} after upgrade, expected {record.target}",
                        expected=record.target,
                        observed=observed,
                    )
                outcome.implementation = record.target
                outcome.action = Action.UPGRADED

        return self._record(outcome)

    def _warn_deferred(self, base: str, target_version: str, legacy_version: str) -> None:
        logger.info(
            "   > '%s' can be upgraded: %s -> %s (select it or upgrade all)",
            base,
            legacy_version,
            target_version,
        )
        same_semver = version_tag_of(target_version) == version_tag_of(legacy_version)
        same_commit = version_last_commit_of(target_version) == version_last_commit_of(legacy_version)
        if same_semver and not same_commit:
            message = (
                f"'{base}' bytecode changed in commit {version_last_commit_of(target_version)} "
                f"under the same version {version_tag_of(target_version)}; "
                "consider bumping up the package version"
            )
            logger.warning("   > %s", message)
            warnings.warn(message, StaleLocalChangesWarning, stacklevel=3)
        elif same_commit:
            logger.warning("   > please commit your changes to '%s' before upgrading", base)

    def deploy_immutable(self, domain: str, base: str, impl: str) -> DeploymentOutcome:
        """
        Deploy a non-proxied base, keeping legacy implementations that share it.

        The current implementation is deployed when no live address is on
        file, or when selected (or "upgrade all") and its predicted address
        differs from the recorded one. Only the current implementation is
        exposed to dependents.
        """
        spec = self.resolver.resolve(domain, impl, base)
        init_code = self.resolver.init_code(spec)
        target_addr = determine_addr(self.factory.address, spec.salt, init_code)
        recorded = self.registry.get(self.network, domain, impl)
        outcome = DeploymentOutcome(
            domain=domain, base=base, target=impl, action=Action.UP_TO_DATE
        )

        forced = self.upgrade_all or self.is_selected(base, impl)
        if self._is_live(recorded) and (same_address(recorded, target_addr) or not forced):
            address = recorded
            if not same_address(recorded, target_addr):
                logger.info("   > contract address:   %s != %s", recorded, target_addr)
        else:
            if not self.provider.has_code(target_addr):
                receipt = self._deploy_target(domain, spec, init_code, target_addr)
                outcome.action = Action.DEPLOYED
                outcome.transactions.append(receipt.get("transactionHash", ""))
            else:
                logger.info("Recovered '%s' @ %s", impl, target_addr)
            self._settle(domain, impl, target_addr)
            address = target_addr

        outcome.address = address
        outcome.implementation = address
        self.resolved[base] = address
        self._record(outcome)

        for legacy in self._legacy_implementations(domain, base, impl):
            self.process_legacy(domain, base, legacy)
        return outcome

    def _legacy_implementations(self, domain: str, base: str, impl: str) -> List[str]:
        declared = self.settings.artifacts.get(domain, {})
        taken = set(declared.keys()) | set(declared.values())
        legacy = []
        for name in self.registry.names(self.network, domain):
            if name == impl or name in taken or not name.startswith(base):
                continue
            if name in self.artifacts and base not in self.artifacts.get(name).lineage():
                continue
            legacy.append(name)
        return legacy

    def process_legacy(self, domain: str, base: str, name: str) -> DeploymentOutcome:
        """
        Report a historical implementation of a base, re-deploying it if selected and gone.

        Legacy code is re-deployed from its recorded constructor args; the
        reproduced address must equal the recorded one.
        """
        recorded = self.registry.get(self.network, domain, name)
        outcome = DeploymentOutcome(
            domain=domain, base=base, target=name, action=Action.UP_TO_DATE, address=recorded
        )
        if self._is_live(recorded):
            return self._record(outcome)
        if not self.is_selected(name):
            outcome.action = Action.SKIPPED
            return self._record(outcome)
        if name not in self.artifacts:
            logger.warning("   > missing frozen artifact for legacy '%s'", name)
            outcome.action = Action.SKIPPED
            return self._record(outcome)

        artifact = self.artifacts.get(name)
        if artifact.is_abstract:
            raise PreconditionError(f"Cannot deploy abstract artifact {name}")
        if find_placeholders(artifact.bytecode):
            raise PreconditionError(f"Cannot redeploy '{name}': external libraries not supported")

        args_hex = self.registry.get_constructor_args(self.network, name) or ""
        init_code = bytes.fromhex(artifact.bytecode[2:] + args_hex)
        vanity = (
            self.settings.spec_settings(name).get("vanity")
            or self.settings.spec_settings(base).get("vanity")
            or 0
        )
        salt = salt_from_vanity(vanity)
        predicted = determine_addr(self.factory.address, salt, init_code)
        if not is_null_address(recorded) and not same_address(predicted, recorded):
            raise AddressMismatchError(
                f"Cannot redeploy '{name}': irreproducible address {predicted} != {recorded}",
                expected=recorded,
                observed=predicted,
            )

        receipt = self._deploy_through_factory(name, init_code, salt, predicted, self.signer)
        self._settle(domain, name, predicted)
        outcome.action = Action.DEPLOYED
        outcome.address = predicted
        outcome.transactions.append(receipt.get("transactionHash", ""))
        return self._record(outcome)


def deploy_framework(
    network: str,
    settings_path: Union[Path, str],
    build_dir: Union[Path, str],
    signer: str,
    semver: str,
    commit: Optional[str] = None,
    contracts_dir: Optional[Union[Path, str]] = None,
    registry_dir: Optional[Union[Path, str]] = None,
    rpc_url: Optional[str] = None,
    selection: Iterable[str] = (),
    upgrade_all: bool = False,
    include_domains: Iterable[str] = (),
) -> List[DeploymentOutcome]:
    """
    Deploy or upgrade the framework on one network.

    Args:
        network: Network name, optionally "<ecosystem>:<network>"
        settings_path: Settings JSON document
        build_dir: Directory holding compiled artifacts
        signer: Transaction sender, unlocked on the RPC node
        semver: Package version (5 chars)
        commit: Commit fragment (defaults to last commit touching contracts_dir)
        contracts_dir: Contracts sources directory used to read the commit fragment
        registry_dir: Directory of addresses.json / constructorArgs.json
                      (defaults to ./migrations)
        rpc_url: RPC endpoint (defaults to $ETH_RPC_URL)
        selection: Artifacts explicitly selected for deployment or upgrade
        upgrade_all: Upgrade every artifact whose bytecode changed
        include_domains: Non-core domains to deploy even if never deployed before

    Returns:
        One DeploymentOutcome per processed artifact

    Raises:
        ValueError: If no RPC URL is available
    """
    if rpc_url is None:
        rpc_url = os.environ.get(DEFAULT_RPC_ENV)
    if rpc_url is None:
        raise ValueError(
            f"RPC URL required: set ${DEFAULT_RPC_ENV} environment variable, "
            "or pass rpc_url parameter"
        )

    if commit is None:
        commit = read_last_commit(contracts_dir or ".")
    build = build_version(semver, commit)

    framework_settings = FrameworkSettings.from_file(settings_path)
    settings = framework_settings.for_network(network)
    artifacts = ArtifactRegistry.from_directory(build_dir, framework_settings.descriptors)
    if registry_dir is None:
        registry = JsonFileAddressRegistry()
    else:
        registry = JsonFileAddressRegistry.in_directory(registry_dir)

    orchestrator = DeploymentOrchestrator(
        settings=settings,
        artifacts=artifacts,
        registry=registry,
        provider=JsonRpcProvider(rpc_url),
        signer=signer,
        build=build,
        selection=selection,
        upgrade_all=upgrade_all,
        include_domains=include_domains,
    )
    return orchestrator.run()
