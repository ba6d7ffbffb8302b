"""Custom exception classes for framework-deployments library."""


class DeploymentError(Exception):
    """Base exception for deployment-related errors."""

    pass


class PreconditionError(DeploymentError, ValueError):
    """Raised when an input is malformed (address or salt length, abstract artifact, ...)."""

    pass


class MissingLibraryError(DeploymentError, ValueError):
    """Raised when a library placeholder remains in bytecode after linking."""

    def __init__(self, message: str, library: str = ""):
        super().__init__(message)
        self.library = library


class DependencyCycleError(DeploymentError, ValueError):
    """Raised when resolving dependencies revisits an ancestor."""

    def __init__(self, message: str, cycle: tuple = ()):
        super().__init__(message)
        self.cycle = cycle


class AddressMismatchError(DeploymentError, RuntimeError):
    """Raised when an observed address differs from the predicted one."""

    def __init__(self, message: str, expected: str = "", observed: str = ""):
        super().__init__(message)
        self.expected = expected
        self.observed = observed


class TransactionFailure(DeploymentError, RuntimeError):
    """Raised when the chain rejects or reverts a transaction, or the RPC call fails."""

    pass


class StaleLocalChangesWarning(UserWarning):
    """Emitted when bytecode changed under an unchanged semver but a different commit."""

    pass
