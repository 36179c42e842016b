"""Exception types raised by packaging and deployment.

Packaging raises these directly. Deployment folds them into the
``DeploymentRecord`` error log instead of propagating them, except for
misuse of a deployer instance.
"""


class PromoterError(Exception):
    """Base class for db-promoter errors."""

    pass


class PackageStructureError(PromoterError):
    """Raised when a package is missing its payload or has an unsupported kind."""

    pass


class PackagingError(PromoterError):
    """Raised when schema introspection or a source query fails during packaging."""

    pass


class PackageImportError(PromoterError):
    """Raised when serialized package data does not match the package structure."""

    pass


class DependencyCycleError(PromoterError):
    """Raised when the foreign-key graph of a package contains a cycle.

    Attributes:
        cycle: Table names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")


class ExistingRecordError(PromoterError):
    """Raised when a record already exists and no existing-record policy is set."""

    pass


class UnsafeFieldError(PromoterError):
    """Raised when a document field name could be interpreted as a store operator."""

    pass
