"""Deployment entry points: kind dispatch and named async handlers.

``deploy_package`` picks the deployer for a package's kind.  The
``HandlerRegistry`` maps job names to async callables so callers (a job
runner, the CLI) can dispatch by name without module-level state.

Usage:
    record = await deploy_package(package, options, database=adapter)

    registry = default_handlers()
    handler = registry.get(PACKAGE_DEPLOYMENT)
    summary = await handler(HandlerContext(store=store, database=adapter), {"package_id": pid})
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from db_promoter.adapters.base import DatabaseClient, DocumentClient
from db_promoter.deploy.document import DocumentDeployer
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord
from db_promoter.deploy.relational import RelationalDeployer
from db_promoter.errors import PackageStructureError
from db_promoter.packaging.io import export_package, package_checksum
from db_promoter.packaging.models import Package
from db_promoter.packaging.store import PackageStore

logger = logging.getLogger(__name__)

PACKAGE_DEPLOYMENT = "PACKAGE_DEPLOYMENT"
PACKAGE_GENERATION = "PACKAGE_GENERATION"


async def deploy_package(
    package: Package,
    options: DeploymentOptions,
    database: DatabaseClient | None = None,
    documents: DocumentClient | None = None,
    target: str = "",
    deployed_by: str = "",
) -> DeploymentRecord:
    """Deploy *package* with a fresh deployer for its kind.

    An unsupported kind or a missing client for the package's kind yields
    a ``failed`` record rather than an exception.
    """
    try:
        deployer = _deployer_for(package, database, documents, target, deployed_by)
    except PackageStructureError as e:
        logger.error(str(e))
        record = DeploymentRecord(
            package_id=package.id,
            package_name=package.name,
            package_version=package.version,
            target=target,
            deployed_by=deployed_by,
        )
        return record.fail(str(e))
    return await deployer.deploy(package, options)


def _deployer_for(
    package: Package,
    database: DatabaseClient | None,
    documents: DocumentClient | None,
    target: str,
    deployed_by: str,
) -> RelationalDeployer | DocumentDeployer:
    if package.kind == "database":
        if database is None:
            raise PackageStructureError("No database client for a database package")
        return RelationalDeployer(database, target=target, deployed_by=deployed_by)
    if package.kind == "document":
        if documents is None:
            raise PackageStructureError("No document client for a document package")
        return DocumentDeployer(documents, target=target, deployed_by=deployed_by)
    raise PackageStructureError(f"Unsupported package kind: {package.kind}")


# ============================================================================
# Handler registry
# ============================================================================


@dataclass
class HandlerContext:
    """Resources a handler may use."""

    store: PackageStore
    database: DatabaseClient | None = None
    documents: DocumentClient | None = None
    target: str = ""


Handler = Callable[[HandlerContext, dict[str, Any]], Awaitable[dict[str, Any]]]


class HandlerRegistry:
    """Explicit name -> async handler mapping."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def get(self, name: str) -> Handler:
        """Return the handler registered under *name*.

        Raises:
            KeyError: If *name* is not registered; the message lists the
                registered names.
        """
        if name not in self._handlers:
            raise KeyError(
                f"Unknown handler '{name}'. Registered: {', '.join(self.names()) or '(none)'}"
            )
        return self._handlers[name]

    def names(self) -> list[str]:
        return sorted(self._handlers)


async def handle_package_deployment(context: HandlerContext, params: dict[str, Any]) -> dict[str, Any]:
    """Load a stored package, deploy it and save the deployment record.

    Params:
        package_id: Id of the stored package (required).
        options: Dict of ``DeploymentOptions`` fields.
        deployed_by: Actor recorded on the deployment record.
    """
    package = context.store.load(params["package_id"])
    options = DeploymentOptions(**params.get("options", {}))
    record = await deploy_package(
        package,
        options,
        database=context.database,
        documents=context.documents,
        target=context.target,
        deployed_by=params.get("deployed_by", ""),
    )
    path = context.store.save_record(record)
    return {
        "deployment_id": record.id,
        "package_id": package.id,
        "status": record.status,
        "errors": len(record.error_log),
        "warnings": len(record.warnings),
        "record_path": str(path),
    }


async def handle_package_generation(context: HandlerContext, params: dict[str, Any]) -> dict[str, Any]:
    """Export a stored package and report its size and checksum."""
    package = context.store.load(params["package_id"])
    content = export_package(package).encode("utf-8")
    return {
        "package_id": package.id,
        "name": package.name,
        "version": package.version,
        "size_bytes": len(content),
        "checksum": package_checksum(content),
    }


def default_handlers() -> HandlerRegistry:
    """Registry with the stock package handlers."""
    registry = HandlerRegistry()
    registry.register(PACKAGE_DEPLOYMENT, handle_package_deployment)
    registry.register(PACKAGE_GENERATION, handle_package_generation)
    return registry
