"""db-promoter: package data from one environment and deploy it into another.

Builds versioned packages from a relational or document store, carries
them as JSON files, and replays them into a target store with key
remapping, conflict policies, deployment records and rollback.

Usage:
    from db_promoter import RelationalPackager, PackageFilter, deploy_package
    from db_promoter import DeploymentOptions, get_adapter, load_db_config
"""

__version__ = "0.1.0"

# Adapters
from db_promoter.adapters.base import DatabaseClient, DocumentClient
from db_promoter.adapters.mongo import AsyncMongoAdapter
from db_promoter.adapters.postgres import AsyncPostgresAdapter

# Config
from db_promoter.config.loader import load_db_config
from db_promoter.config.models import DatabaseConfig, DatabaseProfile

# Deploy
from db_promoter.deploy.document import DocumentDeployer
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord
from db_promoter.deploy.relational import RelationalDeployer
from db_promoter.deploy.service import default_handlers, deploy_package

# Errors
from db_promoter.errors import (
    DependencyCycleError,
    ExistingRecordError,
    PackageImportError,
    PackageStructureError,
    PackagingError,
    PromoterError,
    UnsafeFieldError,
)

# Factory
from db_promoter.factory import (
    ProfileNotFoundError,
    connect_profile,
    get_adapter,
    get_document_adapter,
    resolve_url,
)

# Packaging
from db_promoter.packaging.document import DocumentPackager
from db_promoter.packaging.io import export_package, import_package, read_package, write_package
from db_promoter.packaging.models import Package, PackageFilter
from db_promoter.packaging.relational import RelationalPackager
from db_promoter.packaging.store import PackageStore

__all__ = [
    # Adapters
    "DatabaseClient",
    "DocumentClient",
    "AsyncPostgresAdapter",
    "AsyncMongoAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Deploy
    "DeploymentOptions",
    "DeploymentRecord",
    "RelationalDeployer",
    "DocumentDeployer",
    "deploy_package",
    "default_handlers",
    # Errors
    "PromoterError",
    "PackageStructureError",
    "PackagingError",
    "PackageImportError",
    "DependencyCycleError",
    "ExistingRecordError",
    "UnsafeFieldError",
    # Factory
    "get_adapter",
    "get_document_adapter",
    "connect_profile",
    "ProfileNotFoundError",
    "resolve_url",
    # Packaging
    "Package",
    "PackageFilter",
    "RelationalPackager",
    "DocumentPackager",
    "PackageStore",
    "export_package",
    "import_package",
    "write_package",
    "read_package",
]
