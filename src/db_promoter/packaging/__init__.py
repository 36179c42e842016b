"""Package model, packagers and package files.

Usage:
    from db_promoter.packaging import RelationalPackager, PackageFilter, write_package
"""

from db_promoter.packaging.document import DocumentPackager
from db_promoter.packaging.io import (
    export_package,
    import_package,
    package_checksum,
    read_package,
    validate_package_file,
    write_package,
)
from db_promoter.packaging.models import (
    CollectionData,
    DatabaseData,
    DocumentData,
    Package,
    PackageFilter,
    TableData,
)
from db_promoter.packaging.references import ReferenceRegistry, default_reference_registry
from db_promoter.packaging.relational import RelationalPackager
from db_promoter.packaging.store import PackageStore, StoredPackage

__all__ = [
    "Package",
    "PackageFilter",
    "DatabaseData",
    "DocumentData",
    "TableData",
    "CollectionData",
    "RelationalPackager",
    "DocumentPackager",
    "ReferenceRegistry",
    "default_reference_registry",
    "export_package",
    "import_package",
    "package_checksum",
    "write_package",
    "read_package",
    "validate_package_file",
    "PackageStore",
    "StoredPackage",
]
