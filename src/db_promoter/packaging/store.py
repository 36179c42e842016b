"""Directory-backed package and deployment-record store.

Packages are saved as ``<root>/packages/<id>.json`` with a SHA-256
checksum and byte size; deployment records as
``<root>/deployments/<id>.json``.

Usage:
    store = PackageStore("packages")
    stored = store.save(package)
    same = store.load(stored.id)
"""

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field

from db_promoter.deploy.models import DeploymentRecord
from db_promoter.packaging.io import export_package, import_package, package_checksum
from db_promoter.packaging.models import Package, PackageKind


class StoredPackage(BaseModel):
    """Identity of a saved package plus its content hash and size."""

    id: str
    name: str
    version: str
    kind: PackageKind
    path: str
    checksum: str
    size_bytes: int
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PackageStore:
    """Saves and loads packages and deployment records under *root*."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.packages_dir = self.root / "packages"
        self.records_dir = self.root / "deployments"

    def package_path(self, package_id: str) -> Path:
        return self.packages_dir / f"{package_id}.json"

    def save(self, package: Package) -> StoredPackage:
        content = export_package(package).encode("utf-8")
        path = self.package_path(package.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return StoredPackage(
            id=package.id,
            name=package.name,
            version=package.version,
            kind=package.kind,
            path=str(path),
            checksum=package_checksum(content),
            size_bytes=len(content),
        )

    def load(self, package_id: str) -> Package:
        """Load a saved package.

        Raises:
            KeyError: If no package with *package_id* was saved.
            PackageImportError: If the stored file is not a valid package.
        """
        path = self.package_path(package_id)
        if not path.exists():
            raise KeyError(f"Package not found: {package_id}")
        return import_package(path.read_bytes())

    def list_packages(self) -> list[StoredPackage]:
        """Describe every saved package, ordered by name then version."""
        stored = []
        if not self.packages_dir.exists():
            return stored
        for path in self.packages_dir.glob("*.json"):
            content = path.read_bytes()
            package = import_package(content)
            stored.append(
                StoredPackage(
                    id=package.id,
                    name=package.name,
                    version=package.version,
                    kind=package.kind,
                    path=str(path),
                    checksum=package_checksum(content),
                    size_bytes=len(content),
                    saved_at=datetime.fromtimestamp(path.stat().st_mtime, timezone.utc),
                )
            )
        return sorted(stored, key=lambda s: (s.name, s.version))

    def save_record(self, record: DeploymentRecord) -> Path:
        path = self.records_dir / f"{record.id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        return path

    def load_record(self, record_id: str) -> DeploymentRecord:
        """Load a saved deployment record.

        Raises:
            KeyError: If no record with *record_id* was saved.
        """
        path = self.records_dir / f"{record_id}.json"
        if not path.exists():
            raise KeyError(f"Deployment record not found: {record_id}")
        return DeploymentRecord.model_validate_json(path.read_bytes())
