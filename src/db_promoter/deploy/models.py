"""Pydantic models for deployment requests and results."""

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DeploymentStatus = Literal["in_progress", "validated", "completed", "failed", "rolled_back"]
MappingAction = Literal["inserted", "updated", "skipped"]

DEFAULT_BATCH_SIZE = 100


class DeploymentOptions(BaseModel):
    """Caller-supplied deploy policy.

    ``skip_existing`` and ``update_existing`` are mutually exclusive.  With
    neither set, a row that already exists in the target is an error.

    Example:
        >>> DeploymentOptions(skip_existing=True).batch_size
        100
    """

    model_config = ConfigDict(extra="forbid")

    skip_existing: bool = False
    update_existing: bool = False
    validate_references: bool = True
    create_missing: bool = False
    rebuild_indexes: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    continue_on_error: bool = False
    dry_run: bool = False

    @field_validator("batch_size")
    @classmethod
    def _default_batch_size(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_BATCH_SIZE

    @model_validator(mode="after")
    def _policies_are_exclusive(self) -> "DeploymentOptions":
        if self.skip_existing and self.update_existing:
            raise ValueError("skip_existing and update_existing are mutually exclusive")
        return self


class KeyMappingEntry(BaseModel):
    """One old-key -> new-key pair recorded during a deploy.

    Keys are scalars for single-column keys and ``{column: value}`` dicts
    for composite keys.  ``new_key`` is ``None`` when the target store
    assigned a key that could not be read back.
    """

    model_config = ConfigDict(extra="forbid")

    old_key: Any = None
    new_key: Any = None
    action: MappingAction = "inserted"


class DeploymentRecord(BaseModel):
    """Audit/result object produced by one deploy invocation."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: str(uuid4()))
    package_id: str
    package_name: str
    package_version: str
    target: str = ""
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    deployed_by: str = ""
    status: DeploymentStatus = "in_progress"
    pk_mapping_result: dict[str, list[KeyMappingEntry]] = Field(default_factory=dict)
    id_mapping_result: dict[str, list[KeyMappingEntry]] = Field(default_factory=dict)
    error_log: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def mapping_result(self) -> dict[str, list[KeyMappingEntry]]:
        """Whichever mapping result this record's deploy produced."""
        return self.pk_mapping_result or self.id_mapping_result

    def fail(self, message: str) -> "DeploymentRecord":
        """Append *message* to the error log and finalize as ``failed``."""
        self.error_log.append(message)
        return self.finish("failed")

    def finish(self, status: DeploymentStatus) -> "DeploymentRecord":
        """Finalize the record with a terminal *status*."""
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        return self
