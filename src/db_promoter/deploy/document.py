"""Document deployer: replays a document package into a document store.

Collections are written in package order, each document's id handled by
the collection's strategy (``regenerate`` / ``preserve`` / ``skip``).
References are rewritten afterwards through the recorded id maps, and
indexes can be rebuilt once data is loaded.

Document stores give no cross-document transaction, so every batch,
reference rewrite, index build and rollback runs under its own timeout
and partial writes can persist when a deploy fails.

Usage:
    deployer = DocumentDeployer(adapter, target="qa")
    record = await deployer.deploy(package, DeploymentOptions(update_existing=True))
    if record.status != "completed":
        await DocumentDeployer(adapter).rollback(record)
"""

import asyncio
import logging
from typing import Any
from uuid import uuid4

from bson import ObjectId

from db_promoter.adapters.base import DocumentClient
from db_promoter.deploy.keymap import KeyMap
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord, MappingAction
from db_promoter.errors import ExistingRecordError, UnsafeFieldError
from db_promoter.packaging.document import (
    DEFAULT_ID_INDEX,
    from_extended_json,
    normalize_ids,
    parse_object_id,
)
from db_promoter.packaging.models import (
    CollectionData,
    DocumentData,
    DocumentReference,
    IDMapping,
    IDType,
    Package,
)

logger = logging.getLogger(__name__)

ALLOWED_ID_FIELDS = ("_id", "id")


def validate_field_name(field: str) -> str:
    """Reject field paths that are empty or could act as store operators.

    Raises:
        UnsafeFieldError: For an empty path, an empty segment, a segment
            starting with ``$``, or a null byte.

    Example:
        >>> validate_field_name("nodes.trancode_id")
        'nodes.trancode_id'
    """
    if not field:
        raise UnsafeFieldError("Field name is empty")
    if "\x00" in field:
        raise UnsafeFieldError(f"Field name contains a null byte: {field!r}")
    for segment in field.split("."):
        if not segment:
            raise UnsafeFieldError(f"Field path has an empty segment: {field!r}")
        if segment.startswith("$"):
            raise UnsafeFieldError(f"Field path segment starts with '$': {field!r}")
    return field


def array_update_path(field: str) -> tuple[str, str]:
    """Update path and array-filter key for rewriting an element of an array.

    The array is the first segment of *field*; the rest addresses a field
    inside each element.

    Example:
        >>> array_update_path("tags")
        ('tags.$[ref]', 'ref')
        >>> array_update_path("nodes.trancode_id")
        ('nodes.$[ref].trancode_id', 'ref.trancode_id')
    """
    head, _, rest = field.partition(".")
    if rest:
        return f"{head}.$[ref].{rest}", f"ref.{rest}"
    return f"{head}.$[ref]", "ref"


def new_document_id(id_type: IDType) -> Any:
    """Fresh id for the ``regenerate`` strategy."""
    if id_type == "uuid":
        return str(uuid4())
    if id_type == "string":
        return str(ObjectId())
    # ObjectId for objectid collections; int ids have no safe generator
    return ObjectId()


def to_native_id(value: Any, id_type: IDType) -> Any:
    """Convert a portable id back to the representation the store uses.

    Raises:
        ValueError: If an ``objectid`` or ``int`` id cannot be converted.
    """
    if id_type == "objectid":
        native = parse_object_id(value) if isinstance(value, str) else value
        if not isinstance(native, ObjectId):
            raise ValueError(f"Not an ObjectId: {value!r}")
        return native
    if id_type == "int":
        return int(value)
    return str(value)


class DocumentDeployer:
    """Deploys ``document`` packages through a ``DocumentClient``.

    Args:
        client: Target store client.
        target: Identifier of the target, recorded on the deployment record.
        deployed_by: Actor recorded on the deployment record.
        batch_timeout: Seconds allowed per batch of documents.
        reference_timeout: Seconds allowed per reference rewrite.
        index_timeout: Seconds allowed per index build.
        rollback_timeout: Seconds allowed per collection delete in rollback.
    """

    def __init__(
        self,
        client: DocumentClient,
        target: str = "",
        deployed_by: str = "",
        batch_timeout: float = 30.0,
        reference_timeout: float = 60.0,
        index_timeout: float = 30.0,
        rollback_timeout: float = 60.0,
    ) -> None:
        self.client = client
        self.target = target
        self.deployed_by = deployed_by
        self.batch_timeout = batch_timeout
        self.reference_timeout = reference_timeout
        self.index_timeout = index_timeout
        self.rollback_timeout = rollback_timeout
        self._id_maps: dict[str, KeyMap] = {}
        self._used = False

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy(self, package: Package, options: DeploymentOptions) -> DeploymentRecord:
        """Deploy *package* and return the finalized deployment record.

        Raises:
            RuntimeError: If this deployer instance was already used.
        """
        if self._used:
            raise RuntimeError("DocumentDeployer is single-use; create a new one per deploy")
        self._used = True

        record = DeploymentRecord(
            package_id=package.id,
            package_name=package.name,
            package_version=package.version,
            target=self.target or self.client.database_name,
            deployed_by=self.deployed_by,
            metadata={"dry_run": options.dry_run},
        )

        data = package.document_data
        if package.kind != "document" or data is None:
            return record.fail("Package has no document payload")

        if options.dry_run:
            return self._validate(data, options, record)

        mappings = {c.name: self._id_mapping(data, c) for c in data.collections}
        record.metadata["collection_order"] = data.collection_names
        record.metadata["id_fields"] = {name: m.id_field for name, m in mappings.items()}
        record.metadata["new_id_types"] = {}
        counts: dict[str, dict[str, int]] = {}
        record.metadata["counts"] = counts

        logger.info(
            f"Deploying '{package.name}' {package.version}: {len(data.collections)} collections"
        )

        for collection in data.collections:
            counts[collection.name] = {"inserted": 0, "updated": 0, "skipped": 0, "failed": 0}
            mapping = mappings[collection.name]
            aborted = False
            try:
                validate_field_name(mapping.id_field)
                if mapping.id_field not in ALLOWED_ID_FIELDS:
                    raise UnsafeFieldError(f"Unsupported id field: {mapping.id_field!r}")
                await self._deploy_collection(
                    collection, mapping, options, record, counts[collection.name]
                )
            except Exception as e:
                logger.error(f"Collection '{collection.name}' failed: {e!r}")
                record.error_log.append(f"Collection '{collection.name}' failed: {e!r}")
                aborted = not options.continue_on_error
            finally:
                self._store_mapping(record, collection.name, mapping)
            if aborted:
                return record.finish("failed")

        record.metadata["references_rewritten"] = await self._rewrite_references(
            data, mappings, record
        )

        if options.rebuild_indexes:
            index_errors = await self._rebuild_indexes(data)
            record.error_log.extend(index_errors)
            if index_errors and not options.continue_on_error:
                return record.finish("failed")

        logger.info(f"Deployed '{package.name}' {package.version} with {len(record.error_log)} errors")
        return record.finish("completed")

    def _validate(
        self, data: DocumentData, options: DeploymentOptions, record: DeploymentRecord
    ) -> DeploymentRecord:
        """Structural checks only; the target store is never touched."""
        errors: list[str] = []
        if not data.collections:
            errors.append("Package contains no collections")
        for collection in data.collections:
            if not collection.name:
                errors.append("Package contains a collection without a name")
            try:
                validate_field_name(collection.id_field)
            except UnsafeFieldError as e:
                errors.append(f"{collection.name}: {e}")

        if options.validate_references:
            names = set(data.collection_names)
            for ref in data.references:
                for collection_name in (ref.source_collection, ref.target_collection):
                    if collection_name not in names:
                        errors.append(
                            f"Reference {ref.source_collection}.{ref.source_field} -> "
                            f"{ref.target_collection}: collection '{collection_name}' "
                            f"is not in the package"
                        )
                try:
                    validate_field_name(ref.source_field)
                except UnsafeFieldError as e:
                    errors.append(f"Reference from {ref.source_collection}: {e}")

        record.error_log.extend(errors)
        return record.finish("failed" if errors else "validated")

    def _id_mapping(self, data: DocumentData, collection: CollectionData) -> IDMapping:
        mapping = data.id_mappings.get(collection.name)
        if mapping is not None:
            return mapping
        return IDMapping(
            collection_name=collection.name,
            id_field=collection.id_field,
            strategy="skip" if data.skip_ids else "regenerate",
        )

    def _store_mapping(self, record: DeploymentRecord, collection: str, mapping: IDMapping) -> None:
        """Copy the id map into the record in portable (JSON) form."""
        id_map = self._id_maps.get(collection, KeyMap())
        entries = id_map.entries()
        new_id_type = mapping.id_type
        if any(isinstance(e.new_key, ObjectId) for e in entries):
            new_id_type = "objectid"
        record.metadata["new_id_types"][collection] = new_id_type
        record.id_mapping_result[collection] = [
            e.model_copy(update={"new_key": normalize_ids(e.new_key)}) for e in entries
        ]

    # ------------------------------------------------------------------
    # Collections and documents
    # ------------------------------------------------------------------

    async def _deploy_collection(
        self,
        collection: CollectionData,
        mapping: IDMapping,
        options: DeploymentOptions,
        record: DeploymentRecord,
        counts: dict[str, int],
    ) -> None:
        id_map = self._id_maps.setdefault(collection.name, KeyMap())
        documents = collection.documents

        for start in range(0, len(documents), options.batch_size):
            batch_number = start // options.batch_size + 1
            try:
                async with asyncio.timeout(self.batch_timeout):
                    for document in documents[start:start + options.batch_size]:
                        try:
                            action = await self._deploy_document(
                                collection.name, document, mapping, options, id_map
                            )
                        except Exception as e:
                            if not options.continue_on_error:
                                raise
                            counts["failed"] += 1
                            message = (
                                f"Document {document.get(mapping.id_field)!r} of "
                                f"'{collection.name}' failed: {e}"
                            )
                            logger.error(message)
                            record.error_log.append(message)
                            continue
                        if action is not None:
                            counts[action] += 1
            except TimeoutError:
                message = (
                    f"Batch {batch_number} of '{collection.name}' timed out "
                    f"after {self.batch_timeout}s"
                )
                if not options.continue_on_error:
                    raise TimeoutError(message) from None
                logger.error(message)
                record.error_log.append(message)
            logger.debug(f"'{collection.name}': batch {batch_number} done")

    async def _deploy_document(
        self,
        collection: str,
        source: dict[str, Any],
        mapping: IDMapping,
        options: DeploymentOptions,
        id_map: KeyMap,
    ) -> MappingAction | None:
        document = from_extended_json(source)
        id_field = mapping.id_field
        old_id = document.get(id_field)

        if mapping.strategy == "skip":
            document.pop(id_field, None)
            new_id = None
        elif mapping.strategy == "regenerate":
            new_id = new_document_id(mapping.id_type)
            document[id_field] = new_id
        else:
            new_id = to_native_id(old_id, mapping.id_type) if old_id is not None else None
            if new_id is not None:
                document[id_field] = new_id

        if new_id is not None and await self.client.count_documents(collection, {id_field: new_id}):
            if options.skip_existing:
                id_map.record(old_id, new_id, "skipped")
                return "skipped"
            if options.update_existing:
                changes = {k: v for k, v in document.items() if k != id_field}
                await self.client.update_one(collection, {id_field: new_id}, {"$set": changes})
                id_map.record(old_id, new_id, "updated")
                return "updated"
            raise ExistingRecordError(
                f"{collection} document {old_id!r} already exists "
                f"(set skip_existing or update_existing)"
            )

        inserted_id = await self.client.insert_one(collection, document)
        if new_id is None:
            new_id = inserted_id
        if mapping.strategy == "skip" and old_id is None:
            return "inserted"
        id_map.record(old_id, new_id, "inserted")
        return "inserted"

    # ------------------------------------------------------------------
    # References and indexes
    # ------------------------------------------------------------------

    async def _rewrite_references(
        self,
        data: DocumentData,
        mappings: dict[str, IDMapping],
        record: DeploymentRecord,
    ) -> int:
        """Point references at new target ids; failures become warnings.

        Only documents written by this deploy are updated, and rewritten
        references keep the portable string form the package carried.

        Returns:
            Number of documents modified.
        """
        modified = 0
        for ref in data.references:
            source_map = self._id_maps.get(ref.source_collection)
            target_map = self._id_maps.get(ref.target_collection)
            if source_map is None or target_map is None:
                continue
            try:
                validate_field_name(ref.source_field)
                async with asyncio.timeout(self.reference_timeout):
                    modified += await self._rewrite_reference(
                        ref, mappings[ref.source_collection].id_field, source_map, target_map
                    )
            except Exception as e:
                message = (
                    f"Could not rewrite {ref.source_collection}.{ref.source_field} -> "
                    f"{ref.target_collection}: {e!r}"
                )
                logger.warning(message)
                record.warnings.append(message)
        return modified

    async def _rewrite_reference(
        self,
        ref: DocumentReference,
        source_id_field: str,
        source_map: KeyMap,
        target_map: KeyMap,
    ) -> int:
        written = [e.new_key for e in source_map if e.action != "skipped" and e.new_key is not None]
        if not written:
            return 0
        scope = {source_id_field: {"$in": written}}

        modified = 0
        for entry in target_map:
            if entry.old_key is None or entry.new_key is None:
                continue
            old_ref = entry.old_key
            new_ref = normalize_ids(entry.new_key)
            if old_ref == new_ref:
                continue
            query = {**scope, ref.source_field: old_ref}
            if ref.reference_type == "single":
                modified += await self.client.update_many(
                    ref.source_collection, query, {"$set": {ref.source_field: new_ref}}
                )
            else:
                path, filter_key = array_update_path(ref.source_field)
                modified += await self.client.update_many(
                    ref.source_collection,
                    query,
                    {"$set": {path: new_ref}},
                    array_filters=[{filter_key: old_ref}],
                )
        return modified

    async def _rebuild_indexes(self, data: DocumentData) -> list[str]:
        """Recreate captured indexes.  Returns error messages."""
        errors = []
        for collection in data.collections:
            for index in collection.indexes:
                if index.name == DEFAULT_ID_INDEX:
                    continue
                try:
                    async with asyncio.timeout(self.index_timeout):
                        await self.client.create_index(
                            collection.name,
                            list(index.keys.items()),
                            unique=index.unique,
                            name=index.name,
                        )
                except Exception as e:
                    message = f"Index '{index.name}' on '{collection.name}' failed: {e!r}"
                    logger.error(message)
                    errors.append(message)
        return errors

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def rollback(self, record: DeploymentRecord) -> dict[str, int]:
        """Delete the documents a deploy inserted, one bulk delete per collection.

        A failed delete is recorded on *record* with the counts deleted so
        far, and re-raised.

        Returns:
            Deleted document count per collection.
        """
        id_fields: dict[str, str] = record.metadata.get("id_fields", {})
        id_types: dict[str, IDType] = record.metadata.get("new_id_types", {})
        deleted: dict[str, int] = {}

        for collection, entries in record.id_mapping_result.items():
            id_type = id_types.get(collection, "objectid")
            ids = [
                to_native_id(e.new_key, id_type)
                for e in entries
                if e.action == "inserted" and e.new_key is not None
            ]
            if not ids:
                deleted[collection] = 0
                continue
            try:
                async with asyncio.timeout(self.rollback_timeout):
                    deleted[collection] = await self.client.delete_many(
                        collection, {id_fields.get(collection, "_id"): {"$in": ids}}
                    )
            except Exception as e:
                message = f"Rollback of '{collection}' failed: {e!r}"
                logger.error(message)
                record.error_log.append(message)
                record.metadata["rolled_back"] = deleted
                raise
            logger.debug(f"Rolled back {deleted[collection]} documents from '{collection}'")

        record.metadata["rolled_back"] = deleted
        record.finish("rolled_back")
        return deleted
