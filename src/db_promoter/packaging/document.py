"""Document packager: collections -> ``Package`` of kind ``document``.

Streams the documents of each requested collection, strips ids and
excluded fields as configured, converts embedded ids to portable strings,
encodes the remaining BSON values as relaxed extended JSON,
captures index definitions and derives the reference graph from a
``ReferenceRegistry``.  Any query failure aborts the whole run.

Usage:
    from db_promoter.packaging.document import DocumentPackager

    packager = DocumentPackager(adapter)
    package = await packager.package_collections(
        "workflows",
        "2.1.0",
        PackageFilter(collections=["Workflow", "TranCode"]),
    )
"""

import json
import logging
from typing import Any
from uuid import UUID

from bson import ObjectId, json_util

from db_promoter.adapters.base import DocumentClient
from db_promoter.errors import PackagingError
from db_promoter.packaging.models import (
    CollectionData,
    DocumentData,
    IDMapping,
    IDStrategy,
    IDType,
    IndexInfo,
    Package,
    PackageFilter,
)
from db_promoter.packaging.references import ReferenceRegistry, default_reference_registry

logger = logging.getLogger(__name__)

DEFAULT_ID_INDEX = "_id_"

# Relaxed extended JSON keeps plain numbers and strings readable while
# dates, binaries and decimals survive export and import unchanged.
PACKAGE_JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS.with_options(tz_aware=True)


def normalize_ids(value: Any) -> Any:
    """Recursively convert store-native ids to portable strings.

    Example:
        >>> normalize_ids({"a": [ObjectId("65a1b2c3d4e5f6a7b8c9d0e1")]})
        {'a': ['65a1b2c3d4e5f6a7b8c9d0e1']}
    """
    if isinstance(value, (ObjectId, UUID)):
        return str(value)
    if isinstance(value, dict):
        return {k: normalize_ids(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_ids(v) for v in value]
    return value


def to_extended_json(document: dict[str, Any]) -> dict[str, Any]:
    """Encode a document body as relaxed extended JSON.

    Ids are expected to be portable strings already (see ``normalize_ids``);
    every other BSON value becomes its ``$``-tagged JSON form, e.g. a
    datetime becomes ``{"$date": "2024-01-02T03:04:05Z"}``.
    """
    return json.loads(json_util.dumps(document, json_options=PACKAGE_JSON_OPTIONS))


def from_extended_json(document: dict[str, Any]) -> dict[str, Any]:
    """Decode a packaged document body back to native BSON values."""
    return json_util.loads(json.dumps(document), json_options=PACKAGE_JSON_OPTIONS)


def detect_id_type(value: Any) -> IDType:
    """Classify an id value as it is stored in the source."""
    if isinstance(value, UUID):
        return "uuid"
    if isinstance(value, int) and not isinstance(value, bool):
        return "int"
    if isinstance(value, str):
        return "string"
    return "objectid"


def parse_object_id(value: str) -> ObjectId | str:
    """Convert a 24-hex string to ``ObjectId``; other strings pass through."""
    if isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class DocumentPackager:
    """Builds document packages from a live document store.

    Args:
        client: Document store client.
        registry: Reference patterns; defaults to ``default_reference_registry()``.
    """

    def __init__(
        self,
        client: DocumentClient,
        registry: ReferenceRegistry | None = None,
    ) -> None:
        self.client = client
        self.registry = registry if registry is not None else default_reference_registry()

    async def package_collections(
        self,
        name: str,
        version: str,
        package_filter: PackageFilter,
        created_by: str = "",
        description: str = "",
    ) -> Package:
        """Package the requested collections.

        Raises:
            PackagingError: If no collections are requested, a filter query
                is not valid JSON, or any find/index listing fails.
        """
        if not package_filter.collections:
            raise PackagingError("No collections requested")

        queries = {
            collection: self._parse_query(collection, package_filter.where.get(collection))
            for collection in package_filter.collections
        }
        return await self._build(name, version, package_filter, queries, created_by, description)

    async def package_objects(
        self,
        collection: str,
        object_ids: list[str],
        name: str,
        version: str,
        created_by: str = "",
        description: str = "",
        skip_ids: bool = False,
    ) -> Package:
        """Package specific documents of one collection by id.

        Ids that look like ObjectIds (24 hex characters) are matched as
        ObjectIds, anything else as plain values.
        """
        if not object_ids:
            raise PackagingError("No object ids given")
        package_filter = PackageFilter(collections=[collection], skip_ids=skip_ids)
        queries = {collection: {"_id": {"$in": [parse_object_id(i) for i in object_ids]}}}
        package = await self._build(
            name, version, package_filter, queries, created_by, description
        )
        package.metadata["object_ids"] = list(object_ids)
        return package

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_query(self, collection: str, where: str | None) -> dict[str, Any]:
        if not where:
            return {}
        try:
            query = json_util.loads(where)
        except ValueError as e:
            raise PackagingError(f"Invalid filter for '{collection}': {e}") from e
        if not isinstance(query, dict):
            raise PackagingError(f"Filter for '{collection}' must be a JSON object")
        return query

    async def _build(
        self,
        name: str,
        version: str,
        package_filter: PackageFilter,
        queries: dict[str, dict[str, Any]],
        created_by: str,
        description: str,
    ) -> Package:
        collections: list[CollectionData] = []
        id_mappings: dict[str, IDMapping] = {}

        for collection in dict.fromkeys(package_filter.collections):
            data, id_type = await self._package_collection(
                collection, queries.get(collection, {}), package_filter
            )
            collections.append(data)
            id_mappings[collection] = IDMapping(
                collection_name=collection,
                id_field=data.id_field,
                id_type=id_type,
                strategy=self._id_strategy(collection, package_filter),
            )

        names = [c.name for c in collections]
        data = DocumentData(
            collections=collections,
            id_mappings=id_mappings,
            references=self.registry.build_references(names),
            skip_ids=package_filter.skip_ids,
            database_name=self.client.database_name,
        )

        total = sum(c.document_count for c in collections)
        logger.info(f"Packaged {len(collections)} collections ({total} documents) into '{name}' {version}")

        return Package(
            name=name,
            version=version,
            description=description,
            kind="document",
            created_by=created_by,
            document_data=data,
            metadata={
                "requested_collections": names,
                "collection_count": len(collections),
                "total_documents": total,
            },
        )

    async def _package_collection(
        self,
        collection: str,
        query: dict[str, Any],
        package_filter: PackageFilter,
    ) -> tuple[CollectionData, IDType]:
        excluded = package_filter.exclude_fields.get(collection, [])
        documents: list[dict[str, Any]] = []
        id_type: IDType | None = None

        try:
            async for doc in self.client.find(collection, query):
                if id_type is None and "_id" in doc:
                    id_type = detect_id_type(doc["_id"])
                documents.append(self._prepare(doc, excluded, package_filter.skip_ids))
            raw_indexes = await self.client.list_indexes(collection)
        except Exception as e:
            raise PackagingError(f"Failed to package collection '{collection}': {e}") from e

        indexes = [
            IndexInfo(
                name=index["name"],
                keys=dict(index.get("key", {})),
                unique=bool(index.get("unique", False)),
            )
            for index in raw_indexes
            if index.get("name") != DEFAULT_ID_INDEX
        ]

        logger.debug(f"Packaged '{collection}': {len(documents)} documents, {len(indexes)} indexes")

        data = CollectionData(
            name=collection,
            documents=documents,
            document_count=len(documents),
            indexes=indexes,
        )
        return data, id_type or "objectid"

    def _prepare(self, doc: dict, excluded: list[str], skip_ids: bool) -> dict[str, Any]:
        prepared = dict(doc)
        if skip_ids:
            prepared.pop("_id", None)
        for field in excluded:
            prepared.pop(field, None)
        return to_extended_json(normalize_ids(prepared))

    def _id_strategy(self, collection: str, package_filter: PackageFilter) -> IDStrategy:
        if collection in package_filter.id_strategies:
            return package_filter.id_strategies[collection]
        return "skip" if package_filter.skip_ids else "regenerate"
