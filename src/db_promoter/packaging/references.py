"""Known cross-collection reference shapes.

Document stores carry no foreign-key constraints, so the reference graph
of a document package comes from a registry of field-naming conventions
per collection.  Only shapes registered here are recognized.

Usage:
    registry = default_reference_registry()
    registry.register("Invoice", "customer_id", "Customer")
    refs = registry.build_references(["Invoice", "Customer"])
"""

from dataclasses import dataclass

from db_promoter.packaging.models import DocumentReference, ReferenceType


@dataclass(frozen=True)
class ReferencePattern:
    """A field in a source collection that holds ids of a target collection."""

    field: str
    target_collection: str
    reference_type: ReferenceType = "single"
    target_id_field: str = "_id"


class ReferenceRegistry:
    """Registry of reference patterns, keyed by source collection."""

    def __init__(self) -> None:
        self._patterns: dict[str, list[ReferencePattern]] = {}

    def register(
        self,
        collection: str,
        field: str,
        target_collection: str,
        reference_type: ReferenceType = "single",
        target_id_field: str = "_id",
    ) -> None:
        pattern = ReferencePattern(field, target_collection, reference_type, target_id_field)
        patterns = self._patterns.setdefault(collection, [])
        if pattern not in patterns:
            patterns.append(pattern)

    def patterns_for(self, collection: str) -> list[ReferencePattern]:
        return list(self._patterns.get(collection, []))

    @property
    def collections(self) -> list[str]:
        return list(self._patterns)

    def build_references(self, collections: list[str]) -> list[DocumentReference]:
        """References whose source and target are both in *collections*."""
        present = set(collections)
        references = []
        for collection in collections:
            for pattern in self.patterns_for(collection):
                if pattern.target_collection not in present:
                    continue
                references.append(
                    DocumentReference(
                        source_collection=collection,
                        source_field=pattern.field,
                        target_collection=pattern.target_collection,
                        target_id_field=pattern.target_id_field,
                        reference_type=pattern.reference_type,
                    )
                )
        return references


def default_reference_registry() -> ReferenceRegistry:
    """Registry with the stock workflow / transaction-code / UI shapes."""
    registry = ReferenceRegistry()
    registry.register("TranCode", "workflow_id", "Workflow")
    registry.register("Workflow", "nodes.trancode_id", "TranCode", "array")
    registry.register("UI_Page", "actions.trancode_id", "TranCode", "array")
    registry.register("UI_View", "page_id", "UI_Page")
    return registry
