"""
Declared document shapes and index settings per entity type.

A ``DocumentSchema`` is an ordered list of fields with a declared type.
Transformed documents are checked against it before they are submitted,
so shape drift surfaces here instead of as an index-side rejection.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, validator

from search_sync.errors import DocumentShapeError

# Declared field type → accepted Python types.
# bool is a subclass of int, so int fields reject it explicitly below.
FIELD_TYPES = {
    "int": (int,),
    "float": (int, float),
    "str": (str,),
    "bool": (bool,),
    "timestamp": (int,),  # epoch seconds
    "str[]": (list,),
    "int[]": (list,),
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str
    nullable: bool = False

    def __post_init__(self):
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type {self.type!r} for {self.name}")

    def check(self, value: Any) -> Optional[str]:
        """Return a problem description, or None when the value conforms."""
        if value is None:
            return None if self.nullable else "is null"
        if isinstance(value, bool) and self.type not in ("bool",):
            return f"expected {self.type}, got bool"
        if not isinstance(value, FIELD_TYPES[self.type]):
            return f"expected {self.type}, got {type(value).__name__}"
        if self.type.endswith("[]"):
            item_type = str if self.type == "str[]" else int
            for item in value:
                if not isinstance(item, item_type) or isinstance(item, bool):
                    return f"expected {self.type}, got item {item!r}"
        return None


@dataclass(frozen=True)
class DocumentSchema:
    fields: Tuple[FieldSpec, ...]
    primary_key: str = "id"

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def validate(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Check a document and return it with keys in declared order."""
        doc_id = doc.get(self.primary_key)
        if doc_id is None:
            raise DocumentShapeError("document has no primary key",
                                     field=self.primary_key)

        expected = set(self.field_names)
        extra = sorted(set(doc) - expected)
        if extra:
            raise DocumentShapeError(
                f"document {doc_id} has undeclared fields: {', '.join(extra)}",
                document_id=doc_id, field=extra[0],
            )

        ordered = {}
        for spec in self.fields:
            if spec.name not in doc:
                raise DocumentShapeError(
                    f"document {doc_id} is missing field {spec.name}",
                    document_id=doc_id, field=spec.name,
                )
            problem = spec.check(doc[spec.name])
            if problem:
                raise DocumentShapeError(
                    f"document {doc_id} field {spec.name} {problem}",
                    document_id=doc_id, field=spec.name,
                )
            ordered[spec.name] = doc[spec.name]
        return ordered


class IndexSettings(BaseModel):
    """Attribute configuration an index must carry."""

    searchable: List[str] = Field(default_factory=list)
    sortable: List[str] = Field(default_factory=list)
    filterable: List[str] = Field(default_factory=list)

    @validator("searchable", "sortable", "filterable")
    def no_duplicates(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("attribute list contains duplicates")
        return v

    def check_against(self, schema: DocumentSchema) -> List[str]:
        """Attributes that name no schema field."""
        known = set(schema.field_names)
        return sorted(
            {a for a in self.searchable + self.sortable + self.filterable if a not in known}
        )
