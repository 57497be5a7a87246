"""
Field mapping contracts: what the mapper suggests and the normalizer
canonicalizes for form prefill.
"""

from typing import Optional, Union

from pydantic import Field

from certmap.schemas.contracts import BBox, CamelModel

DATE_FORMAT_TAG = "YYYY-MM-DD"


class Source(CamelModel):
    """Provenance pointer into a specific extraction. Informational only."""
    page: Optional[int] = None
    item_index: Optional[int] = None
    bbox: Optional[BBox] = None
    text: Optional[str] = None


class MappedField(CamelModel):
    """A suggested value with confidence and provenance."""
    value: Union[str, list[str]]
    original: Optional[str] = None
    format: Optional[str] = None
    confidence: float = Field(default=0.0)
    sources: Optional[list[Source]] = None


class Mapping(CamelModel):
    """Sparse record of suggested form fields; absent fields are None."""
    title: Optional[MappedField] = None
    issuer: Optional[MappedField] = None
    useful_links: Optional[MappedField] = None
    start_date: Optional[MappedField] = None
    end_date: Optional[MappedField] = None
    issued_date: Optional[MappedField] = None
    description: Optional[MappedField] = None
    skills: Optional[MappedField] = None
    recipient: Optional[MappedField] = None
    recipient_address: Optional[MappedField] = None
    category: Optional[MappedField] = None

    def present(self) -> dict[str, MappedField]:
        """Fields that carry a value, keyed by attribute name."""
        return {
            name: value
            for name in type(self).model_fields
            if (value := getattr(self, name)) is not None
        }

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


STRING_FIELDS = ("title", "issuer", "description", "recipient", "category")
ARRAY_FIELDS = ("useful_links", "skills")
DATE_FIELDS = ("start_date", "end_date", "issued_date")
ADDRESS_FIELDS = ("recipient_address",)
