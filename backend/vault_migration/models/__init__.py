from .item import (
    AutofillBehavior,
    DocumentCreateParams,
    FileCreateParams,
    Item,
    ItemCategory,
    ItemCreateParams,
    ItemDocument,
    ItemField,
    ItemFieldType,
    ItemFile,
    ItemSection,
    ItemSummary,
    Vault,
    Website,
    normalize_category,
    normalize_field_type,
)

__all__ = [
    "AutofillBehavior",
    "DocumentCreateParams",
    "FileCreateParams",
    "Item",
    "ItemCategory",
    "ItemCreateParams",
    "ItemDocument",
    "ItemField",
    "ItemFieldType",
    "ItemFile",
    "ItemSection",
    "ItemSummary",
    "Vault",
    "Website",
    "normalize_category",
    "normalize_field_type",
]
