"""
Vault and item data model.

These models describe both the source form of an item (as read from a tenant)
and the destination form (``ItemCreateParams``) that the transcoder produces.
Wire names are camelCase; Python attributes are snake_case.

Categories and field types are normalized once, when a payload is validated,
so the rest of the engine only compares enum members.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ItemCategory(str, Enum):
    """Item categories known to the account API."""
    LOGIN = "Login"
    SECURE_NOTE = "SecureNote"
    CREDIT_CARD = "CreditCard"
    CRYPTO_WALLET = "CryptoWallet"
    IDENTITY = "Identity"
    PASSWORD = "Password"
    DOCUMENT = "Document"
    API_CREDENTIALS = "ApiCredentials"
    BANK_ACCOUNT = "BankAccount"
    DATABASE = "Database"
    DRIVER_LICENSE = "DriverLicense"
    EMAIL = "Email"
    MEDICAL_RECORD = "MedicalRecord"
    MEMBERSHIP = "Membership"
    OUTDOOR_LICENSE = "OutdoorLicense"
    PASSPORT = "Passport"
    REWARDS = "Rewards"
    ROUTER = "Router"
    SERVER = "Server"
    SSH_KEY = "SshKey"
    SOCIAL_SECURITY_NUMBER = "SocialSecurityNumber"
    SOFTWARE_LICENSE = "SoftwareLicense"
    PERSON = "Person"
    CUSTOM = "Custom"
    # Unrecognized labels; still migrated through the account API
    UNKNOWN = "Unknown"


class ItemFieldType(str, Enum):
    """Field types accepted by the destination."""
    TEXT = "Text"
    CONCEALED = "Concealed"
    CREDIT_CARD_TYPE = "CreditCardType"
    CREDIT_CARD_NUMBER = "CreditCardNumber"
    PHONE = "Phone"
    URL = "Url"
    TOTP = "Totp"
    EMAIL = "Email"
    REFERENCE = "Reference"
    SSH_KEY = "SshKey"
    MENU = "Menu"
    MONTH_YEAR = "MonthYear"
    ADDRESS = "Address"
    DATE = "Date"
    UNSUPPORTED = "Unsupported"


class AutofillBehavior(str, Enum):
    ANYWHERE_ON_WEBSITE = "AnywhereOnWebsite"
    EXACT_DOMAIN = "ExactDomain"
    NEVER = "Never"


UNNAMED_FIELD_ID = "unnamed"

_SEPARATORS = re.compile(r"[\s_\-]+")

# Labels that always mean "no native category"
_CUSTOM_SENTINELS = {"custom", "unsupported"}


def _normalize_key(raw: str) -> str:
    return _SEPARATORS.sub("", raw).lower()


_CATEGORY_LOOKUP: Dict[str, ItemCategory] = {}
for _category in ItemCategory:
    _CATEGORY_LOOKUP[_normalize_key(_category.value)] = _category
    _CATEGORY_LOOKUP[_normalize_key(_category.name)] = _category

_FIELD_TYPE_LOOKUP: Dict[str, ItemFieldType] = {}
for _field_type in ItemFieldType:
    _FIELD_TYPE_LOOKUP[_normalize_key(_field_type.value)] = _field_type
    _FIELD_TYPE_LOOKUP[_normalize_key(_field_type.name)] = _field_type
# Common aliases seen in exports
_FIELD_TYPE_LOOKUP.update({
    "string": ItemFieldType.TEXT,
    "password": ItemFieldType.CONCEALED,
    "otp": ItemFieldType.TOTP,
    "sshkey": ItemFieldType.SSH_KEY,
    "monthyear": ItemFieldType.MONTH_YEAR,
})


def normalize_category(raw: Any) -> ItemCategory:
    """
    Map a raw category label onto ItemCategory.

    Comparison ignores case and separators, so ``SECURE_NOTE``,
    ``Secure Note`` and ``SecureNote`` are the same category. The custom
    sentinels (``custom``, ``unsupported``) map to ``ItemCategory.CUSTOM``,
    unrecognized labels to ``ItemCategory.UNKNOWN``; an
    absent category is a login.

    Args:
        raw: Category label, enum member or None

    Returns:
        Normalized category
    """
    if isinstance(raw, ItemCategory):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return ItemCategory.LOGIN

    key = _normalize_key(str(raw))
    if key in _CUSTOM_SENTINELS:
        return ItemCategory.CUSTOM
    return _CATEGORY_LOOKUP.get(key, ItemCategory.UNKNOWN)


def normalize_field_type(raw: Any) -> ItemFieldType:
    """Map a raw field type onto ItemFieldType; unknown types are Unsupported."""
    if isinstance(raw, ItemFieldType):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return ItemFieldType.TEXT
    return _FIELD_TYPE_LOOKUP.get(_normalize_key(str(raw)), ItemFieldType.UNSUPPORTED)


class MigrationModel(BaseModel):
    """Base model with camelCase wire names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Vault(MigrationModel):
    id: str
    name: str = ""
    item_count: int = 0


class ItemSummary(MigrationModel):
    id: str
    title: str = ""
    category: ItemCategory = ItemCategory.LOGIN

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> ItemCategory:
        return normalize_category(v)

    @field_validator("title", mode="before")
    @classmethod
    def _title_default(cls, v: Any) -> str:
        return v or ""


class ItemField(MigrationModel):
    """
    A single item field.

    ``details`` carries composite payloads: ``{"type": "Address", "content":
    {...}}`` for addresses, ``{"privateKey": ...}`` for key pairs and
    ``{"totp": ...}`` for one-time codes.
    """

    id: str = UNNAMED_FIELD_ID
    title: str = ""
    field_type: ItemFieldType = ItemFieldType.TEXT
    value: str = ""
    section_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_default(cls, v: Any) -> str:
        return str(v) if v else UNNAMED_FIELD_ID

    @field_validator("field_type", mode="before")
    @classmethod
    def _normalize_field_type(cls, v: Any) -> ItemFieldType:
        return normalize_field_type(v)

    @field_validator("value", "title", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)


class ItemSection(MigrationModel):
    """A section; one without an id cannot be referenced by any field."""

    id: Optional[str] = None
    title: str = ""

    @model_validator(mode="before")
    @classmethod
    def _best_title(cls, data: Any) -> Any:
        # Some exports use ``label`` instead of ``title``
        if isinstance(data, dict) and not data.get("title"):
            data = dict(data)
            data["title"] = data.get("label") or ""
        return data


class ItemFile(MigrationModel):
    """A file attachment; ``content`` is filled in when the item is resolved."""

    id: Optional[str] = None
    name: str = ""
    size: Optional[int] = None
    content: Optional[bytes] = None
    section_id: Optional[str] = None
    field_id: Optional[str] = None


class ItemDocument(MigrationModel):
    id: Optional[str] = None
    name: str = ""
    size: Optional[int] = None
    content: Optional[bytes] = None


class Website(MigrationModel):
    url: str = ""
    label: Optional[str] = None
    autofill_behavior: Optional[AutofillBehavior] = None

    @model_validator(mode="before")
    @classmethod
    def _href_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("url") and data.get("href"):
            data = dict(data)
            data["url"] = data["href"]
        return data


class Item(MigrationModel):
    """Full source item, as read from a tenant."""

    id: str
    title: str = ""
    category: ItemCategory = ItemCategory.LOGIN
    vault_id: str
    fields: List[ItemField] = Field(default_factory=list)
    sections: List[ItemSection] = Field(default_factory=list)
    files: List[ItemFile] = Field(default_factory=list)
    document: Optional[ItemDocument] = None
    tags: List[str] = Field(default_factory=list)
    websites: List[Website] = Field(default_factory=list)
    notes: str = ""
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_edited_by: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, v: Any) -> ItemCategory:
        return normalize_category(v)

    @field_validator("title", "notes", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return v or ""

    @field_validator("fields", "sections", "files", "tags", "websites", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return v or []

    def summary(self) -> ItemSummary:
        return ItemSummary(id=self.id, title=self.title, category=self.category)


class FileCreateParams(MigrationModel):
    name: str
    content: bytes
    section_id: str
    field_id: str


class DocumentCreateParams(MigrationModel):
    name: str
    content: bytes


class ItemCreateParams(MigrationModel):
    """Destination form of an item: no identity, timestamps or version."""

    title: str
    category: ItemCategory
    vault_id: str
    fields: List[ItemField] = Field(default_factory=list)
    sections: List[ItemSection] = Field(default_factory=list)
    files: List[FileCreateParams] = Field(default_factory=list)
    document: Optional[DocumentCreateParams] = None
    tags: List[str] = Field(default_factory=list)
    websites: List[Website] = Field(default_factory=list)
    notes: str = ""
