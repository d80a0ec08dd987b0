"""
Item transcoder.

Turns a source item into the destination create shape. The transcoder is pure
(no I/O) and category-aware. Where the destination would reject a value as-is,
it prefers a lossy but valid rewrite and records a warning instead of failing
the item.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from logconfig.logger import get_logger
from vault_migration.models.item import (
    AutofillBehavior,
    DocumentCreateParams,
    FileCreateParams,
    Item,
    ItemCategory,
    ItemCreateParams,
    ItemField,
    ItemFieldType,
    ItemSection,
    UNNAMED_FIELD_ID,
    Website,
)

logger = get_logger()

CATCH_ALL_SECTION_ID = "add more"
DEFAULT_EXPIRY = "01/1970"
ADDRESS_PARTS = ("street", "city", "state", "zip", "country")
UNKNOWN_CARD_TYPE = "Unknown"

# Field types the destination accepts as-is; everything else becomes Text
PASSTHROUGH_FIELD_TYPES = {
    ItemFieldType.TEXT,
    ItemFieldType.CONCEALED,
    ItemFieldType.TOTP,
    ItemFieldType.ADDRESS,
    ItemFieldType.SSH_KEY,
    ItemFieldType.DATE,
    ItemFieldType.MONTH_YEAR,
    ItemFieldType.EMAIL,
    ItemFieldType.PHONE,
    ItemFieldType.URL,
    ItemFieldType.MENU,
}

CARD_TYPE_NAMES = {
    "mc": "Mastercard",
    "mastercard": "Mastercard",
    "visa": "Visa",
    "amex": "American Express",
    "americanexpress": "American Express",
    "discover": "Discover",
}

# Card roles in ascending precedence
CARD_ROLE_TYPE = "type"
CARD_ROLE_NUMBER = "number"
CARD_ROLE_EXPIRY = "expiry"
CARD_ROLE_VERIFICATION = "verification"
CARD_ROLE_PIN = "pin"

CARD_ROLE_FIELD_TYPES = {
    CARD_ROLE_TYPE: ItemFieldType.CREDIT_CARD_TYPE,
    CARD_ROLE_NUMBER: ItemFieldType.CREDIT_CARD_NUMBER,
    CARD_ROLE_EXPIRY: ItemFieldType.MONTH_YEAR,
    CARD_ROLE_VERIFICATION: ItemFieldType.CONCEALED,
    CARD_ROLE_PIN: ItemFieldType.CONCEALED,
}

CARD_BUILT_IN_FIELD_IDS = {"cardholder", "type", "number", "ccnum", "cvv", "expiry"}

_OTP_SEED = re.compile(r"^[A-Z2-7]{16,32}$", re.IGNORECASE)
_EXPIRY_FULL = re.compile(r"^(\d{2})/(\d{4})$")
_EXPIRY_DASH = re.compile(r"^(\d{2})-(\d{4})$")
_EXPIRY_COMPACT = re.compile(r"^(\d{2})(\d{2})$")
_EXPIRY_SHORT = re.compile(r"^(\d{2})/(\d{2})$")


def is_valid_otp(value: str) -> bool:
    """True for an otpauth:// URI or a plausible base32 seed."""
    value = value or ""
    return value.startswith("otpauth://") or bool(_OTP_SEED.match(value))


def normalize_expiry(value: Optional[str]) -> str:
    """
    Normalize a card expiry to ``MM/YYYY``.

    Accepts ``MM/YYYY``, ``MM-YYYY``, ``MMYY`` and ``MM/YY``. Empty or
    unparseable values become ``01/1970``. Normalizing twice is a no-op.
    """
    value = (value or "").strip()
    if not value:
        return DEFAULT_EXPIRY

    for pattern in (_EXPIRY_FULL, _EXPIRY_DASH):
        match = pattern.match(value)
        if match:
            return f"{match.group(1)}/{match.group(2)}"

    for pattern in (_EXPIRY_COMPACT, _EXPIRY_SHORT):
        match = pattern.match(value)
        if match:
            return f"{match.group(1)}/20{match.group(2)}"

    return DEFAULT_EXPIRY


def normalize_card_type(value: Optional[str]) -> str:
    """Map a card network code or name to its display name."""
    key = re.sub(r"[\s_\-]+", "", (value or "")).lower()
    return CARD_TYPE_NAMES.get(key, UNKNOWN_CARD_TYPE)


def detect_card_role(source_field: ItemField) -> Optional[str]:
    """
    Detect the payment-card role of a field from its id and title.

    When several roles match, the one with the highest precedence wins
    (type < number < expiry < verification < pin).
    """
    field_id = (source_field.id or "").lower()
    title = (source_field.title or "").lower()

    role = None
    if field_id == "type" or "type" in title:
        role = CARD_ROLE_TYPE
    if field_id in ("number", "ccnum") or "number" in title:
        role = CARD_ROLE_NUMBER
    if field_id == "expiry" or "expiry" in title or "expiration" in title:
        role = CARD_ROLE_EXPIRY
    if field_id == "cvv" or "verification" in title or "cvv" in title:
        role = CARD_ROLE_VERIFICATION
    if field_id == "pin" or "pin" in title:
        role = CARD_ROLE_PIN
    return role


@dataclass
class TranscodeResult:
    """Destination item plus every degradation applied to it."""
    item: ItemCreateParams
    warnings: List[str] = field(default_factory=list)


class ItemTranscoder:
    """Category-aware source-to-destination item mapper."""

    def __init__(self, secure_note_placeholder: str = "Migrated Secure Note"):
        self.secure_note_placeholder = secure_note_placeholder

    def transcode(self, source: Item, dest_vault_id: str) -> TranscodeResult:
        """
        Build the destination create shape for ``source``.

        Args:
            source: Fully resolved source item
            dest_vault_id: Destination vault the item will be created in

        Returns:
            TranscodeResult with the new item and its warnings
        """
        warnings: List[str] = []
        category = source.category or ItemCategory.LOGIN

        if category == ItemCategory.CREDIT_CARD:
            fields = [self._convert_card_field(f, warnings) for f in source.fields]
        else:
            fields = [self._convert_field(f, warnings) for f in source.fields]

        if category == ItemCategory.UNKNOWN:
            warnings.append(f"Unrecognized category for '{source.title}'; migrated as {category.value}")

        sections = []
        for s in source.sections:
            if not s.id:
                warnings.append(f"Dropped section '{s.title}' with no id")
                continue
            sections.append(ItemSection(id=s.id, title=s.title or ""))

        files: List[FileCreateParams] = []
        document: Optional[DocumentCreateParams] = None
        if category == ItemCategory.DOCUMENT:
            document = self._convert_document(source, warnings)
        else:
            files = self._convert_files(source, warnings)

        self._ensure_sections(sections, fields, files)

        websites = [
            Website(
                url=w.url,
                label=w.label or "website",
                autofill_behavior=w.autofill_behavior or AutofillBehavior.ANYWHERE_ON_WEBSITE,
            )
            for w in source.websites
        ]

        notes = source.notes if source.notes and source.notes.strip() else ""
        if not notes and category == ItemCategory.SECURE_NOTE:
            notes = self.secure_note_placeholder

        dest_item = ItemCreateParams(
            title=source.title,
            category=category,
            vault_id=dest_vault_id,
            fields=fields,
            sections=sections,
            files=files,
            document=document,
            tags=list(source.tags),
            websites=websites,
            notes=notes,
        )

        if warnings:
            logger.bind(item_id=source.id).debug(
                f"Transcoded '{source.title}' with {len(warnings)} warning(s)"
            )
        return TranscodeResult(item=dest_item, warnings=warnings)

    def _convert_field(self, source_field: ItemField, warnings: List[str]) -> ItemField:
        field_type = source_field.field_type
        value = source_field.value or ""
        details = None

        if field_type not in PASSTHROUGH_FIELD_TYPES:
            warnings.append(
                f"Field '{source_field.title or source_field.id}' has unsupported type "
                f"{field_type.value}; migrated as Text"
            )
            field_type = ItemFieldType.TEXT

        source_details = source_field.details or {}
        content = source_details.get("content") or {}

        if field_type == ItemFieldType.ADDRESS:
            # The destination rejects an address without all five parts
            if not isinstance(content, dict):
                content = {}
            if not content and value:
                content = {"street": value}
                warnings.append(
                    f"Address field '{source_field.title or source_field.id}' had no parts; "
                    f"value migrated as street"
                )
            details = {
                "type": "Address",
                "content": {key: content.get(key) or "" for key in ADDRESS_PARTS},
            }
            value = ""

        elif field_type == ItemFieldType.SSH_KEY:
            private_key = None
            if isinstance(content, dict):
                private_key = content.get("privateKey")
            private_key = private_key or source_details.get("privateKey")
            value = private_key or value

        elif field_type == ItemFieldType.TOTP:
            otp_value = value
            if not otp_value:
                otp_value = (
                    (content.get("totp") if isinstance(content, dict) else None)
                    or source_details.get("totp")
                    or ""
                )
            value = otp_value
            if not is_valid_otp(otp_value):
                warnings.append(
                    f"Field '{source_field.title or source_field.id}' is not a valid one-time "
                    f"code; migrated as Text"
                )
                field_type = ItemFieldType.TEXT

        return ItemField(
            id=source_field.id or UNNAMED_FIELD_ID,
            title=source_field.title or "unnamed",
            field_type=field_type,
            value=value,
            section_id=source_field.section_id,
            details=details,
        )

    def _convert_card_field(self, source_field: ItemField, warnings: List[str]) -> ItemField:
        role = detect_card_role(source_field)
        if role is None:
            converted = self._convert_field(source_field, warnings)
            if not converted.section_id and converted.id not in CARD_BUILT_IN_FIELD_IDS:
                converted.section_id = CATCH_ALL_SECTION_ID
            return converted

        value = source_field.value or ""
        if role == CARD_ROLE_TYPE:
            card_type = normalize_card_type(value)
            if card_type == UNKNOWN_CARD_TYPE and value:
                warnings.append(f"Unrecognized card network '{value}'; migrated as Unknown")
            value = card_type
        elif role == CARD_ROLE_EXPIRY:
            expiry = normalize_expiry(value)
            if expiry == DEFAULT_EXPIRY and value and value != DEFAULT_EXPIRY:
                warnings.append(f"Unparseable card expiry '{value}'; migrated as {DEFAULT_EXPIRY}")
            value = expiry

        return ItemField(
            id=source_field.id or UNNAMED_FIELD_ID,
            title=source_field.title or "unnamed",
            field_type=CARD_ROLE_FIELD_TYPES[role],
            value=value,
            section_id=source_field.section_id,
        )

    def _convert_document(self, source: Item, warnings: List[str]) -> Optional[DocumentCreateParams]:
        if source.document is None or source.document.content is None:
            warnings.append(f"Document payload missing for '{source.title}'; migrated without it")
            return None
        return DocumentCreateParams(
            name=source.document.name or source.title or "document",
            content=source.document.content,
        )

    def _convert_files(self, source: Item, warnings: List[str]) -> List[FileCreateParams]:
        files = []
        timestamp_ms = int(time.time() * 1000)
        for index, attached in enumerate(source.files):
            if not attached.name or not attached.content:
                warnings.append(
                    f"Skipped file '{attached.name or attached.id or index}' with no name or content"
                )
                continue
            files.append(FileCreateParams(
                name=attached.name,
                content=attached.content,
                section_id=attached.section_id or CATCH_ALL_SECTION_ID,
                field_id=attached.field_id or f"{attached.name}-{timestamp_ms}-{index}",
            ))
        return files

    @staticmethod
    def _ensure_sections(
        sections: List[ItemSection],
        fields: List[ItemField],
        files: List[FileCreateParams],
    ) -> None:
        """Synthesize any section referenced by a field or file but not declared."""
        known: Set[str] = {s.id for s in sections}
        referenced: Dict[str, None] = {}
        for f in fields:
            if f.section_id:
                referenced.setdefault(f.section_id, None)
        for f in files:
            referenced.setdefault(f.section_id, None)

        for section_id in referenced:
            if section_id not in known:
                sections.append(ItemSection(
                    id=section_id,
                    title="" if section_id == CATCH_ALL_SECTION_ID else section_id,
                ))
                known.add(section_id)
