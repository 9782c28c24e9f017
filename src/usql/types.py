"""Declared column types.

A declared type is the logical type of a column. For plain SQL types it is
the same as the storage type; the extended kinds (vectors and asset
references) have no SQL equivalent and are stored as TEXT, with the logical
kind tracked separately in the ``__column_types`` table.
"""

import re
from dataclasses import dataclass
from enum import StrEnum

from usql.db.dialect import Dialect


class TypeKind(StrEnum):
    """Logical column kinds."""

    INTEGER = "Integer"
    REAL = "Real"
    TEXT = "Text"
    BLOB = "Blob"
    VARCHAR = "Varchar"
    VECTOR2 = "Vector2"
    VECTOR3 = "Vector3"
    GAMEOBJECT_REF = "GameObjectRef"
    SPRITE_REF = "SpriteRef"
    DATE = "Date"
    DATETIME = "DateTime"


EXTENDED_KINDS = frozenset(
    {TypeKind.VECTOR2, TypeKind.VECTOR3, TypeKind.GAMEOBJECT_REF, TypeKind.SPRITE_REF}
)
VECTOR_KINDS = frozenset({TypeKind.VECTOR2, TypeKind.VECTOR3})
REFERENCE_KINDS = frozenset({TypeKind.GAMEOBJECT_REF, TypeKind.SPRITE_REF})

_ALIASES: dict[str, TypeKind] = {
    "VECTOR2": TypeKind.VECTOR2,
    "VECTOR3": TypeKind.VECTOR3,
    "GAMEOBJECT": TypeKind.GAMEOBJECT_REF,
    "GAMEOBJECTREF": TypeKind.GAMEOBJECT_REF,
    "SPRITE": TypeKind.SPRITE_REF,
    "SPRITEREF": TypeKind.SPRITE_REF,
    "DATE": TypeKind.DATE,
    "DATETIME": TypeKind.DATETIME,
    "TIMESTAMP": TypeKind.DATETIME,
}

_VARCHAR_PATTERN = re.compile(
    r"^(?:N?VARCHAR|CHARACTER\s+VARYING|N?CHAR)\s*\(\s*(\d+)\s*\)$", re.IGNORECASE
)

_CANONICAL_STORAGE: dict[TypeKind, str] = {
    TypeKind.INTEGER: "INTEGER",
    TypeKind.REAL: "REAL",
    TypeKind.TEXT: "TEXT",
    TypeKind.BLOB: "BLOB",
    TypeKind.DATE: "DATE",
    TypeKind.DATETIME: "DATETIME",
}

# MySQL cannot index an unbounded TEXT column as a primary key
_MYSQL_TEXT_KEY = "VARCHAR(255)"


@dataclass(frozen=True)
class DeclaredType:
    """A parsed column type.

    Attributes:
        kind: Logical kind used to pick the value codec.
        length: Character length for Varchar columns.
        raw: The type string as written, casing preserved.
    """

    kind: TypeKind
    length: int | None = None
    raw: str = ""

    def __str__(self) -> str:
        if self.is_extended:
            return self.kind.value
        return self.raw or self.storage_sql(None)

    @property
    def is_extended(self) -> bool:
        """True for kinds that have no native SQL storage type."""
        return self.kind in EXTENDED_KINDS

    def storage_sql(self, dialect: Dialect | None, primary_key: bool = False) -> str:
        """Return the physical SQL type used to store this column.

        Args:
            dialect: Target engine, or None for an engine-neutral rendering.
            primary_key: Whether the column is the table's primary key.
        """
        mysql_key = primary_key and dialect is not None and dialect.name == "mysql"
        if self.is_extended:
            return _MYSQL_TEXT_KEY if mysql_key else "TEXT"
        if self.kind == TypeKind.TEXT and mysql_key and self.raw.upper() in ("", "TEXT"):
            return _MYSQL_TEXT_KEY
        if self.raw:
            return self.raw
        if self.kind == TypeKind.VARCHAR:
            return f"VARCHAR({self.length or 255})"
        return _CANONICAL_STORAGE[self.kind]


def parse_declared_type(raw: str) -> DeclaredType:
    """Parse a type string into a DeclaredType.

    Comparison is case-insensitive; the original spelling is kept in ``raw``
    so DDL can be regenerated verbatim. Types that are neither extended
    names nor recognisable SQL types fall back to SQLite affinity rules.

    Args:
        raw: Type string from a schema or user input (e.g. 'Vector2',
            'varchar(40)', 'BIGINT UNSIGNED').

    Returns:
        The parsed declared type.
    """
    text = raw.strip()
    upper = text.upper()

    if upper in _ALIASES:
        kind = _ALIASES[upper]
        # Extended names carry no storage spelling worth keeping
        return DeclaredType(kind=kind, raw="" if kind in EXTENDED_KINDS else text)

    match = _VARCHAR_PATTERN.match(text)
    if match:
        return DeclaredType(kind=TypeKind.VARCHAR, length=int(match.group(1)), raw=text)

    return DeclaredType(kind=_affinity(upper), raw=text)


def _affinity(upper: str) -> TypeKind:
    """Map an arbitrary SQL type name to a kind using SQLite affinity order."""
    if "INT" in upper or upper.startswith("BOOL"):
        return TypeKind.INTEGER
    if "CHAR" in upper or "CLOB" in upper or "TEXT" in upper:
        return TypeKind.TEXT
    if not upper or "BLOB" in upper or "BINARY" in upper:
        return TypeKind.BLOB
    if upper.startswith("DATETIME") or upper.startswith("TIMESTAMP"):
        return TypeKind.DATETIME
    if upper.startswith("DATE"):
        return TypeKind.DATE
    if any(token in upper for token in ("REAL", "FLOA", "DOUB", "DEC", "NUMERIC")):
        return TypeKind.REAL
    return TypeKind.TEXT
