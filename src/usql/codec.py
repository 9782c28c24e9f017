"""Value codec between logical column values and SQL driver primitives.

Vectors are stored as compact JSON objects (``{"x":1.5,"y":2.5}``) on every
engine. Asset references are stored as the logical path returned by an
AssetResolver. Decoding never raises: a malformed cell decodes to a fallback
value and is reported through an ``on_fallback`` callback so one bad cell
cannot block a table load.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from usql.errors import UnresolvableReference
from usql.types import (
    REFERENCE_KINDS,
    VECTOR_KINDS,
    DeclaredType,
    TypeKind,
    parse_declared_type,
)

logger = logging.getLogger(__name__)

SqlPrimitive = int | float | str | bytes | None


@dataclass(frozen=True)
class Vector2:
    """Two-component float vector."""

    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class Vector3:
    """Three-component float vector."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class AssetRef:
    """Opaque handle for an asset identified by its logical path."""

    path: str


class AssetResolver(Protocol):
    """Maps asset handles to stable logical paths and back."""

    def to_path(self, handle: Any) -> str | None:
        """Return the handle's logical path, or None if it has none."""
        ...

    def from_path(self, path: str, kind: TypeKind) -> Any | None:
        """Return the handle for a logical path, or None if it cannot load."""
        ...


class PathResolver:
    """Default resolver whose handles are AssetRef instances."""

    def to_path(self, handle: Any) -> str | None:
        if isinstance(handle, AssetRef):
            return handle.path or None
        return None

    def from_path(self, path: str, kind: TypeKind) -> AssetRef | None:
        return AssetRef(path)


DEFAULT_RESOLVER = PathResolver()


@dataclass(frozen=True)
class ValueDecodeFallback:
    """Record of a cell that could not be decoded and was substituted.

    Attributes:
        column: Column the cell belongs to, when known.
        declared: Declared type the decoder was asked for.
        raw: The stored value as returned by the driver.
        fallback: The value substituted in its place.
        reason: Short human-readable explanation.
    """

    column: str | None
    declared: str
    raw: Any
    fallback: Any
    reason: str


FallbackHandler = Callable[[ValueDecodeFallback], None]


def _as_declared(declared: DeclaredType | str) -> DeclaredType:
    if isinstance(declared, DeclaredType):
        return declared
    return parse_declared_type(declared)


# =============================================================================
# Vectors
# =============================================================================


def zero_vector(kind: TypeKind) -> Vector2 | Vector3:
    """Return the zero vector for a vector kind."""
    return Vector3() if kind == TypeKind.VECTOR3 else Vector2()


def parse_vector(text: str, kind: TypeKind) -> Vector2 | Vector3:
    """Parse a stored or user-entered vector.

    Accepts the canonical JSON object, a plain comma-separated list
    (``"1.5,2.5"``) and the parenthesised form ``"(1.5, 2.5)"``.

    Raises:
        ValueError: If the text does not describe a vector of this kind.
    """
    size = 3 if kind == TypeKind.VECTOR3 else 2
    stripped = text.strip()

    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except RecursionError as e:
            raise ValueError(f"Vector JSON nested too deeply: {text[:40]!r}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got: {text!r}")
        keys = ("x", "y", "z")[:size]
        if set(data) != set(keys):
            raise ValueError(f"Expected keys {keys}, got: {sorted(data)}")
        try:
            components = [float(data[key]) for key in keys]
        except (TypeError, OverflowError) as e:
            raise ValueError(f"Invalid vector component in {text!r}") from e
    else:
        stripped = stripped.removeprefix("(").removesuffix(")")
        parts = stripped.split(",")
        if len(parts) != size:
            raise ValueError(f"Expected {size} components, got {len(parts)}: {text!r}")
        components = [float(part) for part in parts]

    if size == 3:
        return Vector3(*components)
    return Vector2(*components)


def _vector_json(vector: Vector2 | Vector3) -> str:
    if isinstance(vector, Vector3):
        data = {"x": float(vector.x), "y": float(vector.y), "z": float(vector.z)}
    else:
        data = {"x": float(vector.x), "y": float(vector.y)}
    return json.dumps(data, separators=(",", ":"))


def _to_vector(value: Any, kind: TypeKind) -> Vector2 | Vector3:
    """Normalise a vector-like value (instance, sequence, dict or text)."""
    size = 3 if kind == TypeKind.VECTOR3 else 2
    expected = Vector3 if size == 3 else Vector2

    if isinstance(value, expected):
        return value
    if isinstance(value, str):
        return parse_vector(value, kind)
    if isinstance(value, dict):
        try:
            return expected(*(float(value[key]) for key in ("x", "y", "z")[:size]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Cannot interpret {value!r} as {kind.value}") from e
    if isinstance(value, (list, tuple)) and len(value) == size:
        return expected(*(float(component) for component in value))
    raise ValueError(f"Cannot interpret {value!r} as {kind.value}")


def sniff_vector_kind(sample: Any) -> TypeKind | None:
    """Guess whether a TEXT value holds a serialized vector.

    Only used to adopt columns of databases created without logical type
    metadata. Returns None unless the sample parses cleanly as exactly one
    of the vector kinds.
    """
    if not isinstance(sample, str) or "," not in sample:
        return None
    for kind in (TypeKind.VECTOR2, TypeKind.VECTOR3):
        try:
            parse_vector(sample, kind)
        except ValueError:
            continue
        return kind
    return None


# =============================================================================
# Encode / decode
# =============================================================================


def encode(
    value: Any,
    declared: DeclaredType | str,
    resolver: AssetResolver | None = None,
) -> SqlPrimitive:
    """Convert a logical value into a primitive the SQL driver accepts.

    Args:
        value: Value to store. None always encodes to SQL NULL.
        declared: Declared type of the target column.
        resolver: Asset resolver for reference columns.

    Returns:
        A string, number, bytes or None.

    Raises:
        UnresolvableReference: If a reference handle has no stable path.
        ValueError: If the value cannot be represented in the column type.
    """
    if value is None:
        return None

    dtype = _as_declared(declared)
    kind = dtype.kind

    if kind in VECTOR_KINDS:
        return _vector_json(_to_vector(value, kind))

    if kind in REFERENCE_KINDS:
        if isinstance(value, str) and value:
            return value
        path = (resolver or DEFAULT_RESOLVER).to_path(value)
        if not path:
            raise UnresolvableReference(
                f"{kind.value} reference {value!r} has no stable asset path"
            )
        return path

    if kind == TypeKind.INTEGER:
        coerced = coerce(value, dtype)
        if isinstance(coerced, bool):
            return int(coerced)
        return coerced
    if kind == TypeKind.REAL:
        coerced = coerce(value, dtype)
        return float(coerced) if isinstance(coerced, (int, Decimal)) else coerced
    if kind == TypeKind.BLOB:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        return value
    if kind == TypeKind.DATETIME and isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if kind == TypeKind.DATE and isinstance(value, datetime):
        return value.date().isoformat()
    if kind == TypeKind.DATE and isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (int, float, str, bytes)):
        return value
    return str(value)


def decode(
    raw: Any,
    declared: DeclaredType | str,
    resolver: AssetResolver | None = None,
    *,
    column: str | None = None,
    on_fallback: FallbackHandler | None = None,
) -> Any:
    """Convert a driver value into the column's logical value.

    Malformed vectors decode to the zero vector, malformed or unloadable
    references decode to None and malformed dates keep their raw text.
    Each substitution is logged and passed to ``on_fallback``.

    Args:
        raw: Value returned by the SQL driver.
        declared: Declared type of the source column.
        resolver: Asset resolver for reference columns.
        column: Column name, used in fallback reports.
        on_fallback: Called with a ValueDecodeFallback for every substitution.

    Returns:
        The decoded value. Never raises.
    """
    if raw is None:
        return None

    dtype = _as_declared(declared)
    kind = dtype.kind

    def fallback(value: Any, reason: str) -> Any:
        issue = ValueDecodeFallback(
            column=column, declared=str(dtype), raw=raw, fallback=value, reason=reason
        )
        logger.warning(
            "Could not decode %r as %s in column %r (%s); using %r",
            raw,
            dtype,
            column,
            reason,
            value,
        )
        if on_fallback is not None:
            on_fallback(issue)
        return value

    if kind in VECTOR_KINDS:
        text = _as_text(raw)
        if not text.strip():
            return zero_vector(kind)
        try:
            return parse_vector(text, kind)
        except (ValueError, OverflowError, RecursionError) as e:
            return fallback(zero_vector(kind), str(e))

    if kind in REFERENCE_KINDS:
        path = _as_text(raw)
        if not path:
            return None
        try:
            handle = (resolver or DEFAULT_RESOLVER).from_path(path, kind)
        except Exception as e:  # resolver is a host collaborator
            return fallback(None, f"resolver error: {e}")
        if handle is None:
            return fallback(None, "asset could not be resolved")
        return handle

    if kind == TypeKind.INTEGER:
        if isinstance(raw, bool):
            return int(raw)
        if isinstance(raw, str):
            try:
                return int(raw.strip())
            except ValueError:
                return raw
        if isinstance(raw, Decimal) and raw == raw.to_integral_value():
            return int(raw)
        return raw
    if kind == TypeKind.REAL:
        if isinstance(raw, (int, Decimal)) and not isinstance(raw, bool):
            return float(raw)
        return raw
    if kind == TypeKind.BLOB:
        if isinstance(raw, (bytearray, memoryview)):
            return bytes(raw)
        return raw
    if kind == TypeKind.DATETIME and isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw.strip())
        except ValueError as e:
            return fallback(raw, str(e))
    if kind == TypeKind.DATE and isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError as e:
            return fallback(raw, str(e))
    if kind in (TypeKind.TEXT, TypeKind.VARCHAR) and isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return raw


def decode_row(
    raw_row: dict[str, Any],
    types: dict[str, DeclaredType],
    resolver: AssetResolver | None = None,
    on_fallback: FallbackHandler | None = None,
) -> dict[str, Any]:
    """Decode every cell of a raw row using per-column declared types.

    Columns without a known type are passed through unchanged.
    """
    row: dict[str, Any] = {}
    for name, raw in raw_row.items():
        dtype = types.get(name)
        if dtype is None:
            row[name] = raw
        else:
            row[name] = decode(
                raw, dtype, resolver, column=name, on_fallback=on_fallback
            )
    return row


def coerce(value: Any, declared: DeclaredType | str) -> Any:
    """Convert user-entered text to the column's logical type when it parses.

    Non-text values, and text that does not parse, are returned unchanged.
    """
    if not isinstance(value, str):
        return value

    kind = _as_declared(declared).kind
    text = value.strip()
    try:
        if kind == TypeKind.INTEGER:
            return int(text)
        if kind == TypeKind.REAL:
            return float(text)
        if kind in VECTOR_KINDS:
            return parse_vector(text, kind)
    except ValueError:
        return value
    return value


def _as_text(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return str(raw)
