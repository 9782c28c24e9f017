"""Schema operations: Pydantic models and DDL transpiler.

Provides structured schema modification operations that can be:
1. Validated by Pydantic
2. Transpiled to DDL SQL for a given dialect
3. Executed by a provider (see usql.providers)
"""

import re

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator

from usql.db.dialect import Dialect
from usql.db.introspection import ColumnInfo
from usql.errors import InvalidNameError
from usql.types import DeclaredType, TypeKind, parse_declared_type

# Valid names: alphanumeric + underscore, cannot start with digit
_VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_name(name: str, entity: str) -> str:
    """Validate that a name is valid for a table or column.

    Args:
        name: The name to validate.
        entity: Description of what's being validated (for error message).

    Returns:
        The validated name.

    Raises:
        InvalidNameError: If the name is invalid.
    """
    if not name:
        raise InvalidNameError(f"{entity} name cannot be empty")
    if not _VALID_NAME_PATTERN.match(name):
        raise InvalidNameError(
            f"Invalid {entity} name '{name}': must be alphanumeric with underscores, "
            "cannot start with a digit"
        )
    return name


def _validate_type(value: str) -> str:
    if not value.strip():
        raise ValueError("column type cannot be empty")
    return value.strip()


class ColumnDef(BaseModel):
    """Definition of a database column.

    ``auto_increment`` left as None means "auto-increment if this is an
    INTEGER primary key".
    """

    name: str
    type: str
    primary_key: bool = False
    auto_increment: bool | None = None
    nullable: bool = True
    unique: bool = False
    default: str | None = None

    @field_validator("name")
    @classmethod
    def validate_column_name(cls, v: str) -> str:
        """Validate column name is alphanumeric + underscore."""
        return validate_name(v, "column")

    @field_validator("type")
    @classmethod
    def validate_column_type(cls, v: str) -> str:
        """Validate column type is non-empty."""
        return _validate_type(v)

    @model_validator(mode="after")
    def validate_auto_increment(self) -> "ColumnDef":
        """Auto-increment is only meaningful on the primary key."""
        if self.auto_increment and not self.primary_key:
            raise ValueError(f"Auto-increment column '{self.name}' must be the primary key")
        return self

    @property
    def declared(self) -> DeclaredType:
        return parse_declared_type(self.type)

    @property
    def is_auto_increment(self) -> bool:
        """Resolve the auto-increment flag for the primary key column."""
        if not self.primary_key:
            return False
        if self.auto_increment is not None:
            return self.auto_increment
        return self.declared.kind == TypeKind.INTEGER

    @classmethod
    def from_column_info(cls, col: ColumnInfo) -> "ColumnDef":
        """Build a definition that reproduces an existing column verbatim.

        Skips validation: existing tables may use names outside the
        identifier pattern enforced for new columns.
        """
        return cls.model_construct(
            name=col.name,
            type=col.storage_type,
            primary_key=col.primary_key,
            auto_increment=col.auto_increment,
            nullable=col.nullable,
            unique=col.unique,
            default=col.default_value,
        )


class CreateTable(BaseModel):
    """Operation to create a new table.

    The primary key is either given by ``primary_key_index`` or by a column
    with ``primary_key=True``; at most one column may be the key.
    """

    table: str
    columns: list[ColumnDef]
    primary_key_index: int | None = None

    @field_validator("table")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Validate table name is alphanumeric + underscore."""
        return validate_name(v, "table")

    @model_validator(mode="after")
    def validate_columns(self) -> "CreateTable":
        """Validate columns: at least one, unique names, a single primary key."""
        if not self.columns:
            raise ValueError("Table must have at least one column")

        seen: set[str] = set()
        for col in self.columns:
            if col.name in seen:
                raise ValueError(f"Duplicate column name '{col.name}'")
            seen.add(col.name)

        if self.primary_key_index is not None:
            if not 0 <= self.primary_key_index < len(self.columns):
                raise ValueError(
                    f"primary_key_index {self.primary_key_index} is out of range"
                )
            for i, col in enumerate(self.columns):
                col.primary_key = i == self.primary_key_index
                if not col.primary_key and col.auto_increment:
                    raise ValueError(
                        f"Auto-increment column '{col.name}' must be the primary key"
                    )

        keys = [col.name for col in self.columns if col.primary_key]
        if len(keys) > 1:
            raise ValueError(f"Only one primary key column allowed, got: {keys}")
        return self

    @property
    def primary_key(self) -> ColumnDef | None:
        for col in self.columns:
            if col.primary_key:
                return col
        return None


class AddColumn(BaseModel):
    """Operation to add a column to an existing table."""

    table: str
    column: str
    type: str
    nullable: bool = True

    @field_validator("column")
    @classmethod
    def validate_column_name(cls, v: str) -> str:
        """Validate column name is alphanumeric + underscore."""
        return validate_name(v, "column")

    @field_validator("type")
    @classmethod
    def validate_column_type(cls, v: str) -> str:
        """Validate column type is non-empty."""
        return _validate_type(v)


class ModifyColumn(BaseModel):
    """Operation to rename and/or retype a column and set its key status."""

    table: str
    old_name: str
    new_name: str
    new_type: str
    is_primary_key: bool = False

    @field_validator("new_name")
    @classmethod
    def validate_new_name(cls, v: str, info: ValidationInfo) -> str:
        """Validate a changed column name is alphanumeric + underscore.

        An unchanged name is accepted as is so existing columns with
        unusual names can still be retyped or promoted to key.
        """
        if v == info.data.get("old_name"):
            return v
        return validate_name(v, "column")

    @field_validator("new_type")
    @classmethod
    def validate_new_type(cls, v: str) -> str:
        """Validate column type is non-empty."""
        return _validate_type(v)


class DropColumn(BaseModel):
    """Operation to drop a column from a table."""

    table: str
    column: str


# Union type for all schema operations
SchemaOp = CreateTable | AddColumn | ModifyColumn | DropColumn


# =============================================================================
# DDL rendering
# =============================================================================


def column_sql(col: ColumnDef, dialect: Dialect) -> str:
    """Convert a ColumnDef to a SQL column definition.

    The primary key itself is rendered as a table constraint by
    ``primary_key_sql``; on MySQL the AUTO_INCREMENT attribute stays on the
    column.

    Returns:
        SQL column definition (e.g. '"name" TEXT NOT NULL').
    """
    parts = [dialect.quote(col.name)]
    # Untyped SQLite columns stay untyped
    if col.type:
        parts.append(col.declared.storage_sql(dialect, primary_key=col.primary_key))
    if not col.nullable:
        parts.append("NOT NULL")
    if col.unique and not col.primary_key:
        parts.append("UNIQUE")
    if col.default is not None:
        default = f"({col.default})" if dialect.name == "sqlite" else col.default
        parts.append(f"DEFAULT {default}")
    if dialect.name == "mysql" and col.is_auto_increment:
        parts.append("AUTO_INCREMENT")
    return " ".join(parts)


def primary_key_sql(col: ColumnDef, dialect: Dialect) -> str:
    """Render the PRIMARY KEY table constraint for a column.

    SQLite only accepts AUTOINCREMENT on a column declared exactly INTEGER.
    """
    name = dialect.quote(col.name)
    storage = col.declared.storage_sql(dialect, primary_key=True)
    if dialect.name == "sqlite" and col.is_auto_increment and storage.upper() == "INTEGER":
        return f"PRIMARY KEY({name} AUTOINCREMENT)"
    return f"PRIMARY KEY({name})"


def create_table_sql(
    table: str, columns: list[ColumnDef], dialect: Dialect
) -> str:
    """Render a CREATE TABLE statement for an ordered column list.

    Args:
        table: Name of the table to create.
        columns: Column definitions in physical order.
        dialect: Target dialect.

    Returns:
        CREATE TABLE SQL statement.
    """
    defs = [column_sql(col, dialect) for col in columns]
    key = next((col for col in columns if col.primary_key), None)
    if key is not None:
        defs.append(primary_key_sql(key, dialect))
    return f"CREATE TABLE {dialect.quote(table)} ({', '.join(defs)})"


def transpile_create_table(op: CreateTable, dialect: Dialect) -> str:
    """Transpile CreateTable operation to SQL."""
    return create_table_sql(op.table, op.columns, dialect)


def transpile_add_column(op: AddColumn, dialect: Dialect) -> str:
    """Transpile AddColumn operation to SQL.

    Returns:
        ALTER TABLE ADD COLUMN SQL statement.
    """
    sql_type = parse_declared_type(op.type).storage_sql(dialect)
    nullable_clause = "" if op.nullable else " NOT NULL"
    return (
        f"ALTER TABLE {dialect.quote(op.table)} "
        f"ADD COLUMN {dialect.quote(op.column)} {sql_type}{nullable_clause}"
    )


def transpile_drop_column(op: DropColumn, dialect: Dialect) -> str:
    """Transpile DropColumn operation to SQL.

    Returns:
        ALTER TABLE DROP COLUMN SQL statement.
    """
    return f"ALTER TABLE {dialect.quote(op.table)} DROP COLUMN {dialect.quote(op.column)}"


def change_column_clause(
    op: ModifyColumn,
    dialect: Dialect,
    add_primary_key: bool,
    auto_increment: bool,
    nullable: bool = True,
) -> str:
    """Render the MySQL CHANGE COLUMN clause for a ModifyColumn.

    Args:
        op: The ModifyColumn operation.
        dialect: Target dialect (MySQL).
        add_primary_key: Append PRIMARY KEY (the column becomes the key).
        auto_increment: Keep or set the AUTO_INCREMENT attribute.
        nullable: Whether a non-key column may hold NULL.
    """
    sql_type = parse_declared_type(op.new_type).storage_sql(
        dialect, primary_key=op.is_primary_key
    )
    sql = f"CHANGE COLUMN {dialect.quote(op.old_name)} {dialect.quote(op.new_name)} {sql_type}"
    if op.is_primary_key or not nullable:
        # Key columns cannot be NULL on MySQL
        sql += " NOT NULL"
    if auto_increment:
        sql += " AUTO_INCREMENT"
    if add_primary_key:
        sql += " PRIMARY KEY"
    return sql


def transpile_change_column(
    op: ModifyColumn,
    dialect: Dialect,
    add_primary_key: bool,
    auto_increment: bool,
    nullable: bool = True,
) -> str:
    """Transpile ModifyColumn to a MySQL ALTER TABLE ... CHANGE COLUMN statement."""
    clause = change_column_clause(op, dialect, add_primary_key, auto_increment, nullable)
    return f"ALTER TABLE {dialect.quote(op.table)} {clause}"
