# schema.py
# Description: Declarative table/column/index catalog used by the migration engine and the storage adapter.
#
"""
Schema Declarations
===================

Tables are declared once, up front, and never mutated afterwards. Every table
built with :func:`table` carries the five system columns (``id``,
``created_at``, ``updated_at``, ``synced``, ``deleted``) ahead of its own
domain columns.

Example:
    sessions = table("sessions", lambda t: (
        t.column("name", ColumnType.TEXT, not_null=True)
         .index(["name"], unique=True)
    ))
"""
#
# Imports
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union
#
# Third-Party Imports
from pydantic import BaseModel, ConfigDict, ValidationError, create_model
#
# Local Imports
from tempo_data.app.core.DB_Management.exceptions import InputError, SchemaError
#
#######################################################################################################################
#
# Functions:

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SYSTEM_COLUMNS: Tuple[str, ...] = ("id", "created_at", "updated_at", "synced", "deleted")


class ColumnType(str, Enum):
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"
    DATE = "DATE"
    JSONB = "JSONB"


# Logical type -> storage type. Anything not listed is stored as TEXT.
PHYSICAL_TYPES: Dict[str, str] = {
    ColumnType.TEXT.value: "TEXT",
    ColumnType.INTEGER.value: "INTEGER",
    ColumnType.REAL.value: "REAL",
    ColumnType.BOOLEAN.value: "INTEGER",
    ColumnType.TIMESTAMP.value: "INTEGER",
    ColumnType.DATE.value: "TEXT",
    ColumnType.JSONB.value: "TEXT",
}

_PYTHON_TYPES: Dict[str, Any] = {
    ColumnType.TEXT.value: str,
    ColumnType.INTEGER.value: int,
    ColumnType.REAL.value: float,
    ColumnType.BOOLEAN.value: bool,
    ColumnType.TIMESTAMP.value: int,
    ColumnType.DATE.value: str,
    ColumnType.JSONB.value: Any,
}


def _type_name(logical_type: Union[ColumnType, str]) -> str:
    if isinstance(logical_type, ColumnType):
        return logical_type.value
    return str(logical_type).upper()


def physical_type(logical_type: Union[ColumnType, str]) -> str:
    """Maps a logical column type to the type used in DDL. Never fails."""
    return PHYSICAL_TYPES.get(_type_name(logical_type), "TEXT")


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """Raises SchemaError unless `name` is safe to interpolate into SQL."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise SchemaError(f"Invalid {kind} name: {name!r}")
    return name


@dataclass(frozen=True)
class ColumnDefinition:
    type: Union[ColumnType, str]
    primary_key: bool = False
    auto_increment: bool = False
    not_null: bool = False
    unique: bool = False
    default: Any = None

    @property
    def type_name(self) -> str:
        return _type_name(self.type)

    @property
    def physical_type(self) -> str:
        return physical_type(self.type)


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False


@dataclass(frozen=True)
class TableSchema:
    """Immutable description of one table. Column order is declaration order."""
    name: str
    columns: Mapping[str, ColumnDefinition]
    indexes: Tuple[IndexDefinition, ...] = ()
    _record_model: Optional[Type[BaseModel]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "indexes", tuple(self.indexes))
        object.__setattr__(self, "_record_model", _build_record_model(self.name, self.columns))

    @property
    def column_names(self) -> List[str]:
        return list(self.columns.keys())

    @property
    def domain_columns(self) -> List[str]:
        return [name for name in self.columns if name not in SYSTEM_COLUMNS]

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def record_model(self) -> Type[BaseModel]:
        """Pydantic model over the domain columns. All fields optional, unknown keys rejected."""
        return self._record_model

    def validate_record(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validates domain data entering the store and returns the coerced values
        for exactly the keys that were supplied.

        Raises:
            InputError: Unknown column or a value of the wrong type.
        """
        try:
            model = self._record_model.model_validate(dict(data))
        except ValidationError as e:
            raise InputError(f"Invalid record for table '{self.name}': {e}") from e
        return model.model_dump(exclude_unset=True)


def _build_record_model(table_name: str, columns: Mapping[str, ColumnDefinition]) -> Type[BaseModel]:
    fields: Dict[str, Any] = {}
    for name, column in columns.items():
        if name in SYSTEM_COLUMNS:
            continue
        py_type = _PYTHON_TYPES.get(column.type_name, str)
        fields[name] = (Optional[py_type], None)
    model_name = "".join(part.capitalize() for part in table_name.split("_")) + "Record"
    return create_model(model_name, __config__=ConfigDict(extra="forbid"), **fields)


class SchemaBuilder:
    """Fluent builder for a TableSchema."""

    def __init__(self, table_name: str):
        self.table_name = validate_identifier(table_name, "table")
        self._columns: Dict[str, ColumnDefinition] = {}
        self._indexes: List[IndexDefinition] = []

    def column(self, name: str, type: Union[ColumnType, str], *, primary_key: bool = False,
               auto_increment: bool = False, not_null: bool = False, unique: bool = False,
               default: Any = None) -> "SchemaBuilder":
        validate_identifier(name, "column")
        if name in self._columns:
            raise SchemaError(f"Column '{name}' declared twice on table '{self.table_name}'")
        self._columns[name] = ColumnDefinition(
            type=type,
            primary_key=primary_key,
            auto_increment=auto_increment,
            not_null=not_null,
            unique=unique,
            default=default,
        )
        return self

    def index(self, columns: Sequence[str], name: Optional[str] = None, unique: bool = False) -> "SchemaBuilder":
        if isinstance(columns, str):
            columns = [columns]
        if not columns:
            raise SchemaError(f"Index on table '{self.table_name}' needs at least one column")
        index_name = name or f"idx_{self.table_name}_{'_'.join(columns)}"
        validate_identifier(index_name, "index")
        self._indexes.append(IndexDefinition(name=index_name, columns=tuple(columns), unique=unique))
        return self

    def build(self) -> TableSchema:
        for index in self._indexes:
            missing = [col for col in index.columns if col not in self._columns]
            if missing:
                raise SchemaError(
                    f"Index '{index.name}' references undeclared column(s) {missing} on table '{self.table_name}'"
                )
        return TableSchema(name=self.table_name, columns=dict(self._columns), indexes=tuple(self._indexes))


def table(name: str, define: Optional[Callable[[SchemaBuilder], Any]] = None) -> TableSchema:
    """Declares a table with the system columns followed by whatever `define` adds."""
    builder = (
        SchemaBuilder(name)
        .column("id", ColumnType.TEXT, primary_key=True)
        .column("created_at", ColumnType.TIMESTAMP, not_null=True)
        .column("updated_at", ColumnType.TIMESTAMP, not_null=True)
        .column("synced", ColumnType.BOOLEAN, default=False)
        .column("deleted", ColumnType.BOOLEAN, default=False)
    )
    if define is not None:
        define(builder)
    return builder.build()

#
# End of schema.py
#######################################################################################################################
