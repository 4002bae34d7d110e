# query_builder.py
# Description: Read-only join/aggregate query composition on top of StorageAdapter.query_raw
#
# Imports
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence
#
# Local Imports
from tempo_data.app.core.DB_Management.exceptions import InputError, SchemaError
from tempo_data.app.core.DB_Management.schema import validate_identifier
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter
#
#######################################################################################################################
#
# Classes:

JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "CROSS")


@dataclass(frozen=True)
class JoinClause:
    table: str
    on: Optional[str] = None
    type: str = "INNER"
    alias: Optional[str] = None

    def to_sql(self) -> str:
        join_type = self.type.upper()
        if join_type not in JOIN_TYPES:
            raise InputError(f"Unsupported join type: {self.type!r}")
        sql = f"{join_type} JOIN {_identifier(self.table)}"
        if self.alias:
            sql += f" AS {_identifier(self.alias)}"
        if join_type != "CROSS":
            if not self.on:
                raise InputError(f"{join_type} JOIN on '{self.table}' needs an ON condition")
            sql += f" ON {self.on}"
        return sql


def _identifier(name: str) -> str:
    try:
        return validate_identifier(name)
    except SchemaError as e:
        raise InputError(str(e)) from e


class QueryBuilder:
    """
    Composes SELECTs from caller-supplied fragments. Table names and aliases are
    checked as identifiers; select lists, conditions and expressions are trusted
    SQL and must use `?` placeholders for values.
    """

    def __init__(self, adapter: StorageAdapter):
        self.adapter = adapter

    @staticmethod
    def build_join(select: Sequence[str], from_table: str, joins: Sequence[JoinClause],
                   where: Optional[str] = None, group_by: Optional[Sequence[str]] = None,
                   order_by: Optional[str] = None, limit: Optional[int] = None,
                   from_alias: Optional[str] = None) -> str:
        columns = ", ".join(select) if select else "*"
        source = _identifier(from_table)
        if from_alias:
            source += f" AS {_identifier(from_alias)}"
        parts = [f"SELECT {columns} FROM {source}"]
        parts.extend(join.to_sql() for join in joins)
        if where:
            parts.append(f"WHERE {where}")
        if group_by:
            parts.append(f"GROUP BY {', '.join(group_by)}")
        if order_by:
            parts.append(f"ORDER BY {order_by}")
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        return " ".join(parts)

    @staticmethod
    def build_aggregate(table: str, aggregates: Mapping[str, str], where: Optional[str] = None,
                        group_by: Optional[Sequence[str]] = None) -> str:
        if not aggregates:
            raise InputError("aggregate() needs at least one expression")
        expressions = [f"{expr} AS {_identifier(alias)}" for alias, expr in aggregates.items()]
        select = list(group_by or []) + expressions
        sql = f"SELECT {', '.join(select)} FROM {_identifier(table)}"
        if where:
            sql += f" WHERE {where}"
        if group_by:
            sql += f" GROUP BY {', '.join(group_by)}"
        return sql

    async def join(self, select: Sequence[str], from_table: str, joins: Sequence[JoinClause],
                   where: Optional[str] = None, group_by: Optional[Sequence[str]] = None,
                   order_by: Optional[str] = None, limit: Optional[int] = None,
                   params: Sequence[Any] = (), from_alias: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = self.build_join(select, from_table, joins, where, group_by, order_by, limit, from_alias)
        return await self.adapter.query_raw(sql, params)

    async def aggregate(self, table: str, aggregates: Mapping[str, str], where: Optional[str] = None,
                        group_by: Optional[Sequence[str]] = None,
                        params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        sql = self.build_aggregate(table, aggregates, where, group_by)
        return await self.adapter.query_raw(sql, params)

#
# End of query_builder.py
#######################################################################################################################
