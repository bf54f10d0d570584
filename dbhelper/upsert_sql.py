from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Sequence, Union

from dbhelper.mysql_client import Expr, Quote


@dataclass(frozen=True)
class UseIncomingValue:
	"""`col = VALUES(col)`: take the value from the row being inserted."""
	column: str


@dataclass(frozen=True)
class SetToLiteral:
	"""`col = <quoted value>` regardless of the incoming row."""
	column: str
	value: Any


@dataclass(frozen=True)
class SetToRawExpression:
	"""`col = <sql>` with the SQL emitted unescaped."""
	column: str
	sql: str


UpdateField = Union[UseIncomingValue, SetToLiteral, SetToRawExpression]


def normalise_update_fields(fields) -> list[UpdateField]:
	"""
	Normalise the accepted update-field shapes into UpdateField instances.

	Accepts:
	- None / empty => no update fields (plain INSERT)
	- a mapping {column: value}; Expr values become raw expressions
	- a sequence of column names and/or UpdateField instances
	"""
	if not fields:
		return []
	if isinstance(fields, Mapping):
		return [_from_keyed(column, value) for column, value in fields.items()]
	if isinstance(fields, str):
		raise TypeError("update fields must be a sequence or mapping, not a single string.")

	normalised: list[UpdateField] = []
	for entry in fields:
		if isinstance(entry, (UseIncomingValue, SetToLiteral, SetToRawExpression)):
			normalised.append(entry)
		elif isinstance(entry, str):
			normalised.append(UseIncomingValue(entry))
		elif isinstance(entry, Mapping):
			normalised.extend(_from_keyed(column, value) for column, value in entry.items())
		else:
			raise TypeError(f"Unsupported update field entry: {entry!r}")
	return normalised


def _from_keyed(column: str, value: Any) -> UpdateField:
	if isinstance(value, Expr):
		return SetToRawExpression(column, value.sql)
	return SetToLiteral(column, value)


def render_update_assignments(quote: Quote, fields: Sequence[UpdateField]) -> list[str]:
	assignments: list[str] = []
	for field in fields:
		quoted_field = quote.identifier(field.column)
		if isinstance(field, UseIncomingValue):
			assignments.append(f"{quoted_field} = VALUES({quoted_field})")
		elif isinstance(field, SetToRawExpression):
			assignments.append(f"{quoted_field} = {field.sql}")
		else:
			assignments.append(quote.into(f"{quoted_field} = ?", field.value))
	return assignments


def build_insert_sql(
	quote: Quote,
	table: str,
	insert_fields: Sequence[str],
	update_assignments: Sequence[str],
	rows: Sequence[Sequence[Any]],
	*,
	ignore: bool = False,
) -> str:
	"""
	Build one multi-row INSERT statement.

	IGNORE and ON DUPLICATE KEY UPDATE are mutually exclusive; update
	assignments win when both are requested.
	"""
	if not rows:
		raise ValueError("rows must be a non-empty sequence.")

	values = ", ".join(
		"(" + ", ".join(quote.value(v) for v in row) + ")"
		for row in rows
	)

	insert = ["INSERT"]
	update = ""
	if update_assignments:
		update = "ON DUPLICATE KEY UPDATE " + ", ".join(update_assignments)
	elif ignore:
		insert.append("IGNORE")
	insert.append("INTO " + quote.identifier(table))
	columns = ", ".join(quote.identifier(f) for f in insert_fields)
	insert.append(f"({columns}) VALUES")

	return f"{' '.join(insert)} {values} {update}".strip()
