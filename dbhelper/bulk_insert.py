from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from dbhelper.db_errors import is_deadlock
from dbhelper.upsert_sql import build_insert_sql, normalise_update_fields, render_update_assignments

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


def execute_with_deadlock_retry(
	adapter,
	sql: str,
	*,
	is_transient_conflict: Callable[[BaseException], bool] = is_deadlock,
) -> int:
	"""
	Execute a statement, re-issuing it for as long as the database reports a
	transient conflict. Any other error propagates unchanged.

	There is no retry cap or backoff; wrap the call externally when bounded
	latency is required.
	"""
	attempt = 1
	while True:
		try:
			return adapter.execute(sql)
		except Exception as exc:
			if not is_transient_conflict(exc):
				raise
			logger.warning("Transient conflict on attempt %d, retrying statement: %s", attempt, exc)
			attempt += 1


@dataclass
class InsertStats:
	"""
	Running totals derived from batch sizes and affected-row counts.

	MySQL reports 1 affected row per insert and 2 per duplicate-key update, so
	`updated = affected - rows`. Under INSERT IGNORE a skipped duplicate reports
	0, which drives `updated` negative; that is reported as-is.
	"""
	total: int = 0
	inserted: int = 0
	updated: int = 0

	def record(self, row_count: int, affected_rows: int) -> None:
		updated_rows = affected_rows - row_count
		self.total += row_count
		self.inserted += row_count - updated_rows
		self.updated += updated_rows

	def clear(self) -> None:
		self.total = 0
		self.inserted = 0
		self.updated = 0

	def snapshot(self, pending: int) -> dict[str, int]:
		return {
			"total": self.total,
			"inserted": self.inserted,
			"updated": self.updated,
			"pending": pending,
		}


class BulkInsert:
	"""
	Insert large amounts of data into a single table in defined batch sizes.

	Usage:
		inserter = BulkInsert(client, "db.events", ["id", "name"], ["name"])
		for row in rows:
			inserter.add(row)
		stats = inserter.fetch_stats()  # flushes what is left

	Rows are positional and must match the insert fields in length; rows of any
	other length are dropped without error. Not safe for concurrent use.
	"""

	def __init__(
		self,
		adapter,
		table: str,
		insert_fields: Sequence[str],
		update_fields=None,
		*,
		batch_size: int = DEFAULT_BATCH_SIZE,
		is_transient_conflict: Callable[[BaseException], bool] = is_deadlock,
	):
		if not isinstance(batch_size, int) or batch_size <= 0:
			raise ValueError("batch_size must be a positive integer.")
		self.adapter = adapter
		self.table = table
		self.batch_size = batch_size
		self._is_transient_conflict = is_transient_conflict
		self._insert_ignore = False
		self._rows: list[tuple[Any, ...]] = []
		self._stats = InsertStats()
		self._insert_fields: list[str] = []
		self._update_assignments: list[str] = []

		self.set_insert_fields(insert_fields)
		self.set_update_fields(update_fields)

	def __repr__(self) -> str:
		return f"<BulkInsert {self.table} batch={self.batch_size} pending={self.pending}>"

	@property
	def pending(self) -> int:
		return len(self._rows)

	def set_insert_fields(self, fields: Sequence[str]) -> "BulkInsert":
		"""Sets the insert fields for the bulk statement."""
		self._insert_fields = list(fields)
		return self

	def set_update_fields(self, fields) -> "BulkInsert":
		"""
		Sets the update fields for the bulk statement.

		Column names update from the incoming row; {column: value} pairs set a
		fixed literal, or raw SQL when the value is an Expr. Assignments are
		rendered here once rather than on every flush.
		"""
		self._update_assignments = render_update_assignments(
			self.adapter.quote(), normalise_update_fields(fields)
		)
		return self

	def add(self, row: Sequence[Any]) -> "BulkInsert":
		"""
		Adds a row to the bulk insert. Row should be ordered to match the insert
		fields. Writes to the database automatically once the batch size is reached.
		"""
		if len(row) == len(self._insert_fields):
			self._rows.append(tuple(row))
			if len(self._rows) >= self.batch_size:
				self.write()
		return self

	def write(self) -> "BulkInsert":
		"""
		Writes the rows added so far. On error the buffer is left intact so the
		caller can retry.
		"""
		row_count = len(self._rows)
		if row_count == 0:
			return self

		sql = self._fetch_sql()
		affected_rows = execute_with_deadlock_retry(
			self.adapter, sql, is_transient_conflict=self._is_transient_conflict
		)
		self._rows = []
		self._stats.record(row_count, affected_rows)
		logger.debug("Flushed %d rows into %s (%d affected)", row_count, self.table, affected_rows)
		return self

	def _fetch_sql(self) -> str:
		return build_insert_sql(
			self.adapter.quote(),
			self.table,
			self._insert_fields,
			self._update_assignments,
			self._rows,
			ignore=self._insert_ignore,
		)

	def fetch_stats(self, flush: bool = True) -> dict[str, int]:
		"""
		Gets statistics about the bulk insert. If flush is true, outstanding rows
		are written first.

		Returns:
			{"total": 100, "inserted": 50, "updated": 50, "pending": 0}
		"""
		if flush:
			self.write()
		return self._stats.snapshot(self.pending)

	def clear_stats(self) -> "BulkInsert":
		"""Clear the recorded totals. Pending rows are kept."""
		self._stats.clear()
		return self

	def insert_ignore_enabled(self) -> "BulkInsert":
		self._insert_ignore = True
		return self

	def insert_ignore_disabled(self) -> "BulkInsert":
		self._insert_ignore = False
		return self
