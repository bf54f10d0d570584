from __future__ import annotations

import logging
import sys

logger = logging.getLogger(__name__)

# Largest native (64-bit) integer; estimates saturate here
MAX_INT = sys.maxsize


class QueryPlanner:
	"""
	Estimate how many rows a SELECT will inspect, from its EXPLAIN output.

	The estimate is the product of the `rows` column over every plan step. It
	is a heuristic upper bound, not an exact count.
	"""

	def __init__(self, adapter, select: str, bind=None):
		self.adapter = adapter
		self.select = select
		self.bind = bind

	def get_plan(self) -> list[dict]:
		"""Run EXPLAIN for the query. Never cached."""
		with self.adapter.query(f"EXPLAIN {self.select}", self.bind) as cur:
			return list(cur.fetchall())

	def get_number_of_rows_inspected(self) -> int:
		inspected_rows = 1
		for analysis in self.get_plan():
			# NULL rows (e.g. UNION RESULT steps) count as zero
			inspected_rows *= int(analysis.get("rows") or 0)
			if inspected_rows > MAX_INT:
				inspected_rows = MAX_INT
				break

		logger.debug("Estimated %d inspected rows for query", inspected_rows)
		return inspected_rows
