from __future__ import annotations

import logging
from typing import Callable

from dbhelper.exceptions import InvalidArgumentError
from dbhelper.query_planner import QueryPlanner

logger = logging.getLogger(__name__)

DEFAULT_LONG_QUERY_TIME = 7200
DEFAULT_NET_WRITE_TIMEOUT = 7200


class BigResult:
	"""
	Run a potentially huge SELECT as an unbuffered, streaming statement.

	Optionally estimates the number of inspected rows first and refuses to run
	queries above a limit. The query runs on a clone of the adapter so the
	session timeouts and unbuffered mode never leak onto the base session.

	Usage:
		with BigResult(client).query("SELECT * FROM big_table", inspected_row_limit=10_000_000) as stmt:
			for row in stmt:
				...
	"""

	def __init__(
		self,
		adapter,
		*,
		long_query_time: int = DEFAULT_LONG_QUERY_TIME,
		net_write_timeout: int = DEFAULT_NET_WRITE_TIMEOUT,
		planner_factory: Callable[..., QueryPlanner] = QueryPlanner,
	):
		self.adapter = adapter
		self.long_query_time = int(long_query_time)
		self.net_write_timeout = int(net_write_timeout)
		self._planner_factory = planner_factory

	@classmethod
	def execute(cls, adapter, select: str, bind=None, row_limit: int | None = None):
		"""Shortcut for `BigResult(adapter).query(select, bind, row_limit)`."""
		return cls(adapter).query(select, bind, row_limit)

	def query(self, select: str, bind=None, inspected_row_limit: int | None = None):
		"""
		Execute the query and return the unbuffered statement.
		The caller must consume and close it.
		"""
		if inspected_row_limit is not None:
			inspected_rows = self._get_inspected_rows(select, bind)
			if inspected_rows > inspected_row_limit:
				raise InvalidArgumentError(
					f"Number of rows inspected exceeds '{inspected_row_limit}'",
					limit=inspected_row_limit,
				)

		session = self.adapter.clone()
		try:
			session.execute(
				f"SET @@long_query_time={self.long_query_time}, @@net_write_timeout={self.net_write_timeout}"
			)
			session.disable_buffering()
			logger.debug(
				"Running unbuffered query (long_query_time=%d, net_write_timeout=%d)",
				self.long_query_time, self.net_write_timeout,
			)

			stmt = session.prepare(select)
			stmt.execute(bind)
		except Exception:
			session.close()
			raise
		return stmt

	def _get_inspected_rows(self, select: str, bind) -> int:
		return self._planner_factory(self.adapter, select, bind).get_number_of_rows_inspected()
