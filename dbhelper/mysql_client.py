import logging
from dataclasses import dataclass
from threading import RLock
from typing import Any, Iterator, Optional

import pymysql
from pymysql.converters import escape_item
from pymysql.cursors import DictCursor, SSDictCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Expr:
	"""
	Raw SQL fragment. Emitted verbatim wherever a quoted value or identifier is expected.
	"""
	sql: str

	def __str__(self) -> str:
		return self.sql


class Quote:
	"""
	MySQL quoting helpers for identifiers and literal values.

	Escaping does not need a live connection; values are rendered with PyMySQL's
	converters for the configured charset.
	"""

	def __init__(self, charset: str = "utf8mb4"):
		self.charset = charset

	@staticmethod
	def identifier(name) -> str:
		"""
		Quote a (optionally schema-qualified) identifier, e.g. db.table -> `db`.`table`.
		"""
		if isinstance(name, Expr):
			return name.sql
		parts = str(name).split(".")
		return ".".join("`" + part.replace("`", "``") + "`" for part in parts)

	def value(self, value: Any) -> str:
		if isinstance(value, Expr):
			return value.sql
		return escape_item(value, self.charset)

	def into(self, text: str, value: Any) -> str:
		"""Replace each `?` placeholder in text with the quoted value."""
		return text.replace("?", self.value(value))


class Statement:
	"""
	A prepared statement bound to one client session.

	Execution happens on the client's current cursor class, so a statement
	prepared after `disable_buffering()` streams its rows from the server.
	Statements prepared on a session clone close that session when closed.
	"""

	def __init__(self, client: "MySQLClient", sql: str):
		self.client = client
		self.sql = sql
		self._cursor = None

	def execute(self, params=None) -> "Statement":
		if self._cursor is not None:
			self._cursor.close()
		self._cursor = self.client.cursor()
		self._cursor.execute(self.sql, params or None)
		return self

	def _require_cursor(self):
		if self._cursor is None:
			raise RuntimeError("Statement has not been executed.")
		return self._cursor

	@property
	def rowcount(self) -> int:
		return self._require_cursor().rowcount

	def fetchone(self) -> dict | None:
		return self._require_cursor().fetchone()

	def fetchmany(self, size: int | None = None) -> list[dict]:
		return list(self._require_cursor().fetchmany(size))

	def fetchall(self) -> list[dict]:
		return list(self._require_cursor().fetchall())

	def __iter__(self) -> Iterator[dict]:
		return iter(self._require_cursor())

	def close(self) -> None:
		try:
			if self._cursor is not None:
				self._cursor.close()
		finally:
			self._cursor = None
			if self.client.is_session_clone:
				self.client.close()

	def __enter__(self) -> "Statement":
		return self

	def __exit__(self, exc_type, exc, tb):
		self.close()
		return False


class MySQLClient:
	"""
	Single-session MySQL client used as the execution collaborator for
	BulkInsert and BigResult.

	Create directly:
		client = MySQLClient(database="app", user="app", password="...", host="localhost", port=3306)

	The connection is opened lazily on first use and runs in autocommit mode.
	Use `clone()` to get an independent session with the same parameters, and
	`close()` when you're done with it.
	"""

	def __init__(
		self,
		*,
		database: Optional[str] = None,
		user: str = "root",
		password: Optional[str] = None,
		host: str = "localhost",
		port: int = 3306,
		charset: str = "utf8mb4",
		**conn_kwargs
	):
		# Store connect params for __repr__ / clone()
		self.database = database
		self.user = user
		self.host = host
		self.port = port
		self.charset = charset
		self.is_session_clone = False
		self._closed = False
		self._state_lock = RLock()
		self._conn = None
		self._cursorclass = DictCursor
		self._password = password
		self._conn_kwargs = dict(conn_kwargs)

	def __repr__(self) -> str:
		mode = "buffered" if self.buffered else "unbuffered"
		return f"<MySQLClient {self.user}@{self.host}:{self.port}/{self.database or ''} {mode}>"

	# ---------- Session plumbing ----------
	@property
	def connection(self) -> pymysql.connections.Connection:
		with self._state_lock:
			if self._closed:
				raise RuntimeError("MySQLClient is closed.")
			if self._conn is None:
				logger.debug("Connecting MySQLClient %s@%s:%s/%s", self.user, self.host, self.port, self.database or "")
				self._conn = pymysql.connect(
					host=self.host,
					port=self.port,
					user=self.user,
					password=self._password or "",
					database=self.database,
					charset=self.charset,
					autocommit=True,
					**self._conn_kwargs
				)
			return self._conn

	def close(self) -> None:
		"""Close this client's session."""
		with self._state_lock:
			if self._closed:
				return
			self._closed = True
			conn, self._conn = self._conn, None
		if conn is None:
			return
		try:
			conn.close()
		except pymysql.err.Error:
			# Already closed by the server side
			logger.debug("Connection for %r was already closed", self)

	def clone(self) -> "MySQLClient":
		"""
		Return a new client with the same parameters and its own session.
		Session variables and buffering changes on the clone never reach this client.
		"""
		client = self.__class__(
			database=self.database,
			user=self.user,
			password=self._password,
			host=self.host,
			port=self.port,
			charset=self.charset,
			**self._conn_kwargs
		)
		client.is_session_clone = True
		return client

	@property
	def buffered(self) -> bool:
		return self._cursorclass is DictCursor

	def disable_buffering(self) -> None:
		"""Stream result sets from the server instead of loading them into memory."""
		self._cursorclass = SSDictCursor

	def enable_buffering(self) -> None:
		self._cursorclass = DictCursor

	def quote(self) -> Quote:
		return Quote(self.charset)

	def cursor(self):
		return self.connection.cursor(self._cursorclass)

	# ---------- Execution helpers ----------
	def execute(self, sql: str, params=None) -> int:
		"""
		Execute one statement and return the affected row count.
		Driver errors propagate unchanged.
		"""
		with self.cursor() as cur:
			return cur.execute(sql, params or None)

	def query(self, sql: str, params=None):
		"""
		Execute a statement and return its open cursor (rows as dicts).
		The caller is responsible for closing the cursor.
		"""
		cur = self.cursor()
		try:
			cur.execute(sql, params or None)
		except Exception:
			cur.close()
			raise
		return cur

	def prepare(self, sql: str) -> Statement:
		return Statement(self, sql)
