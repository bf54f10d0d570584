class DbHelperError(Exception):
	"""Base class for errors raised by dbhelper itself."""


class InvalidArgumentError(DbHelperError, ValueError):
	"""
	Raised when a caller-supplied bound is violated before any SQL is run.
	"""
	def __init__(self, message: str, *, limit: int | None = None):
		super().__init__(message)
		self.limit = limit
