from __future__ import annotations

from pymysql.constants import ER
from pymysql.err import MySQLError

DEADLOCK_CODES = frozenset({ER.LOCK_DEADLOCK})


def is_deadlock(exc: BaseException) -> bool:
	# Driver errors carry the server error code as args[0]
	if isinstance(exc, MySQLError) and exc.args:
		code = exc.args[0]
		if isinstance(code, int) and code in DEADLOCK_CODES:
			return True

	msg = str(exc).lower()
	return "deadlock" in msg
