import sys
import unittest
from pathlib import Path
from unittest import mock

from pymysql.cursors import DictCursor, SSDictCursor
from pymysql.err import ProgrammingError

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dbhelper import mysql_client  # noqa: E402
from dbhelper.mysql_client import Expr, MySQLClient, Quote, Statement  # noqa: E402


class FakeCursor:
    def __init__(self, *, rows=None, affected=0, raise_on_execute=None):
        self._rows = list(rows or [])
        self.affected = affected
        self.raise_on_execute = raise_on_execute
        self.rowcount = -1
        self.executed = []
        self.closed = False

    def execute(self, query, params):
        self.executed.append((query, params))
        if self.raise_on_execute is not None:
            raise self.raise_on_execute
        self.rowcount = self.affected
        return self.affected

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchmany(self, size=None):
        size = size or 1
        batch, self._rows = self._rows[:size], self._rows[size:]
        return batch

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def __iter__(self):
        return iter(self.fetchone, None)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class FakeConnection:
    def __init__(self, cursor=None):
        self._cursor = cursor or FakeCursor()
        self.cursor_classes = []
        self.close_calls = 0

    def cursor(self, cursorclass=None):
        self.cursor_classes.append(cursorclass)
        return self._cursor

    def close(self):
        self.close_calls += 1


class MySQLClientTestCase(unittest.TestCase):
    def setUp(self):
        self.cursor = FakeCursor()
        self.conn = FakeConnection(self.cursor)
        patcher = mock.patch.object(mysql_client.pymysql, "connect", return_value=self.conn)
        self.connect = patcher.start()
        self.addCleanup(patcher.stop)


class TestQuote(unittest.TestCase):
    def test_identifier(self):
        cases = [
            ("users", "`users`"),
            ("app.users", "`app`.`users`"),
            ("we`ird", "`we``ird`"),
            (Expr("COUNT(*)"), "COUNT(*)"),
        ]
        for name, expected in cases:
            with self.subTest(name=name):
                self.assertEqual(Quote.identifier(name), expected)

    def test_value(self):
        quote = Quote()
        cases = [
            ("foo", "'foo'"),
            ("it's", "'it\\'s'"),
            (12, "12"),
            (True, "1"),
            (None, "NULL"),
            (Expr("CURRENT_TIMESTAMP"), "CURRENT_TIMESTAMP"),
        ]
        for value, expected in cases:
            with self.subTest(value=value):
                self.assertEqual(quote.value(value), expected)

    def test_into(self):
        self.assertEqual(Quote().into("`a` = ?", "x"), "`a` = 'x'")
        self.assertEqual(Quote().into("`a` = ?", Expr("a + 1")), "`a` = a + 1")

    def test_expr_str(self):
        self.assertEqual(str(Expr("NOW()")), "NOW()")


class TestSessionLifecycle(MySQLClientTestCase):
    def test_lazy_connect_with_params(self):
        client = MySQLClient(database="app", user="alice", password="secret", host="db.local", port=3307, connect_timeout=5)
        self.connect.assert_not_called()
        self.assertIs(client.connection, self.conn)
        self.assertIs(client.connection, self.conn)
        self.connect.assert_called_once_with(
            host="db.local",
            port=3307,
            user="alice",
            password="secret",
            database="app",
            charset="utf8mb4",
            autocommit=True,
            connect_timeout=5,
        )

    def test_repr(self):
        client = MySQLClient(database="app", user="alice", host="db.local")
        self.assertEqual(repr(client), "<MySQLClient alice@db.local:3306/app buffered>")
        client.disable_buffering()
        self.assertEqual(repr(client), "<MySQLClient alice@db.local:3306/app unbuffered>")

    def test_close_is_idempotent_and_blocks_use(self):
        client = MySQLClient()
        client.connection
        client.close()
        client.close()
        self.assertEqual(self.conn.close_calls, 1)
        with self.assertRaisesRegex(RuntimeError, "closed"):
            client.connection

    def test_close_without_connection(self):
        client = MySQLClient()
        client.close()
        self.connect.assert_not_called()

    def test_clone_is_independent(self):
        client = MySQLClient(database="app", user="alice", password="pw", charset="latin1", read_timeout=30)
        client.disable_buffering()
        clone = client.clone()

        self.assertIsNot(clone, client)
        self.assertTrue(clone.is_session_clone)
        self.assertFalse(client.is_session_clone)
        self.assertTrue(clone.buffered)
        self.assertEqual(clone.charset, "latin1")

        clone.connection
        self.assertEqual(self.connect.call_args.kwargs["read_timeout"], 30)
        self.assertEqual(self.connect.call_args.kwargs["password"], "pw")

        clone.close()
        client.connection
        self.assertEqual(self.connect.call_count, 2)

    def test_buffering_switches_cursor_class(self):
        client = MySQLClient()
        client.cursor()
        client.disable_buffering()
        client.cursor()
        client.enable_buffering()
        client.cursor()
        self.assertEqual(self.conn.cursor_classes, [DictCursor, SSDictCursor, DictCursor])

    def test_quote_uses_client_charset(self):
        self.assertEqual(MySQLClient(charset="latin1").quote().charset, "latin1")


class TestExecution(MySQLClientTestCase):
    def test_execute_returns_affected_rows(self):
        self.cursor.affected = 3
        client = MySQLClient()
        self.assertEqual(client.execute("INSERT INTO t VALUES ('100%')"), 3)
        # No params => the driver must not apply %-formatting
        self.assertEqual(self.cursor.executed, [("INSERT INTO t VALUES ('100%')", None)])
        self.assertTrue(self.cursor.closed)

    def test_execute_propagates_driver_errors(self):
        error = ProgrammingError(1146, "Table 'app.t' doesn't exist")
        self.cursor.raise_on_execute = error
        with self.assertRaises(ProgrammingError) as ctx:
            MySQLClient().execute("INSERT INTO t VALUES (1)")
        self.assertIs(ctx.exception, error)

    def test_query_returns_open_cursor(self):
        self.cursor._rows = [{"id": 1}]
        cur = MySQLClient().query("SELECT id FROM t WHERE id = %s", [1])
        self.assertIs(cur, self.cursor)
        self.assertFalse(cur.closed)
        self.assertEqual(cur.fetchall(), [{"id": 1}])
        self.assertEqual(self.cursor.executed, [("SELECT id FROM t WHERE id = %s", [1])])

    def test_query_closes_cursor_on_error(self):
        self.cursor.raise_on_execute = ProgrammingError(1064, "syntax")
        with self.assertRaises(ProgrammingError):
            MySQLClient().query("SELEC 1")
        self.assertTrue(self.cursor.closed)


class TestStatement(MySQLClientTestCase):
    def test_prepare_execute_and_fetch(self):
        self.cursor._rows = [{"id": 1}, {"id": 2}, {"id": 3}]
        self.cursor.affected = 3
        client = MySQLClient()
        stmt = client.prepare("SELECT id FROM t")
        self.assertIsInstance(stmt, Statement)
        self.connect.assert_not_called()

        self.assertIs(stmt.execute(), stmt)
        self.assertEqual(self.cursor.executed, [("SELECT id FROM t", None)])
        self.assertEqual(stmt.rowcount, 3)
        self.assertEqual(stmt.fetchone(), {"id": 1})
        self.assertEqual(stmt.fetchmany(1), [{"id": 2}])
        self.assertEqual(list(stmt), [{"id": 3}])

    def test_unexecuted_statement(self):
        stmt = MySQLClient().prepare("SELECT 1")
        with self.assertRaisesRegex(RuntimeError, "not been executed"):
            stmt.fetchall()

    def test_close_keeps_base_session_open(self):
        client = MySQLClient()
        with client.prepare("SELECT 1").execute([]) as stmt:
            stmt.fetchall()
        self.assertTrue(self.cursor.closed)
        self.assertEqual(self.conn.close_calls, 0)

    def test_close_releases_cloned_session(self):
        clone = MySQLClient().clone()
        clone.disable_buffering()
        stmt = clone.prepare("SELECT 1").execute([5])
        self.assertEqual(self.conn.cursor_classes, [SSDictCursor])
        self.assertEqual(self.cursor.executed, [("SELECT 1", [5])])
        stmt.close()
        self.assertTrue(self.cursor.closed)
        self.assertEqual(self.conn.close_calls, 1)
        with self.assertRaisesRegex(RuntimeError, "closed"):
            clone.connection


if __name__ == "__main__":
    unittest.main()
