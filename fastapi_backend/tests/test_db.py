import os
import unittest
from unittest import mock

from src.api import db


class TransactionTests(unittest.TestCase):
    def setUp(self):
        self.pool = mock.MagicMock()
        self.conn = self.pool.getconn.return_value
        patcher = mock.patch.object(db, "_POOL", self.pool)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_commits_and_returns_connection(self):
        with db.transaction() as cur:
            cur.execute("SELECT 1")

        self.conn.commit.assert_called_once()
        self.conn.rollback.assert_not_called()
        self.pool.putconn.assert_called_once_with(self.conn)

    def test_rolls_back_and_reraises(self):
        with self.assertRaises(ValueError):
            with db.transaction():
                raise ValueError("boom")

        self.conn.rollback.assert_called_once()
        self.conn.commit.assert_not_called()
        self.pool.putconn.assert_called_once_with(self.conn)

    def test_fetch_one_returns_dict_or_none(self):
        cur = self.conn.cursor.return_value.__enter__.return_value
        cur.fetchone.return_value = {"user_id": 1}
        self.assertEqual(db.fetch_one("SELECT * FROM users WHERE user_id=%s", [1]), {"user_id": 1})
        cur.execute.assert_called_with("SELECT * FROM users WHERE user_id=%s", [1])

        cur.fetchone.return_value = None
        self.assertIsNone(db.fetch_one("SELECT * FROM users WHERE user_id=%s", [2]))

    def test_execute_returning_one_without_row_rolls_back(self):
        cur = self.conn.cursor.return_value.__enter__.return_value
        cur.fetchone.return_value = None
        with self.assertRaises(RuntimeError):
            db.execute_returning_one("UPDATE users SET balance=0 WHERE user_id=%s RETURNING *", [1])
        self.conn.rollback.assert_called_once()
        self.conn.commit.assert_not_called()


class DsnTests(unittest.TestCase):
    def test_full_url_wins(self):
        with mock.patch.dict(os.environ, {"POSTGRES_URL": "postgresql://u:p@db:5432/x"}, clear=True):
            self.assertEqual(db._build_dsn(), "postgresql://u:p@db:5432/x")

    def test_built_from_parts(self):
        env = {"POSTGRES_USER": "u", "POSTGRES_PASSWORD": "p", "POSTGRES_DB": "cf", "POSTGRES_HOST": "db"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(db._build_dsn(), "postgresql://u:p@db:5432/cf")

    def test_missing_required_variable(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(RuntimeError):
                db._build_dsn()


if __name__ == "__main__":
    unittest.main()
