import unittest
from unittest import mock

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from src.api import auth_utils

ACTIVE_USER = {
    "user_id": 5,
    "username": "ivy",
    "email": "ivy@example.com",
    "first_name": "Ivy",
    "last_name": "Stone",
    "user_type": "Investor",
    "balance": 0,
    "account_status": "active",
}


def _bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class PasswordTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = auth_utils.hash_password("correct horse")
        self.assertNotEqual(hashed, "correct horse")
        self.assertTrue(auth_utils.verify_password("correct horse", hashed))
        self.assertFalse(auth_utils.verify_password("wrong horse", hashed))

    def test_unrecognized_hash_does_not_verify(self):
        self.assertFalse(auth_utils.verify_password("anything", "plaintext-in-db"))


class TokenTests(unittest.TestCase):
    def test_token_carries_identity(self):
        token = auth_utils.create_user_access_token(5, "ivy", "Investor")
        claims = auth_utils.decode_access_token(token)
        self.assertEqual(claims["sub"], "5")
        self.assertEqual(claims["username"], "ivy")
        self.assertEqual(claims["user_type"], "Investor")
        self.assertIn("exp", claims)

    def test_missing_credentials(self):
        with self.assertRaises(HTTPException) as ctx:
            auth_utils.get_current_user(None)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.detail, "Access token missing")

    def test_garbage_token(self):
        with self.assertRaises(HTTPException) as ctx:
            auth_utils.get_current_user(_bearer("not-a-jwt"))
        self.assertEqual(ctx.exception.detail, "Invalid token")

    def test_expired_token(self):
        with mock.patch.object(auth_utils, "_jwt_exp_minutes", return_value=-1):
            token = auth_utils.create_user_access_token(5, "ivy", "Investor")
        with self.assertRaises(HTTPException) as ctx:
            auth_utils.get_current_user(_bearer(token))
        self.assertEqual(ctx.exception.status_code, 401)

    def test_valid_token_loads_user(self):
        token = auth_utils.create_user_access_token(5, "ivy", "Investor")
        with mock.patch.object(auth_utils.db, "fetch_one", return_value=dict(ACTIVE_USER)) as fetch:
            user = auth_utils.get_current_user(_bearer(token))
        self.assertEqual(user["user_id"], 5)
        self.assertEqual(fetch.call_args[0][1], [5])

    def test_suspended_account_is_rejected(self):
        token = auth_utils.create_user_access_token(5, "ivy", "Investor")
        suspended = dict(ACTIVE_USER, account_status="suspended")
        with mock.patch.object(auth_utils.db, "fetch_one", return_value=suspended):
            with self.assertRaises(HTTPException) as ctx:
                auth_utils.get_current_user(_bearer(token))
        self.assertEqual(ctx.exception.status_code, 401)


class RoleTests(unittest.TestCase):
    def test_matching_role_passes(self):
        check = auth_utils.require_role("Investor")
        self.assertIs(check(ACTIVE_USER), ACTIVE_USER)

    def test_admin_always_passes(self):
        admin = dict(ACTIVE_USER, user_type="Admin")
        self.assertIs(auth_utils.require_role("Entrepreneur")(admin), admin)

    def test_other_role_is_forbidden(self):
        with self.assertRaises(HTTPException) as ctx:
            auth_utils.require_role("Entrepreneur")(ACTIVE_USER)
        self.assertEqual(ctx.exception.status_code, 403)


if __name__ == "__main__":
    unittest.main()
