import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import jwt
from fastapi import HTTPException

import auth
from config import JWT_SECRET, JWT_ALGORITHM


def _user(**overrides):
    u = {
        "id": "u1", "email": "ana@example.com", "nome": "Ana", "ativo": True,
        "roles": [{"id": 3, "nome": "USER", "nivel_acesso": 10}],
        "permissions": [{"recurso": "transacao", "acao": "read"}],
    }
    u.update(overrides)
    return u


def _request(cookies=None, headers=None):
    req = MagicMock()
    req.cookies = cookies or {}
    req.headers = headers or {}
    return req


class TestPasswords(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = auth.hash_password("segredo123")
        self.assertNotEqual(hashed, "segredo123")
        self.assertTrue(auth.verify_password("segredo123", hashed))
        self.assertFalse(auth.verify_password("errada", hashed))

    def test_verify_bad_inputs(self):
        self.assertFalse(auth.verify_password("", "x"))
        self.assertFalse(auth.verify_password("abc", None))
        self.assertFalse(auth.verify_password("abc", "not-a-bcrypt-hash"))


class TestTokens(unittest.TestCase):
    def test_round_trip_with_tenant(self):
        token = auth.create_token(_user(), tenant_id="acme")
        payload = auth.decode_token(token)
        self.assertEqual(payload["userId"], "u1")
        self.assertEqual(payload["tenantId"], "acme")

    def test_login_token_has_no_tenant(self):
        payload = auth.decode_token(auth.create_token(_user()))
        self.assertNotIn("tenantId", payload)

    def test_expired(self):
        token = jwt.encode(
            {"userId": "u1", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            JWT_SECRET, algorithm=JWT_ALGORITHM,
        )
        with self.assertRaises(HTTPException) as ctx:
            auth.decode_token(token)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.detail, "Token expirado")

    def test_wrong_signature(self):
        token = jwt.encode({"userId": "u1"}, "outra-chave", algorithm=JWT_ALGORITHM)
        with self.assertRaises(HTTPException) as ctx:
            auth.decode_token(token)
        self.assertEqual(ctx.exception.detail, "Token inválido")


class TestPermissions(unittest.TestCase):
    def test_has_permission(self):
        user = _user()
        self.assertTrue(auth.has_permission(user, "transacao", "read"))
        self.assertFalse(auth.has_permission(user, "transacao", "delete"))

    def test_super_admin_has_everything(self):
        user = _user(roles=[{"nome": "SUPER_ADMIN", "nivel_acesso": 999}], permissions=[])
        self.assertTrue(auth.is_super_admin(user))
        self.assertTrue(auth.has_permission(user, "workspace", "delete"))

    def test_require_permission(self):
        dep = auth.require_permission("usuario", "delete")
        with self.assertRaises(HTTPException) as ctx:
            dep(user=_user())
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.detail, "Sem permissão para delete usuario")

    def test_require_role(self):
        dep = auth.require_role(100)
        with self.assertRaises(HTTPException):
            dep(user=_user())
        admin = _user(roles=[{"nome": "ADMIN", "nivel_acesso": 100}])
        self.assertIs(dep(user=admin), admin)


class TestCurrentUser(unittest.TestCase):
    def test_missing_token(self):
        with self.assertRaises(HTTPException) as ctx:
            auth.current_user(_request(), creds=None)
        self.assertEqual(ctx.exception.status_code, 401)

    @patch("auth.get_user_with_permissions")
    def test_cookie_token_attaches_tenant(self, mock_get_user):
        mock_get_user.return_value = _user()
        token = auth.create_token(_user(), tenant_id="acme")
        user = auth.current_user(_request(cookies={"token": token}), creds=None)
        self.assertEqual(user["tenantId"], "acme")
        mock_get_user.assert_called_once_with("u1")

    @patch("auth.get_user_with_permissions")
    def test_disabled_user(self, mock_get_user):
        mock_get_user.return_value = _user(ativo=False)
        creds = MagicMock(credentials=auth.create_token(_user()))
        with self.assertRaises(HTTPException) as ctx:
            auth.current_user(_request(), creds=creds)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_tenant_dependencies(self):
        with self.assertRaises(HTTPException) as ctx:
            auth.tenant_id(user=_user(tenantId=None))
        self.assertEqual(ctx.exception.status_code, 400)
        with self.assertRaises(HTTPException) as ctx:
            auth.module_tenant_id(user=_user(tenantId=None))
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(auth.tenant_id(user=_user(tenantId="acme")), "acme")


class TestAudit(unittest.TestCase):
    @patch("auth.with_db_cursor")
    def test_audit_failure_is_swallowed(self, mock_cursor):
        mock_cursor.side_effect = RuntimeError("db down")
        with self.assertLogs("auth", level="ERROR"):
            auth.log_audit("u1", "login", "usuario", "u1")

    def test_client_ip_prefers_forwarded_for(self):
        req = _request(headers={"x-forwarded-for": "10.0.0.1, 172.16.0.1"})
        self.assertEqual(auth.client_ip(req), "10.0.0.1")
        self.assertIsNone(auth.client_ip(None))


if __name__ == "__main__":
    unittest.main()
