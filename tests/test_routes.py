import unittest
from decimal import Decimal
from unittest.mock import patch

import psycopg
from fastapi.testclient import TestClient

from app import app
from auth import current_user
from errors import InvalidState
from routes.categorias import build_tree
from tests.fakes import FakeCursor, fake_transaction


def _user(tenant="acme", permissions=()):
    return {
        "id": "u1", "email": "ana@example.com", "nome": "Ana", "ativo": True,
        "roles": [{"id": 3, "nome": "USER", "nivel_acesso": 10}],
        "permissions": [{"recurso": r, "acao": a} for r, a in permissions],
        "tenantId": tenant,
    }


class RouteTestCase(unittest.TestCase):
    # no context manager: startup would try to open the pool
    client = TestClient(app)

    def login_as(self, user):
        app.dependency_overrides[current_user] = lambda: user

    def tearDown(self):
        app.dependency_overrides.clear()


class TestEnvelope(RouteTestCase):
    def test_health(self):
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["status"], "ok")

    def test_missing_token(self):
        res = self.client.get("/api/contas")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json(), {"ok": False, "error": "Token não fornecido"})

    def test_workspace_required(self):
        self.login_as(_user(tenant=None))
        res = self.client.get("/api/contas")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["error"], "Selecione um workspace primeiro")

    def test_modules_require_tenant(self):
        self.login_as(_user(tenant=None))
        res = self.client.get("/api/produtos")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["error"], "Tenant não identificado")

    @patch("routes.contas.query_db")
    def test_unique_violation_maps_to_409(self, mock_query):
        mock_query.side_effect = psycopg.errors.UniqueViolation("duplicate key")
        self.login_as(_user())
        res = self.client.get("/api/contas")
        self.assertEqual(res.status_code, 409)
        self.assertFalse(res.json()["ok"])

    @patch("routes.contas.query_db")
    def test_unexpected_error_is_500(self, mock_query):
        mock_query.side_effect = RuntimeError("boom")
        self.login_as(_user())
        client = TestClient(app, raise_server_exceptions=False)
        res = client.get("/api/contas")
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"ok": False, "error": "Erro interno do servidor"})


class TestContas(RouteTestCase):
    def test_bank_account_cannot_start_negative(self):
        self.login_as(_user())
        res = self.client.post("/api/contas", json={"nome": "Itaú", "tipo": "banco", "saldo_inicial": -10})
        self.assertEqual(res.status_code, 400)

    def test_create(self):
        cur = FakeCursor(fetchone=[{"id": "a1", "nome": "Carteira", "tipo": "carteira", "saldo_inicial": Decimal("0")}])
        self.login_as(_user())
        with patch("routes.contas.transaction", fake_transaction(cur)):
            res = self.client.post("/api/contas", json={"nome": "Carteira", "tipo": "carteira"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["id"], "a1")
        _, params = cur.statements("INSERT INTO financeiro.conta")[0]
        self.assertEqual(params[-1], "acme")

    def test_delete_with_transactions(self):
        cur = FakeCursor(fetchone=[{"n": 3}])
        self.login_as(_user())
        with patch("routes.contas.transaction", fake_transaction(cur)):
            res = self.client.delete("/api/contas/a1")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(cur.statements("DELETE"), [])

    def test_invalid_account_kind(self):
        self.login_as(_user())
        res = self.client.post("/api/contas", json={"nome": "Cofre", "tipo": "cofre"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("Tipo de conta inválido", res.json()["error"])

    def test_delete_account_paying_a_card(self):
        cur = FakeCursor(fetchone=[{"n": 0}, {"n": 1}])
        self.login_as(_user())
        with patch("routes.contas.transaction", fake_transaction(cur)):
            res = self.client.delete("/api/contas/a1")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["error"], "Conta é usada para pagamento de cartão")
        self.assertEqual(cur.statements("DELETE"), [])


class TestTransacoes(RouteTestCase):
    def test_category_required_for_debit(self):
        self.login_as(_user())
        res = self.client.post("/api/transacoes", json={
            "tipo": "debito", "valor": 10, "descricao": "Café", "conta_id": "a1",
        })
        self.assertEqual(res.status_code, 400)
        self.assertIn("Categoria", res.json()["error"])

    def test_transfer_needs_distinct_accounts(self):
        self.login_as(_user())
        res = self.client.post("/api/transacoes", json={
            "tipo": "transferencia", "valor": 10, "descricao": "Reserva",
            "conta_id": "a1", "conta_destino_id": "a1",
        })
        self.assertEqual(res.status_code, 400)

    def test_delete_needs_permission(self):
        self.login_as(_user())
        res = self.client.delete("/api/transacoes/t1")
        self.assertEqual(res.status_code, 403)

    def test_invoice_payable_cannot_be_deleted(self):
        cur = FakeCursor(fetchone=[{"id": "t1", "origem": "fatura:f1"}])
        self.login_as(_user(permissions=[("transacao", "delete")]))
        with patch("routes.transacoes.transaction", fake_transaction(cur)), \
                patch("routes.transacoes.log_audit") as mock_audit:
            res = self.client.delete("/api/transacoes/t1")
        self.assertEqual(res.status_code, 409)
        mock_audit.assert_not_called()

    def test_invoice_origin_is_reserved(self):
        self.login_as(_user())
        res = self.client.post("/api/transacoes", json={
            "tipo": "debito", "valor": 10, "descricao": "Fatura", "conta_id": "a1",
            "categoria_id": "cat1", "origem": "fatura:f1",
        })
        self.assertEqual(res.status_code, 400)

    def _save(self, existing):
        cur = FakeCursor(fetchone=[existing])
        self.login_as(_user())
        with patch("routes.transacoes.transaction", fake_transaction(cur)):
            res = self.client.post("/api/transacoes", json={
                "id": "t1", "tipo": "debito", "valor": 10, "descricao": "Café",
                "conta_id": "a1", "categoria_id": "cat1",
            })
        return res, cur

    def test_invoice_payable_cannot_be_edited(self):
        res, cur = self._save({"status": "previsto", "origem": "fatura:f1"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(cur.statements("UPDATE"), [])

    def test_settled_transaction_cannot_be_edited(self):
        res, cur = self._save({"status": "liquidado", "origem": "manual"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("liquidadas", res.json()["error"])
        self.assertEqual(cur.statements("UPDATE"), [])

    def _pay(self, trans):
        cur = FakeCursor(fetchone=[trans])
        self.login_as(_user())
        with patch("routes.transacoes.transaction", fake_transaction(cur)):
            res = self.client.post("/api/transacoes/t1/pagar", json={
                "valor_pago": 10, "data_pagamento": "2025-04-10", "conta_id": "a1",
            })
        return res, cur

    def test_invoice_payable_cannot_be_paid_directly(self):
        res, cur = self._pay({"id": "t1", "origem": "fatura:f1", "status": "previsto"})
        self.assertEqual(res.status_code, 409)
        self.assertEqual(cur.statements("UPDATE"), [])

    def test_pay_twice(self):
        res, cur = self._pay({"id": "t1", "origem": "manual", "status": "liquidado"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["error"], "Transação já está liquidada")
        self.assertEqual(cur.statements("UPDATE"), [])


class TestFaturas(RouteTestCase):
    @patch("invoices.pay_invoice")
    def test_business_error_envelope(self, mock_pay):
        mock_pay.side_effect = InvalidState("A fatura precisa estar fechada antes de ser paga.")
        self.login_as(_user())
        res = self.client.post("/api/events/fatura.pagar", json={
            "fatura_id": "f1", "conta_id": "a1", "valor_pago": 100, "data_pagamento": "2025-04-10",
        })
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json(), {"ok": False, "error": "A fatura precisa estar fechada antes de ser paga."})

    @patch("invoices.add_purchase")
    def test_compra_without_id_adds(self, mock_add):
        mock_add.return_value = {"id": "i1"}
        self.login_as(_user())
        res = self.client.post("/api/compras", json={
            "cartao_id": "c1", "descricao": "Mercado", "valor": 50, "data_compra": "2025-03-10",
        })
        self.assertEqual(res.status_code, 200)
        tenant, payload = mock_add.call_args[0]
        self.assertEqual(tenant, "acme")
        self.assertEqual(payload["parcela_total"], 1)

    def test_too_many_installments(self):
        cur = FakeCursor(fetchone=[{"id": "c1", "dia_fechamento": 5, "dia_vencimento": 12}])
        self.login_as(_user())
        with patch("invoices.transaction", fake_transaction(cur)):
            res = self.client.post("/api/compras/parcelada", json={
                "cartao_id": "c1", "descricao": "Geladeira", "valor_total": 4900,
                "parcela_total": 49, "data_compra": "2025-03-10",
            })
        self.assertEqual(res.status_code, 400)
        self.assertIn("48", res.json()["error"])

    @patch("invoices.query_db")
    def test_item_listing_sanitizes_order(self, mock_query):
        mock_query.return_value = []
        self.login_as(_user())
        res = self.client.get("/api/faturas/itens", params={"order": "valor;drop", "competencia": "2025-03"})
        self.assertEqual(res.status_code, 200)
        sql = mock_query.call_args[0][0]
        self.assertIn("ORDER BY fi.data_compra ASC", sql)

    @patch("invoices.query_db")
    def test_invoice_listing_pages(self, mock_query):
        mock_query.return_value = []
        self.login_as(_user())
        res = self.client.get("/api/faturas", params={"status": "fechada", "offset": 200})
        self.assertEqual(res.status_code, 200)
        sql, params = mock_query.call_args[0]
        self.assertIn("LIMIT %s OFFSET %s", sql)
        self.assertEqual(params, ("acme", "fechada", 100, 200))


class TestCartoes(RouteTestCase):
    def test_update_cannot_soft_delete(self):
        cur = FakeCursor()
        self.login_as(_user())
        with patch("routes.cartoes.transaction", fake_transaction(cur)):
            res = self.client.post("/api/cartoes", json={"id": "c1", "is_deleted": True})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(cur.executed, [])

    def test_partial_update(self):
        cur = FakeCursor(fetchone=[{"id": "c1", "apelido": "Roxinho"}])
        self.login_as(_user())
        with patch("routes.cartoes.transaction", fake_transaction(cur)):
            res = self.client.post("/api/cartoes", json={"id": "c1", "apelido": "Roxinho"})
        self.assertEqual(res.status_code, 200)
        sql, params = cur.statements("UPDATE financeiro.cartao")[0]
        self.assertIn("SET apelido = %s WHERE", sql)
        self.assertIn("is_deleted = FALSE", sql)
        self.assertEqual(params, ("Roxinho", "c1", "acme"))

    def test_delete_with_open_invoice(self):
        cur = FakeCursor(fetchone=[{"n": 1}])
        self.login_as(_user())
        with patch("routes.cartoes.transaction", fake_transaction(cur)):
            res = self.client.delete("/api/cartoes/c1")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(cur.statements("UPDATE"), [])


class TestCategorias(RouteTestCase):
    def test_build_tree(self):
        rows = [
            {"id": 2, "nome": "Moradia", "tipo": "despesa", "parent_id": None},
            {"id": 1, "nome": "Salário", "tipo": "receita", "parent_id": None},
            {"id": 3, "nome": "Aluguel", "tipo": "despesa", "parent_id": 2},
        ]
        tree = build_tree(rows)
        self.assertEqual([c["nome"] for c in tree], ["Moradia", "Salário"])
        self.assertEqual([c["nome"] for c in tree[0]["children"]], ["Aluguel"])
        self.assertEqual(tree[1]["children"], [])

    @patch("routes.categorias.query_one")
    def test_no_grandchildren(self, mock_one):
        mock_one.return_value = {"tipo": "despesa", "parent_id": "p0"}
        self.login_as(_user())
        res = self.client.post("/api/categorias", json={"nome": "Luz", "parent_id": "p1"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("Subcategorias", res.json()["error"])

    @patch("routes.categorias.query_one")
    def test_parent_with_children_cannot_be_nested(self, mock_one):
        mock_one.return_value = {"tipo": "despesa", "parent_id": None}
        cur = FakeCursor(fetchone=[{"n": 2}])
        self.login_as(_user())
        with patch("routes.categorias.transaction", fake_transaction(cur)):
            res = self.client.post("/api/categorias", json={"id": "p2", "nome": "Casa", "parent_id": "p1"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(cur.statements("UPDATE"), [])

    def test_kind_change_cascades_to_children(self):
        cur = FakeCursor(fetchone=[{"id": "p1", "nome": "Extras", "tipo": "receita", "parent_id": None}])
        self.login_as(_user())
        with patch("routes.categorias.transaction", fake_transaction(cur)):
            res = self.client.post("/api/categorias", json={"id": "p1", "nome": "Extras", "tipo": "receita"})
        self.assertEqual(res.status_code, 200)
        _, params = cur.statements("UPDATE financeiro.categoria SET tipo")[0]
        self.assertEqual(params, ("receita", "p1", "acme"))

    def test_delete_with_children(self):
        cur = FakeCursor(fetchone=[{"n": 1}])
        self.login_as(_user())
        with patch("routes.categorias.transaction", fake_transaction(cur)):
            res = self.client.delete("/api/categorias/p1")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(cur.statements("DELETE"), [])

    def test_delete_in_use(self):
        cur = FakeCursor(fetchone=[{"n": 0}, {"n": 3}])
        self.login_as(_user())
        with patch("routes.categorias.transaction", fake_transaction(cur)):
            res = self.client.delete("/api/categorias/cat1")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(cur.statements("DELETE"), [])


class TestAdmin(RouteTestCase):
    def test_workspace_admin_needs_super_admin(self):
        self.login_as(_user())
        res = self.client.post("/api/workspaces", json={"tenant_id": "acme", "nome": "Acme"})
        self.assertEqual(res.status_code, 403)

    def test_workspace_tenant_id_format(self):
        admin = _user()
        admin["roles"] = [{"id": 1, "nome": "SUPER_ADMIN", "nivel_acesso": 999}]
        self.login_as(admin)
        res = self.client.post("/api/workspaces", json={"tenant_id": "Acme Ltda", "nome": "Acme"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("tenant_id", res.json()["error"])

    @patch("routes.sessao.find_user_by_email")
    def test_register_rejects_short_password(self, mock_find):
        mock_find.return_value = None
        res = self.client.post("/api/auth/register", json={"email": "ana@example.com", "password": "123", "nome": "Ana"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("8", res.json()["error"])

    @patch("routes.sessao.verify_password", return_value=False)
    @patch("routes.sessao.find_user_by_email")
    def test_login_bad_credentials(self, mock_find, _):
        mock_find.return_value = {"id": "u1", "email": "ana@example.com", "senha_hash": "x", "ativo": True}
        res = self.client.post("/api/auth/login", json={"email": "ana@example.com", "password": "errada"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["error"], "Credenciais inválidas")


class TestModulos(RouteTestCase):
    @patch("routes.produtos.query_db")
    def test_produtos_exact_sku_filter(self, mock_query):
        mock_query.return_value = []
        self.login_as(_user())
        res = self.client.get("/api/produtos", params={"sku": "CAB-01", "q": "cabo", "page": 2, "page_size": 10})
        self.assertEqual(res.status_code, 200)
        sql, params = mock_query.call_args[0]
        self.assertIn("sku = %s", sql)
        self.assertNotIn("ILIKE", sql)
        self.assertEqual(params, ("acme", "CAB-01", 10, 10))

    def test_equipamento_requires_name_and_type(self):
        self.login_as(_user())
        res = self.client.post("/api/equipamentos", json={"nome": "Notebook"})
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
