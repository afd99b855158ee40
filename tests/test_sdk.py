import unittest
from unittest.mock import MagicMock, patch

import requests

import sdk


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.reason = "OK" if resp.ok else "Error"
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    return resp


class SDKTestCase(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.session.request.return_value = _response(200, {"id": "x"})
        self.sleep = patch("sdk.time.sleep").start()
        self.addCleanup(patch.stopall)
        self.client = sdk.FinanceiroSDK("acme", base_url="http://api.test/api/", token="jwt", session=self.session)

    def last_call(self):
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs


class TestHttp(SDKTestCase):
    def test_requires_tenant(self):
        with self.assertRaises(ValueError):
            sdk.FinanceiroSDK("")

    def test_headers_and_trailing_slash(self):
        self.client.read("conta")
        method, url, kwargs = self.last_call()
        self.assertEqual((method, url), ("GET", "http://api.test/api/contas"))
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer jwt")
        self.assertEqual(kwargs["timeout"], 20.0)

    def test_retries_server_errors_with_backoff(self):
        self.session.request.side_effect = [
            _response(503, {"error": "indisponível"}),
            _response(502, {}),
            _response(200, [{"id": 1}]),
        ]
        self.assertEqual(self.client.read("conta"), [{"id": 1}])
        self.assertEqual(self.session.request.call_count, 3)
        self.assertEqual([c[0][0] for c in self.sleep.call_args_list], [1.0, 2.0])

    def test_client_error_is_not_retried(self):
        self.session.request.return_value = _response(409, {"ok": False, "error": "Registro duplicado"})
        with self.assertRaises(sdk.SDKError) as ctx:
            self.client.read("conta")
        self.assertEqual(ctx.exception.status, 409)
        self.assertEqual(str(ctx.exception), "Registro duplicado")
        self.assertEqual(self.session.request.call_count, 1)

    def test_request_timeout_status_is_retried(self):
        self.session.request.side_effect = [_response(408, {}), _response(200, [])]
        self.assertEqual(self.client.read("conta"), [])
        self.assertEqual(self.session.request.call_count, 2)

    def test_gives_up_after_max_attempts(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("recusado")
        with self.assertRaises(sdk.SDKError) as ctx:
            self.client.read("conta")
        self.assertEqual(ctx.exception.code, "MAX_RETRIES_EXCEEDED")
        self.assertTrue(str(ctx.exception).startswith("Todas as 3 tentativas falharam"))
        self.assertIsInstance(ctx.exception.original, sdk.SDKError)
        self.assertEqual(self.session.request.call_count, 3)

    def test_message_falls_back_to_status(self):
        self.session.request.return_value = _response(404, None)
        with self.assertRaises(sdk.SDKError) as ctx:
            self.client.read("conta")
        self.assertTrue(str(ctx.exception).startswith("HTTP 404"))

    def test_backoff_is_capped(self):
        self.assertEqual([sdk.backoff_ms(n) for n in (1, 2, 3, 4, 5)], [1000, 2000, 4000, 5000, 5000])


class TestEvents(SDKTestCase):
    def test_upsert_posts_to_collection(self):
        self.client.post_event("conta.upsert", {"nome": "Nubank", "tipo": "banco"})
        method, url, kwargs = self.last_call()
        self.assertEqual((method, url), ("POST", "http://api.test/api/contas"))
        self.assertEqual(kwargs["json"], {"nome": "Nubank", "tipo": "banco"})

    def test_delete_puts_id_in_path(self):
        self.client.post_event("cartao.delete", {"id": "c9"})
        method, url, kwargs = self.last_call()
        self.assertEqual((method, url), ("DELETE", "http://api.test/api/cartoes/c9"))
        self.assertIsNone(kwargs["json"])

    def test_invoice_events(self):
        self.client.close_invoice("f1")
        method, url, kwargs = self.last_call()
        self.assertEqual(url, "http://api.test/api/events/fatura.fechar")
        self.assertEqual(kwargs["json"], {"fatura_id": "f1"})

    def test_unknown_event(self):
        with self.assertRaisesRegex(sdk.SDKError, "Evento não suportado: foo.bar"):
            self.client.post_event("foo.bar", {})
        self.session.request.assert_not_called()

    def test_transaction_needs_category(self):
        with self.assertRaisesRegex(sdk.SDKError, "obrigatória"):
            self.client.create_transaction({"tipo": "debito", "valor": 10, "descricao": "x", "conta_id": "a1"})
        self.session.request.assert_not_called()

    def test_subcategory_becomes_categoria_id(self):
        self.client.create_transaction({"tipo": "debito", "valor": 10, "subcategoria_id": "s1", "conta_id": "a1"})
        _, _, kwargs = self.last_call()
        self.assertEqual(kwargs["json"]["categoria_id"], "s1")

    def test_deleted_payload_skips_validation(self):
        self.client.post_event("recorrencia.upsert", {"id": "r1", "is_deleted": True})
        self.session.request.assert_called_once()

    def test_listeners_notified_after_success(self):
        seen = []
        unsubscribe = self.client.on_change(lambda event, payload: seen.append(event))
        self.client.create_category("Lazer", "despesa")
        unsubscribe()
        self.client.create_category("Saúde", "despesa")
        self.assertEqual(seen, ["categoria.upsert"])

    def test_listener_not_notified_on_failure(self):
        listener = MagicMock()
        self.client.on_change(listener)
        self.session.request.return_value = _response(400, {"error": "Nome é obrigatório"})
        with self.assertRaises(sdk.SDKError):
            self.client.create_category("", "despesa")
        listener.assert_not_called()


class TestReads(SDKTestCase):
    def test_resource_endpoints(self):
        self.assertEqual(sdk.resource_endpoint("fatura_item"), "/faturas/itens")
        self.assertEqual(sdk.resource_endpoint("orcamento"), "/orcamentos")

    def test_invoice_default_limit_and_tenant_filter_dropped(self):
        self.client.read("fatura", {"tenant_id": "outro", "status": "aberta", "cartao_id": None})
        _, url, kwargs = self.last_call()
        self.assertEqual(url, "http://api.test/api/faturas")
        self.assertEqual(kwargs["params"], {"status": "aberta", "limit": 100})

    def test_paginated_stops_on_short_page(self):
        self.session.request.side_effect = [
            _response(200, [{"id": i} for i in range(2)]),
            _response(200, [{"id": 9}]),
        ]
        pages = list(self.client.read_paginated("transacao", page_size=2))
        self.assertEqual([len(p) for p in pages], [2, 1])
        offsets = [c[1]["params"]["offset"] for c in self.session.request.call_args_list]
        self.assertEqual(offsets, [0, 2])

    def test_paginated_rejects_unpaged_resource(self):
        with self.assertRaisesRegex(sdk.SDKError, "sem paginação"):
            list(self.client.read_paginated("conta"))
        self.session.request.assert_not_called()


class TestModuleClients(unittest.TestCase):
    def test_estoque(self):
        session = MagicMock()
        session.request.return_value = _response(200, [{"sku": "A"}])
        client = sdk.EstoqueSDK("acme", base_url="http://api.test/api", session=session)
        self.assertEqual(client.get_produtos({"q": "cabo", "sku": None}), [{"sku": "A"}])
        args, kwargs = session.request.call_args
        self.assertEqual(args[1], "http://api.test/api/produtos")
        self.assertEqual(kwargs["params"], {"q": "cabo"})

    def test_equipamentos_delete(self):
        session = MagicMock()
        session.request.return_value = _response(204, None)
        client = sdk.EquipamentosSDK("acme", base_url="http://api.test/api", session=session)
        client.delete_equipamento("e1")
        args, _ = session.request.call_args
        self.assertEqual(args[:2], ("DELETE", "http://api.test/api/equipamentos/e1"))


if __name__ == "__main__":
    unittest.main()
