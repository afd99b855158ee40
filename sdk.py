# sdk.py
"""
HTTP clients for the financeiro API and the estoque/equipamentos modules.

    sdk = FinanceiroSDK(tenant_id="acme", token=jwt)
    sdk.post_event("conta.upsert", {"nome": "Nubank", "tipo": "banco"})
    for page in sdk.read_paginated("transacao", {"from": "2025-01-01"}):
        ...

The tenant travels inside the JWT; tenant_id is kept client-side only to
guard against building a client for "no workspace".
"""
import logging
import os
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE = os.getenv("FINANCEIRO_API_URL", "http://localhost:3001/api")
DEFAULT_TIMEOUT = 20.0
MAX_ATTEMPTS = 3
MAX_BACKOFF_MS = 5000


class SDKError(Exception):
    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None,
                 original: Optional[Exception] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.original = original


def backoff_ms(attempt: int) -> int:
    return min(1000 * 2 ** (attempt - 1), MAX_BACKOFF_MS)


def _is_retryable(err: SDKError) -> bool:
    if err.status is None:
        return True
    return not (400 <= err.status < 500 and err.status != 408)


def _error_message(resp: requests.Response, body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code} {resp.reason or ''}".strip()


class _BaseClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = (base_url or DEFAULT_BASE).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def _once(self, method: str, path: str, params=None, json=None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, params=params, json=json,
                                        headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise SDKError("Tempo de requisição excedido", code="TIMEOUT", original=e)
        except requests.exceptions.RequestException as e:
            raise SDKError(str(e), code="NETWORK", original=e)

        body = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = None
        if not resp.ok:
            raise SDKError(_error_message(resp, body), status=resp.status_code)
        return body if body is not None else {}

    def http(self, method: str, path: str, params=None, json=None, retries: int = MAX_ATTEMPTS) -> Any:
        """Exponential backoff on network errors, 5xx and 408; other 4xx fail at once."""
        last: Optional[SDKError] = None
        for attempt in range(1, retries + 1):
            try:
                return self._once(method, path, params=params, json=json)
            except SDKError as e:
                last = e
                if not _is_retryable(e):
                    raise
                if attempt < retries:
                    delay = backoff_ms(attempt)
                    logger.debug("attempt %s/%s failed (%s), retrying in %sms", attempt, retries, e, delay)
                    time.sleep(delay / 1000.0)

        raise SDKError(
            f"Todas as {retries} tentativas falharam. Último erro: {last}",
            status=last.status if last else None,
            code="MAX_RETRIES_EXCEEDED",
            original=last,
        )

# =============================================================================
# Financeiro
# =============================================================================

EVENT_MAP = {
    # event: (endpoint, method, id goes in the path)
    "conta.upsert": ("/contas", "POST", False),
    "conta.delete": ("/contas", "DELETE", True),
    "categoria.upsert": ("/categorias", "POST", False),
    "categoria.delete": ("/categorias", "DELETE", True),
    "subcategoria.upsert": ("/categorias", "POST", False),
    "subcategoria.delete": ("/categorias", "DELETE", True),
    "transacao.upsert": ("/transacoes", "POST", False),
    "transacao.delete": ("/transacoes", "DELETE", True),
    "cartao.upsert": ("/cartoes", "POST", False),
    "cartao.delete": ("/cartoes", "DELETE", True),
    "recorrencia.upsert": ("/recorrencias", "POST", False),
    "recorrencia.delete": ("/recorrencias", "DELETE", True),
    "parcela.upsert": ("/parcelas", "POST", False),
    "fatura_item.upsert": ("/compras", "POST", False),
    "fatura_item.parcelada": ("/compras/parcelada", "POST", False),
    "fatura_item.delete": ("/compras", "DELETE", True),
    "fatura.fechar": ("/events/fatura.fechar", "POST", False),
    "fatura.pagar": ("/events/fatura.pagar", "POST", False),
}

RESOURCE_MAP = {
    "conta": "/contas",
    "categoria": "/categorias",
    "transacao": "/transacoes",
    "cartao": "/cartoes",
    "fatura": "/faturas",
    "fatura_item": "/faturas/itens",
    "recorrencia": "/recorrencias",
    "alerta": "/alertas",
    "fluxo_30d": "/fluxo_30d",
    "saldo_conta": "/saldo_conta",
    "projecao_mensal": "/projecao-mensal",
}

# endpoints that honour limit/offset
PAGINATED = {"transacao", "fatura", "fatura_item"}


def resource_endpoint(resource: str) -> str:
    return RESOURCE_MAP.get(resource, f"/{resource}s")


def validate_event(event_type: str, payload: Dict[str, Any]) -> None:
    if payload.get("is_deleted") is True:
        return
    has_cat = bool(payload.get("categoria_id") or payload.get("subcategoria_id"))
    if event_type == "transacao.upsert":
        tipo = (payload.get("tipo") or "").lower()
        if tipo in ("credito", "debito") and not has_cat:
            raise SDKError("Categoria/Subcategoria é obrigatória para crédito/débito (envie subcategoria_id de preferência)")
    if event_type == "recorrencia.upsert" and not has_cat:
        raise SDKError("Categoria/Subcategoria é obrigatória na recorrência (envie subcategoria_id de preferência)")


class FinanceiroSDK(_BaseClient):
    def __init__(self, tenant_id: str, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        if not tenant_id:
            raise ValueError("tenant_id é obrigatório")
        super().__init__(base_url=base_url, token=token, timeout=timeout, session=session)
        self.tenant_id = tenant_id
        self._listeners: List[Callable[[str, Dict[str, Any]], None]] = []

    # --------- change notifications ----------
    def on_change(self, listener: Callable[[str, Dict[str, Any]], None]) -> Callable[[], None]:
        """Register listener(event_type, payload); returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_type, payload)
            except Exception:
                logger.exception("change listener failed for %s", event_type)

    # --------- events ----------
    def post_event(self, event_type: str, payload: Dict[str, Any]) -> Any:
        validate_event(event_type, payload)
        mapping = EVENT_MAP.get(event_type)
        if mapping is None:
            raise SDKError(f"Evento não suportado: {event_type}")
        endpoint, method, use_id = mapping

        body = dict(payload)
        # the API files a transaction under the most specific category given
        if body.get("subcategoria_id") and not body.get("categoria_id"):
            body["categoria_id"] = body["subcategoria_id"]

        if use_id and body.get("id"):
            endpoint = f"{endpoint}/{body['id']}"
        params = {"todas": "true"} if event_type == "fatura_item.delete" and body.get("todas") else None

        result = self.http(method, endpoint, params=params, json=None if method == "DELETE" else body)
        self._notify(event_type, payload)
        return result

    # --------- reads ----------
    def read(self, resource: str, filters: Optional[Dict[str, Any]] = None) -> Any:
        filters = dict(filters or {})
        if resource == "fatura":
            filters.setdefault("limit", 100)
        params = {k: v for k, v in filters.items() if v is not None and k != "tenant_id"}
        return self.http("GET", resource_endpoint(resource), params=params)

    def read_paginated(self, resource: str, filters: Optional[Dict[str, Any]] = None,
                       page_size: int = 200) -> Iterator[List[Any]]:
        if resource not in PAGINATED:
            raise SDKError(f"Recurso sem paginação: {resource}")
        offset = 0
        while True:
            page = self.read(resource, {**(filters or {}), "limit": page_size, "offset": offset})
            if not isinstance(page, list) or not page:
                return
            yield page
            if len(page) < page_size:
                return
            offset += page_size

    # --------- convenience ----------
    def get_transactions(self, filters: Optional[Dict[str, Any]] = None):
        return self.read("transacao", filters)

    def create_transaction(self, data: Dict[str, Any]):
        return self.post_event("transacao.upsert", data)

    def get_account_balances(self):
        return self.read("saldo_conta")

    def get_projection_30_days(self):
        return self.read("fluxo_30d")

    def get_monthly_projection(self, meses: int = 12):
        return self.read("projecao_mensal", {"meses": meses})

    def create_recurring_transaction(self, data: Dict[str, Any]):
        return self.post_event("recorrencia.upsert", data)

    def generate_recurring(self, ate: Optional[str] = None):
        return self.http("POST", "/recorrencias/gerar", json={"ate": ate})

    def create_card(self, data: Dict[str, Any]):
        return self.post_event("cartao.upsert", data)

    def add_purchase(self, data: Dict[str, Any]):
        return self.post_event("fatura_item.upsert", data)

    def add_installment_purchase(self, data: Dict[str, Any]):
        return self.post_event("fatura_item.parcelada", data)

    def close_invoice(self, fatura_id: str):
        return self.post_event("fatura.fechar", {"fatura_id": fatura_id})

    def pay_invoice(self, data: Dict[str, Any]):
        return self.post_event("fatura.pagar", data)

    def create_category(self, nome: str, tipo: str):
        return self.post_event("categoria.upsert", {"nome": nome, "tipo": tipo})

    def update_category(self, id: str, nome: str, tipo: str):
        return self.post_event("categoria.upsert", {"id": id, "nome": nome, "tipo": tipo})

    def delete_category(self, id: str):
        return self.post_event("categoria.delete", {"id": id})

    def create_subcategory(self, parent_id: str, nome: str):
        return self.post_event("subcategoria.upsert", {"parent_id": parent_id, "nome": nome})

    def update_subcategory(self, id: str, parent_id: str, nome: str):
        return self.post_event("subcategoria.upsert", {"id": id, "parent_id": parent_id, "nome": nome})

    def delete_subcategory(self, id: str):
        return self.post_event("subcategoria.delete", {"id": id})

# =============================================================================
# Modules
# =============================================================================

class EstoqueSDK(_BaseClient):
    def __init__(self, tenant_id: str, **kwargs):
        if not tenant_id:
            raise ValueError("tenant_id é obrigatório")
        super().__init__(**kwargs)
        self.tenant_id = tenant_id

    def get_produtos(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        params = {k: v for k, v in (filters or {}).items() if v is not None}
        result = self.http("GET", "/produtos", params=params)
        return result if isinstance(result, list) else []

    def create_produto(self, data: Dict[str, Any]):
        return self.http("POST", "/produtos", json=data)

    def update_produto(self, id: str, data: Dict[str, Any]):
        return self.http("PUT", f"/produtos/{id}", json=data)

    def delete_produto(self, id: str) -> None:
        self.http("DELETE", f"/produtos/{id}")


class EquipamentosSDK(_BaseClient):
    def __init__(self, tenant_id: str, **kwargs):
        if not tenant_id:
            raise ValueError("tenant_id é obrigatório")
        super().__init__(**kwargs)
        self.tenant_id = tenant_id

    def get_equipamentos(self) -> List[Dict[str, Any]]:
        result = self.http("GET", "/equipamentos")
        return result if isinstance(result, list) else []

    def get_equipamento(self, id: str):
        return self.http("GET", f"/equipamentos/{id}")

    def create_equipamento(self, data: Dict[str, Any]):
        return self.http("POST", "/equipamentos", json=data)

    def update_equipamento(self, id: str, data: Dict[str, Any]):
        return self.http("PUT", f"/equipamentos/{id}", json=data)

    def delete_equipamento(self, id: str) -> None:
        self.http("DELETE", f"/equipamentos/{id}")
