# invoices.py
"""
Credit-card invoices (fatura) and their line items (fatura_item).

Lifecycle: aberta -> fechada -> paga. Items can only be added, edited or
removed while the invoice is aberta. While open, every invoice carries one
'previsto' debit ("A Pagar") whose value tracks the sum of its live items.
Closing freezes the total and drops that payable; paying explodes the items
into one settled debit each.

Every public operation here runs in a single DB transaction and locks the
invoice rows it touches (SELECT ... FOR UPDATE).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from dates import add_months, competencia_of, format_competencia, mes_referencia, parse_ymd, to_ymd, with_day
from db import query_db, transaction
from errors import InvalidState, NotFound

logger = logging.getLogger(__name__)

ABERTA = "aberta"
FECHADA = "fechada"
PAGA = "paga"

MAX_PARCELAS = 48
CLOSING_LEAD_DAYS = 7
DEFAULT_DIA_VENCIMENTO = 10
PAYABLE_CATEGORY = "Pagamento Cartão de Crédito"

_CENT = Decimal("0.01")

# =============================================================================
# Pure rules
# =============================================================================

def assert_transition(current: str, target: str) -> None:
    if target == FECHADA and current != ABERTA:
        raise InvalidState("Fatura já está fechada ou paga")
    if target == PAGA:
        if current == PAGA:
            raise InvalidState("Fatura já está paga")
        if current != FECHADA:
            raise InvalidState("A fatura precisa estar fechada antes de ser paga.")


def assert_accepts_items(status: str, action: str = "adicionar compras em") -> None:
    if status != ABERTA:
        raise InvalidState(f"Não é possível {action} fatura {status}")


def to_money(value, field: str = "valor") -> Decimal:
    try:
        d = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidState(f"{field.capitalize()} inválido")
    if d <= 0:
        raise InvalidState("Valor deve ser maior que zero")
    return d


def validate_parcelas(numero: int, total: int) -> Tuple[int, int]:
    try:
        numero, total = int(numero), int(total)
    except (TypeError, ValueError):
        raise InvalidState("Parcela inválida")
    if numero < 1 or total < 1:
        raise InvalidState("Parcela deve ser maior ou igual a 1")
    if numero > total:
        raise InvalidState("Número da parcela não pode ser maior que o total de parcelas")
    if total > MAX_PARCELAS:
        raise InvalidState(f"O número de parcelas deve estar entre 1 e {MAX_PARCELAS}")
    return numero, total


def competencia_for_purchase(data_compra, dia_fechamento: Optional[int]) -> date:
    """A purchase made after the card's closing day lands on next month's invoice."""
    d = parse_ymd(data_compra, strict=True)
    comp = date(d.year, d.month, 1)
    if dia_fechamento and d.day > int(dia_fechamento):
        comp = add_months(comp, 1)
    return comp


def invoice_dates(competencia, dia_vencimento: Optional[int]) -> Tuple[date, date]:
    """(data_fechamento, data_vencimento): due in the month after competencia, closing a week earlier."""
    comp = competencia_of(competencia)
    venc = with_day(add_months(comp, 1), dia_vencimento or DEFAULT_DIA_VENCIMENTO)
    return venc - timedelta(days=CLOSING_LEAD_DAYS), venc


def split_installments(total, n: int) -> List[Decimal]:
    """Split in cents; the rounding remainder goes on the first installment."""
    _, n = validate_parcelas(1, n)
    cents = int(to_money(total) * 100)
    base, rem = divmod(cents, n)
    if base == 0:
        raise InvalidState("Valor da parcela deve ser maior que zero")
    out = [base] * n
    out[0] += rem
    return [(Decimal(c) / 100).quantize(_CENT) for c in out]


@dataclass
class PlannedInstallment:
    numero: int
    total: int
    valor: Decimal
    competencia: date


def plan_installments(valor_total, parcela_total: int, data_compra,
                      dia_fechamento: Optional[int] = None, competencia_inicial=None) -> List[PlannedInstallment]:
    first = competencia_of(competencia_inicial) or competencia_for_purchase(data_compra, dia_fechamento)
    valores = split_installments(valor_total, parcela_total)
    return [
        PlannedInstallment(i + 1, parcela_total, v, add_months(first, i))
        for i, v in enumerate(valores)
    ]


def item_label(item: Dict[str, Any]) -> str:
    total = int(item.get("parcela_total") or 1)
    if total > 1:
        return f"{item['descricao']} ({item['parcela_numero']}/{total})"
    return item["descricao"]

# =============================================================================
# Row helpers (caller holds the transaction)
# =============================================================================

def _get_card(cur, tenant_id: str, cartao_id) -> Dict[str, Any]:
    cur.execute(
        "SELECT * FROM financeiro.cartao WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE",
        (cartao_id, tenant_id),
    )
    card = cur.fetchone()
    if not card:
        raise NotFound("Cartão não encontrado")
    return card


def _lock_invoice(cur, tenant_id: str, fatura_id) -> Dict[str, Any]:
    cur.execute(
        "SELECT * FROM financeiro.fatura WHERE id = %s AND tenant_id = %s FOR UPDATE",
        (fatura_id, tenant_id),
    )
    fatura = cur.fetchone()
    if not fatura:
        raise NotFound("Fatura não encontrada")
    return fatura


def _lock_invoice_by_competencia(cur, tenant_id: str, cartao_id, competencia) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT * FROM financeiro.fatura
        WHERE tenant_id = %s AND cartao_id = %s AND competencia = %s
        FOR UPDATE
        """,
        (tenant_id, cartao_id, competencia_of(competencia)),
    )
    fatura = cur.fetchone()
    if not fatura:
        raise NotFound("Fatura não encontrada")
    return fatura


def _get_or_create_open_invoice(cur, tenant_id: str, card: Dict[str, Any], competencia: date) -> Dict[str, Any]:
    data_fechamento, data_vencimento = invoice_dates(competencia, card.get("dia_vencimento"))
    cur.execute(
        """
        INSERT INTO financeiro.fatura
          (tenant_id, cartao_id, competencia, data_fechamento, data_vencimento, status)
        VALUES (%s, %s, %s, %s, %s, 'aberta')
        ON CONFLICT (tenant_id, cartao_id, competencia) DO NOTHING
        """,
        (tenant_id, card["id"], competencia, data_fechamento, data_vencimento),
    )
    cur.execute(
        """
        SELECT * FROM financeiro.fatura
        WHERE tenant_id = %s AND cartao_id = %s AND competencia = %s
        FOR UPDATE
        """,
        (tenant_id, card["id"], competencia),
    )
    fatura = cur.fetchone()
    assert_accepts_items(fatura["status"])
    return fatura


def _lock_item(cur, tenant_id: str, item_id) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT * FROM financeiro.fatura_item
        WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE
        FOR UPDATE
        """,
        (item_id, tenant_id),
    )
    item = cur.fetchone()
    if not item:
        raise NotFound("Item de fatura não encontrado")
    return item


def _items_total(cur, fatura_id) -> Decimal:
    cur.execute(
        """
        SELECT COALESCE(SUM(valor), 0) AS total
        FROM financeiro.fatura_item
        WHERE fatura_id = %s AND is_deleted = FALSE
        """,
        (fatura_id,),
    )
    row = cur.fetchone()
    return Decimal(row["total"] if row else 0)


def _payable_category_id(cur, tenant_id: str):
    cur.execute(
        """
        SELECT id FROM financeiro.categoria
        WHERE tenant_id = %s AND nome = %s AND parent_id IS NULL
        LIMIT 1
        """,
        (tenant_id, PAYABLE_CATEGORY),
    )
    row = cur.fetchone()
    if row:
        return row["id"]
    cur.execute(
        """
        INSERT INTO financeiro.categoria (tenant_id, nome, tipo)
        VALUES (%s, %s, 'despesa')
        RETURNING id
        """,
        (tenant_id, PAYABLE_CATEGORY),
    )
    return cur.fetchone()["id"]


def _payable_account_id(cur, tenant_id: str, card: Dict[str, Any]):
    if card.get("conta_pagamento_id"):
        return card["conta_pagamento_id"]
    cur.execute(
        "SELECT id FROM financeiro.conta WHERE tenant_id = %s ORDER BY created_at, nome LIMIT 1",
        (tenant_id,),
    )
    row = cur.fetchone()
    if not row:
        raise InvalidState("Cadastre uma conta antes de lançar compras no cartão")
    return row["id"]


def _drop_payable(cur, fatura: Dict[str, Any]) -> None:
    if fatura.get("transacao_id"):
        cur.execute(
            "DELETE FROM financeiro.transacao WHERE id = %s AND status = 'previsto'",
            (fatura["transacao_id"],),
        )
        logger.info("fatura %s: payable %s removed", fatura["id"], fatura["transacao_id"])


def sync_payable_transaction(cur, tenant_id: str, fatura: Dict[str, Any], card: Dict[str, Any]):
    """Keep the invoice's 'A Pagar' debit equal to its live items. Returns the transaction id or None."""
    if fatura["status"] != ABERTA:
        return None

    total = _items_total(cur, fatura["id"])
    if total <= 0:
        _drop_payable(cur, fatura)
        cur.execute("UPDATE financeiro.fatura SET transacao_id = NULL WHERE id = %s", (fatura["id"],))
        return None

    descricao = f"Fatura {card['apelido']} - {format_competencia(fatura['competencia'])}"
    venc = fatura["data_vencimento"]
    conta_id = _payable_account_id(cur, tenant_id, card)

    if fatura.get("transacao_id"):
        cur.execute(
            """
            UPDATE financeiro.transacao
            SET valor = %s, descricao = %s, data_transacao = %s, conta_id = %s, mes_referencia = %s
            WHERE id = %s AND tenant_id = %s AND status = 'previsto'
            RETURNING id
            """,
            (total, descricao, venc, conta_id, mes_referencia(venc), fatura["transacao_id"], tenant_id),
        )
        row = cur.fetchone()
        if row:
            return row["id"]

    cur.execute(
        """
        INSERT INTO financeiro.transacao
          (tenant_id, tipo, valor, descricao, data_transacao, conta_id, categoria_id,
           origem, status, referencia, mes_referencia)
        VALUES (%s, 'debito', %s, %s, %s, %s, %s, %s, 'previsto', %s, %s)
        RETURNING id
        """,
        (
            tenant_id, total, descricao, venc, conta_id,
            _payable_category_id(cur, tenant_id),
            f"fatura:{fatura['id']}",
            f"Fatura {card['apelido']}",
            mes_referencia(venc),
        ),
    )
    transacao_id = cur.fetchone()["id"]
    cur.execute("UPDATE financeiro.fatura SET transacao_id = %s WHERE id = %s", (transacao_id, fatura["id"]))
    return transacao_id


def _insert_item(cur, tenant_id: str, fatura: Dict[str, Any], card: Dict[str, Any], *,
                 descricao: str, valor: Decimal, data_compra, categoria_id,
                 parcela_numero: int, parcela_total: int, compra_id) -> Dict[str, Any]:
    cur.execute(
        """
        INSERT INTO financeiro.fatura_item
          (tenant_id, fatura_id, cartao_id, categoria_id, compra_id, descricao, valor,
           data_compra, parcela_numero, parcela_total, competencia)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING *
        """,
        (
            tenant_id, fatura["id"], card["id"], categoria_id, compra_id, descricao, valor,
            data_compra, parcela_numero, parcela_total, fatura["competencia"],
        ),
    )
    return cur.fetchone()

# =============================================================================
# Purchases
# =============================================================================

def _require(payload: Dict[str, Any], *fields: str, message: str) -> None:
    if any(payload.get(f) in (None, "") for f in fields):
        raise InvalidState(message)


def add_purchase(tenant_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """One fatura_item (a single purchase or one installment of a larger one)."""
    _require(payload, "cartao_id", "descricao", "data_compra", "valor",
             message="Cartão, descrição, valor e data da compra são obrigatórios")
    valor = to_money(payload["valor"])
    numero, total = validate_parcelas(payload.get("parcela_numero") or 1, payload.get("parcela_total") or 1)
    data_compra = parse_ymd(payload["data_compra"], strict=True)

    with transaction() as cur:
        card = _get_card(cur, tenant_id, payload["cartao_id"])
        competencia = competencia_of(payload.get("competencia")) or competencia_for_purchase(
            data_compra, card.get("dia_fechamento"))
        fatura = _get_or_create_open_invoice(cur, tenant_id, card, competencia)
        item = _insert_item(
            cur, tenant_id, fatura, card,
            descricao=payload["descricao"], valor=valor, data_compra=data_compra,
            categoria_id=payload.get("categoria_id"),
            parcela_numero=numero, parcela_total=total,
            compra_id=payload.get("compra_id") or uuid.uuid4(),
        )
        sync_payable_transaction(cur, tenant_id, fatura, card)

    logger.info("fatura %s: item %s added (%s)", fatura["id"], item["id"], valor)
    return item


def add_installment_purchase(tenant_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """All N installments of a purchase, across N invoices, or none of them."""
    _require(payload, "cartao_id", "descricao", "data_compra", "valor_total", "parcela_total",
             message="Cartão, descrição, valor total, parcelas e data da compra são obrigatórios")
    data_compra = parse_ymd(payload["data_compra"], strict=True)
    compra_id = uuid.uuid4()
    itens = []

    with transaction() as cur:
        card = _get_card(cur, tenant_id, payload["cartao_id"])
        plan = plan_installments(
            payload["valor_total"], payload["parcela_total"], data_compra,
            dia_fechamento=card.get("dia_fechamento"),
            competencia_inicial=payload.get("competencia"),
        )
        for p in plan:
            fatura = _get_or_create_open_invoice(cur, tenant_id, card, p.competencia)
            itens.append(_insert_item(
                cur, tenant_id, fatura, card,
                descricao=payload["descricao"], valor=p.valor, data_compra=data_compra,
                categoria_id=payload.get("categoria_id"),
                parcela_numero=p.numero, parcela_total=p.total, compra_id=compra_id,
            ))
            sync_payable_transaction(cur, tenant_id, fatura, card)

    logger.info("compra %s: %s installments on card %s", compra_id, len(itens), payload["cartao_id"])
    return {"compra_id": compra_id, "itens": itens}


_EDITABLE_ITEM_FIELDS = ("descricao", "valor", "categoria_id", "data_compra")
# an installment's date belongs to the whole purchase
_EDITABLE_INSTALLMENT_FIELDS = ("descricao", "valor", "categoria_id")


def _update_item(tenant_id: str, item_id, changes: Dict[str, Any], fields: Tuple[str, ...]) -> Dict[str, Any]:
    sets, values = [], []
    for field in fields:
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field == "valor":
            value = to_money(value)
        elif field == "data_compra":
            value = parse_ymd(value, strict=True)
        sets.append(f"{field} = %s")
        values.append(value)
    if not sets:
        raise InvalidState("Nenhum campo para atualizar")

    with transaction() as cur:
        item = _lock_item(cur, tenant_id, item_id)
        fatura = _lock_invoice(cur, tenant_id, item["fatura_id"])
        assert_accepts_items(fatura["status"], "editar itens de")
        card = _get_card(cur, tenant_id, fatura["cartao_id"])

        cur.execute(
            f"UPDATE financeiro.fatura_item SET {', '.join(sets)} WHERE id = %s AND tenant_id = %s RETURNING *",
            (*values, item_id, tenant_id),
        )
        updated = cur.fetchone()
        sync_payable_transaction(cur, tenant_id, fatura, card)
    return updated


def update_purchase(tenant_id: str, item_id, changes: Dict[str, Any]) -> Dict[str, Any]:
    return _update_item(tenant_id, item_id, changes, _EDITABLE_ITEM_FIELDS)


def update_installment(tenant_id: str, item_id, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Edit one parcela; its siblings in other invoices are left alone."""
    return _update_item(tenant_id, item_id, changes, _EDITABLE_INSTALLMENT_FIELDS)


def delete_purchase(tenant_id: str, item_id, todas: bool = False) -> Dict[str, Any]:
    """Soft delete one item, or every installment sharing its compra_id."""
    with transaction() as cur:
        item = _lock_item(cur, tenant_id, item_id)
        if todas and item.get("compra_id"):
            cur.execute(
                """
                SELECT * FROM financeiro.fatura_item
                WHERE tenant_id = %s AND compra_id = %s AND is_deleted = FALSE
                ORDER BY parcela_numero
                FOR UPDATE
                """,
                (tenant_id, item["compra_id"]),
            )
            items = cur.fetchall()
        else:
            items = [item]

        faturas = {}
        for it in items:
            if it["fatura_id"] not in faturas:
                faturas[it["fatura_id"]] = _lock_invoice(cur, tenant_id, it["fatura_id"])
            assert_accepts_items(faturas[it["fatura_id"]]["status"], "excluir itens de")

        cur.execute(
            "UPDATE financeiro.fatura_item SET is_deleted = TRUE WHERE id = ANY(%s) AND tenant_id = %s",
            ([it["id"] for it in items], tenant_id),
        )
        for fatura in faturas.values():
            card = _get_card(cur, tenant_id, fatura["cartao_id"])
            sync_payable_transaction(cur, tenant_id, fatura, card)

    return {"success": True, "removidos": len(items)}

# =============================================================================
# Close / pay
# =============================================================================

def close_invoice(tenant_id: str, fatura_id=None, cartao_id=None, competencia=None) -> Dict[str, Any]:
    if not fatura_id and not (cartao_id and competencia):
        raise InvalidState("Informe fatura_id ou cartao_id e competencia")

    with transaction() as cur:
        if fatura_id:
            fatura = _lock_invoice(cur, tenant_id, fatura_id)
        else:
            fatura = _lock_invoice_by_competencia(cur, tenant_id, cartao_id, competencia)
        assert_transition(fatura["status"], FECHADA)

        total = _items_total(cur, fatura["id"])
        if total <= 0:
            raise InvalidState("Não é possível fechar uma fatura sem compras.")

        _drop_payable(cur, fatura)
        cur.execute(
            """
            UPDATE financeiro.fatura
            SET status = 'fechada', valor_fechado = %s, data_fechamento = CURRENT_DATE, transacao_id = NULL
            WHERE id = %s
            RETURNING *
            """,
            (total, fatura["id"]),
        )
        closed = cur.fetchone()

    logger.info("fatura %s closed (%s)", closed["id"], total)
    return closed


def pay_invoice(tenant_id: str, fatura_id, conta_id, valor_pago, data_pagamento) -> Dict[str, Any]:
    if not fatura_id or not conta_id or valor_pago in (None, "") or not data_pagamento:
        raise InvalidState("fatura_id, conta_id, valor_pago e data_pagamento são obrigatórios")
    valor_pago = to_money(valor_pago, "valor_pago")
    data_pagamento = parse_ymd(data_pagamento, strict=True)

    with transaction() as cur:
        fatura = _lock_invoice(cur, tenant_id, fatura_id)
        assert_transition(fatura["status"], PAGA)

        cur.execute("SELECT id FROM financeiro.conta WHERE id = %s AND tenant_id = %s", (conta_id, tenant_id))
        if not cur.fetchone():
            raise NotFound("Conta não encontrada")
        cur.execute("SELECT apelido FROM financeiro.cartao WHERE id = %s", (fatura["cartao_id"],))
        apelido = (cur.fetchone() or {}).get("apelido", "")

        _drop_payable(cur, fatura)

        cur.execute(
            """
            SELECT * FROM financeiro.fatura_item
            WHERE fatura_id = %s AND is_deleted = FALSE
            ORDER BY data_compra, parcela_numero
            """,
            (fatura["id"],),
        )
        itens = cur.fetchall()
        for item in itens:
            cur.execute(
                """
                INSERT INTO financeiro.transacao
                  (tenant_id, tipo, valor, descricao, data_transacao, conta_id, categoria_id,
                   origem, referencia, status, mes_referencia)
                VALUES (%s, 'debito', %s, %s, %s, %s, %s, %s, %s, 'liquidado', %s)
                """,
                (
                    tenant_id, item["valor"], item_label(item), data_pagamento, conta_id,
                    item.get("categoria_id"),
                    f"fatura_item:{item['id']}",
                    f"Item fatura {apelido} - {to_ymd(item['data_compra'])}",
                    mes_referencia(data_pagamento),
                ),
            )

        cur.execute(
            """
            UPDATE financeiro.fatura
            SET status = 'paga', valor_pago = %s, data_pagamento = %s, transacao_id = NULL
            WHERE id = %s
            RETURNING *
            """,
            (valor_pago, data_pagamento, fatura["id"]),
        )
        paid = cur.fetchone()

    logger.info("fatura %s paid (%s items)", paid["id"], len(itens))
    return {"fatura": paid, "itens_desmembrados": len(itens)}

# =============================================================================
# Reads
# =============================================================================

def list_invoices(tenant_id: str, cartao_id=None, status: Optional[str] = None, limit: int = 100, offset: int = 0):
    where = ["f.tenant_id = %s"]
    params: List[Any] = [tenant_id]
    if cartao_id:
        where.append("f.cartao_id = %s")
        params.append(cartao_id)
    if status:
        where.append("f.status = %s")
        params.append(status)
    params.extend([int(limit), int(offset)])
    return query_db(
        f"""
        SELECT f.*, c.apelido AS cartao_apelido,
               COALESCE((
                 SELECT SUM(fi.valor) FROM financeiro.fatura_item fi
                 WHERE fi.fatura_id = f.id AND fi.is_deleted = FALSE
               ), 0) AS total_itens
        FROM financeiro.fatura f
        LEFT JOIN financeiro.cartao c ON f.cartao_id = c.id
        WHERE {' AND '.join(where)}
        ORDER BY f.competencia DESC, f.id
        LIMIT %s OFFSET %s
        """,
        tuple(params),
    )


_ITEM_ORDER_FIELDS = {"data_compra", "valor", "descricao", "created_at"}


def parse_item_order(order: Optional[str]) -> Tuple[str, str]:
    """'data_compra.desc' -> ('fi.data_compra', 'DESC'); unknown input falls back to data_compra ASC."""
    field, _, direction = (order or "").partition(".")
    if field not in _ITEM_ORDER_FIELDS:
        field = "data_compra"
    direction = "DESC" if direction.lower() == "desc" else "ASC"
    return f"fi.{field}", direction


def list_items(tenant_id: str, fatura_id=None, cartao_id=None, competencia=None,
               order: Optional[str] = None, limit: int = 500, offset: int = 0):
    where = ["fi.tenant_id = %s", "fi.is_deleted = FALSE"]
    params: List[Any] = [tenant_id]
    if fatura_id:
        where.append("fi.fatura_id = %s")
        params.append(fatura_id)
    if cartao_id:
        where.append("f.cartao_id = %s")
        params.append(cartao_id)
    if competencia:
        comp = competencia_of(competencia)
        if not comp:
            raise InvalidState("Competência inválida")
        where.append("f.competencia = %s")
        params.append(comp)

    order_col, direction = parse_item_order(order)
    params.extend([int(limit), int(offset)])
    return query_db(
        f"""
        SELECT fi.id, fi.fatura_id, fi.cartao_id, fi.categoria_id, fi.compra_id,
               fi.descricao, fi.valor,
               TO_CHAR(fi.data_compra, 'YYYY-MM-DD') AS data_compra,
               fi.parcela_numero, fi.parcela_total,
               TO_CHAR(f.competencia, 'YYYY-MM-DD') AS competencia,
               f.status AS fatura_status,
               cat.nome AS categoria_nome,
               fi.created_at
        FROM financeiro.fatura_item fi
        JOIN financeiro.fatura f ON fi.fatura_id = f.id
        LEFT JOIN financeiro.categoria cat ON fi.categoria_id = cat.id
        WHERE {' AND '.join(where)}
        ORDER BY {order_col} {direction}, fi.parcela_numero::int ASC
        LIMIT %s OFFSET %s
        """,
        tuple(params),
    )
