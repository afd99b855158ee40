# routes/transacoes.py
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from auth import log_audit, require_permission, tenant_id
from dates import mes_referencia
from db import query_db, transaction

router = APIRouter(prefix="/api/transacoes", tags=["transacoes"])

TIPOS = ("credito", "debito", "transferencia")
STATUS = ("previsto", "liquidado")


class TransacaoBody(BaseModel):
    id: Optional[str] = None
    tipo: Optional[str] = None
    valor: Optional[Decimal] = None
    descricao: Optional[str] = None
    data_transacao: Optional[date] = None
    conta_id: Optional[str] = None
    conta_destino_id: Optional[str] = None
    categoria_id: Optional[str] = None
    origem: str = "manual"
    status: str = "previsto"
    referencia: Optional[str] = None
    mes_referencia: Optional[str] = None


class PagarBody(BaseModel):
    valor_pago: Optional[Decimal] = None
    data_pagamento: Optional[date] = None
    conta_id: Optional[str] = None


INVOICE_LINKED_MSG = "Transação vinculada a uma fatura não pode ser alterada. Altere os itens da fatura."


def is_invoice_linked(row: Dict[str, Any]) -> bool:
    return (row.get("origem") or "").startswith("fatura:")


def validate_transacao(payload: TransacaoBody) -> None:
    if not payload.tipo or payload.valor is None or not payload.descricao or not payload.conta_id:
        raise HTTPException(status_code=400, detail="Tipo, valor, descrição e conta são obrigatórios")
    if payload.tipo not in TIPOS:
        raise HTTPException(status_code=400, detail=f"Tipo inválido: {payload.tipo}")
    if payload.valor <= 0:
        raise HTTPException(status_code=400, detail="Valor deve ser maior que zero")
    if payload.status not in STATUS:
        raise HTTPException(status_code=400, detail=f"Status inválido: {payload.status}")
    if payload.tipo in ("credito", "debito") and not payload.categoria_id:
        raise HTTPException(status_code=400, detail="Categoria é obrigatória para crédito/débito")
    if payload.origem.startswith("fatura"):
        raise HTTPException(status_code=400, detail="Origem reservada para faturas de cartão")
    if payload.tipo == "transferencia":
        if not payload.conta_destino_id:
            raise HTTPException(status_code=400, detail="Conta de destino é obrigatória para transferência")
        if str(payload.conta_destino_id) == str(payload.conta_id):
            raise HTTPException(status_code=400, detail="Conta de origem e destino devem ser diferentes")


@router.get("")
def list_transacoes(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    conta_id: Optional[str] = None,
    categoria_id: Optional[str] = None,
    tipo: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    tenant: str = Depends(tenant_id),
):
    where = ["t.tenant_id = %s"]
    params: List[Any] = [tenant]
    if date_from:
        where.append("t.data_transacao >= %s")
        params.append(date_from)
    if date_to:
        where.append("t.data_transacao <= %s")
        params.append(date_to)
    if conta_id:
        where.append("(t.conta_id = %s OR t.conta_destino_id = %s)")
        params.extend([conta_id, conta_id])
    if categoria_id:
        # parent category also matches its subcategories
        where.append("(t.categoria_id = %s OR cat.parent_id = %s)")
        params.extend([categoria_id, categoria_id])
    if tipo:
        where.append("t.tipo = %s")
        params.append(tipo)
    if status:
        where.append("t.status = %s")
        params.append(status)
    params.extend([limit, offset])

    return query_db(
        f"""
        SELECT t.*,
               c.nome AS conta_nome,
               cd.nome AS conta_destino_nome,
               cat.nome AS categoria_nome,
               cat.parent_id AS categoria_parent_id,
               cat.tipo AS categoria_tipo,
               parent_cat.nome AS categoria_pai_nome,
               parent_cat.id AS categoria_pai_id
        FROM financeiro.transacao t
        LEFT JOIN financeiro.conta c ON t.conta_id = c.id
        LEFT JOIN financeiro.conta cd ON t.conta_destino_id = cd.id
        LEFT JOIN financeiro.categoria cat ON t.categoria_id = cat.id
        LEFT JOIN financeiro.categoria parent_cat ON cat.parent_id = parent_cat.id
        WHERE {' AND '.join(where)}
        ORDER BY t.data_transacao DESC, t.created_at DESC
        LIMIT %s OFFSET %s
        """,
        tuple(params),
    )


@router.post("")
def save_transacao(payload: TransacaoBody, tenant: str = Depends(tenant_id)):
    validate_transacao(payload)
    data_transacao = payload.data_transacao or date.today()
    mes_ref = payload.mes_referencia or mes_referencia(data_transacao)

    with transaction() as cur:
        if payload.id:
            cur.execute(
                "SELECT status, origem FROM financeiro.transacao WHERE id = %s AND tenant_id = %s FOR UPDATE",
                (payload.id, tenant),
            )
            existing = cur.fetchone()
            if not existing:
                raise HTTPException(status_code=404, detail="Transação não encontrada")
            if is_invoice_linked(existing):
                raise HTTPException(status_code=409, detail=INVOICE_LINKED_MSG)
            if existing["status"] == "liquidado":
                raise HTTPException(status_code=400, detail="Transações liquidadas não podem ser editadas")
            cur.execute(
                """
                UPDATE financeiro.transacao
                SET tipo = %s, valor = %s, descricao = %s, data_transacao = %s,
                    conta_id = %s, conta_destino_id = %s, categoria_id = %s, status = %s,
                    referencia = %s, mes_referencia = %s
                WHERE id = %s AND tenant_id = %s
                RETURNING *
                """,
                (
                    payload.tipo, payload.valor, payload.descricao, data_transacao,
                    payload.conta_id, payload.conta_destino_id, payload.categoria_id, payload.status,
                    payload.referencia, mes_ref, payload.id, tenant,
                ),
            )
        else:
            cur.execute(
                """
                INSERT INTO financeiro.transacao
                  (tipo, valor, descricao, data_transacao, conta_id, conta_destino_id,
                   categoria_id, origem, status, referencia, mes_referencia, tenant_id)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    payload.tipo, payload.valor, payload.descricao, data_transacao,
                    payload.conta_id, payload.conta_destino_id, payload.categoria_id,
                    payload.origem, payload.status, payload.referencia, mes_ref, tenant,
                ),
            )
        return cur.fetchone()


@router.post("/{transacao_id}/pagar")
def pagar_transacao(transacao_id: str, payload: PagarBody, tenant: str = Depends(tenant_id)):
    if payload.valor_pago is None or not payload.data_pagamento or not payload.conta_id:
        raise HTTPException(status_code=400, detail="valor_pago, data_pagamento e conta_id são obrigatórios")
    if payload.valor_pago <= 0:
        raise HTTPException(status_code=400, detail="Valor deve ser maior que zero")

    with transaction() as cur:
        cur.execute(
            "SELECT * FROM financeiro.transacao WHERE id = %s AND tenant_id = %s FOR UPDATE",
            (transacao_id, tenant),
        )
        trans = cur.fetchone()
        if not trans:
            raise HTTPException(status_code=404, detail="Transação não encontrada")
        if is_invoice_linked(trans):
            raise HTTPException(status_code=409, detail=INVOICE_LINKED_MSG)
        if trans["status"] == "liquidado":
            raise HTTPException(status_code=400, detail="Transação já está liquidada")

        cur.execute(
            """
            UPDATE financeiro.transacao
            SET status = 'liquidado', valor = %s, data_transacao = %s, conta_id = %s, mes_referencia = %s
            WHERE id = %s AND tenant_id = %s
            RETURNING *
            """,
            (payload.valor_pago, payload.data_pagamento, payload.conta_id,
             mes_referencia(payload.data_pagamento), transacao_id, tenant),
        )
        return cur.fetchone()


@router.delete("/{transacao_id}")
def delete_transacao(transacao_id: str, request: Request, tenant: str = Depends(tenant_id),
                     user: Dict[str, Any] = Depends(require_permission("transacao", "delete"))):
    with transaction() as cur:
        cur.execute(
            "SELECT * FROM financeiro.transacao WHERE id = %s AND tenant_id = %s FOR UPDATE",
            (transacao_id, tenant),
        )
        old = cur.fetchone()
        if not old:
            raise HTTPException(status_code=404, detail="Transação não encontrada")
        if is_invoice_linked(old):
            raise HTTPException(
                status_code=409,
                detail="Transação vinculada a uma fatura não pode ser excluída. Exclua os itens da fatura.",
            )
        cur.execute("DELETE FROM financeiro.transacao WHERE id = %s AND tenant_id = %s", (transacao_id, tenant))

    log_audit(user["id"], "delete", "transacao", transacao_id, old, None, request)
    return {"success": True}
