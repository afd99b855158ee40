# routes/contas.py
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from auth import tenant_id
from db import query_db, transaction

router = APIRouter(prefix="/api/contas", tags=["contas"])

TIPOS_CONTA = ("banco", "carteira", "investimento", "poupanca", "outro")


class ContaBody(BaseModel):
    id: Optional[str] = None
    nome: Optional[str] = None
    tipo: Optional[str] = None
    saldo_inicial: Optional[Decimal] = None


@router.get("")
def list_contas(tenant: str = Depends(tenant_id)):
    return query_db(
        "SELECT * FROM financeiro.conta WHERE tenant_id = %s ORDER BY nome",
        (tenant,),
    )


@router.post("")
def save_conta(payload: ContaBody, tenant: str = Depends(tenant_id)):
    if not payload.nome or not payload.tipo:
        raise HTTPException(status_code=400, detail="Nome e tipo são obrigatórios")
    if payload.tipo not in TIPOS_CONTA:
        raise HTTPException(status_code=400, detail=f"Tipo de conta inválido: {payload.tipo}")
    saldo = payload.saldo_inicial or Decimal("0")
    if payload.tipo == "banco" and saldo < 0:
        raise HTTPException(status_code=400, detail="Contas bancárias não podem ter saldo inicial negativo")

    with transaction() as cur:
        if payload.id:
            cur.execute(
                """
                UPDATE financeiro.conta
                SET nome = %s, tipo = %s, saldo_inicial = %s
                WHERE id = %s AND tenant_id = %s
                RETURNING *
                """,
                (payload.nome, payload.tipo, saldo, payload.id, tenant),
            )
        else:
            cur.execute(
                """
                INSERT INTO financeiro.conta (nome, tipo, saldo_inicial, tenant_id)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (payload.nome, payload.tipo, saldo, tenant),
            )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Conta não encontrada")
    return row


@router.delete("/{conta_id}")
def delete_conta(conta_id: str, tenant: str = Depends(tenant_id)):
    with transaction() as cur:
        cur.execute(
            """
            SELECT COUNT(*)::int AS n FROM financeiro.transacao
            WHERE tenant_id = %s AND (conta_id = %s OR conta_destino_id = %s)
            """,
            (tenant, conta_id, conta_id),
        )
        if cur.fetchone()["n"] > 0:
            raise HTTPException(status_code=409, detail="Não é possível excluir conta com transações vinculadas")

        cur.execute(
            """
            SELECT COUNT(*)::int AS n FROM financeiro.cartao
            WHERE tenant_id = %s AND conta_pagamento_id = %s AND is_deleted = FALSE
            """,
            (tenant, conta_id),
        )
        if cur.fetchone()["n"] > 0:
            raise HTTPException(status_code=409, detail="Conta é usada para pagamento de cartão")

        cur.execute("DELETE FROM financeiro.conta WHERE id = %s AND tenant_id = %s", (conta_id, tenant))
    return {"success": True}
