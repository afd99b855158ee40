# routes/cartoes.py
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from auth import tenant_id
from db import query_db, transaction

router = APIRouter(prefix="/api/cartoes", tags=["cartoes"])

# soft delete only goes through DELETE, which checks for open invoices
_UPDATABLE = ("apelido", "bandeira", "limite_total", "dia_fechamento", "dia_vencimento", "conta_pagamento_id")


class CartaoBody(BaseModel):
    id: Optional[str] = None
    apelido: Optional[str] = None
    bandeira: Optional[str] = None
    limite_total: Optional[Decimal] = None
    dia_fechamento: Optional[int] = None
    dia_vencimento: Optional[int] = None
    conta_pagamento_id: Optional[str] = None


def _check_day(value: Optional[int], label: str) -> None:
    if value is not None and not 1 <= value <= 31:
        raise HTTPException(status_code=400, detail=f"Dia de {label} deve estar entre 1 e 31")


@router.get("")
def list_cartoes(tenant: str = Depends(tenant_id)):
    return query_db(
        """
        SELECT c.*, co.nome AS conta_pagamento_nome
        FROM financeiro.cartao c
        LEFT JOIN financeiro.conta co ON c.conta_pagamento_id = co.id
        WHERE c.tenant_id = %s AND c.is_deleted = FALSE
        ORDER BY c.apelido
        """,
        (tenant,),
    )


@router.post("")
def save_cartao(payload: CartaoBody, tenant: str = Depends(tenant_id)):
    _check_day(payload.dia_fechamento, "fechamento")
    _check_day(payload.dia_vencimento, "vencimento")

    if payload.id:
        # partial update: only the fields the client actually sent
        fields = payload.model_dump(exclude_unset=True)
        sets, values = [], []
        for name in _UPDATABLE:
            if name in fields:
                sets.append(f"{name} = %s")
                values.append(fields[name])
        if not sets:
            raise HTTPException(status_code=400, detail="Nenhum campo para atualizar")
        with transaction() as cur:
            cur.execute(
                f"""
                UPDATE financeiro.cartao SET {', '.join(sets)}
                WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE
                RETURNING *
                """,
                (*values, payload.id, tenant),
            )
            row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=404, detail="Cartão não encontrado")
        return row

    if not payload.apelido or not payload.dia_fechamento or not payload.dia_vencimento:
        raise HTTPException(status_code=400, detail="Apelido, dia de fechamento e vencimento são obrigatórios")
    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO financeiro.cartao
              (apelido, bandeira, limite_total, dia_fechamento, dia_vencimento,
               conta_pagamento_id, tenant_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                payload.apelido, payload.bandeira, payload.limite_total, payload.dia_fechamento,
                payload.dia_vencimento, payload.conta_pagamento_id, tenant,
            ),
        )
        return cur.fetchone()


@router.delete("/{cartao_id}")
def delete_cartao(cartao_id: str, tenant: str = Depends(tenant_id)):
    with transaction() as cur:
        cur.execute(
            """
            SELECT COUNT(*)::int AS n FROM financeiro.fatura
            WHERE cartao_id = %s AND tenant_id = %s AND status = 'aberta'
            """,
            (cartao_id, tenant),
        )
        if cur.fetchone()["n"] > 0:
            raise HTTPException(status_code=409, detail="Não é possível excluir cartão com faturas em aberto")

        cur.execute(
            "UPDATE financeiro.cartao SET is_deleted = TRUE WHERE id = %s AND tenant_id = %s RETURNING *",
            (cartao_id, tenant),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Cartão não encontrado")
    return {"message": "Cartão excluído com sucesso", "cartao": row}
