# routes/recorrencias.py
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import recurring
from auth import tenant_id
from db import transaction

router = APIRouter(prefix="/api/recorrencias", tags=["recorrencias"])


class RecorrenciaBody(BaseModel):
    id: Optional[str] = None
    conta_id: Optional[str] = None
    categoria_id: Optional[str] = None
    tipo: Optional[str] = None
    valor: Optional[Decimal] = None
    descricao: Optional[str] = None
    frequencia: Optional[str] = None
    dia_vencimento: Optional[int] = None
    data_inicio: Optional[str] = None
    data_fim: Optional[str] = None
    is_paused: bool = False
    alerta_dias_antes: Optional[int] = None


class GerarBody(BaseModel):
    ate: Optional[date] = None


@router.get("")
def list_recorrencias(tenant: str = Depends(tenant_id)):
    return recurring.list_recurrences(tenant)


@router.post("")
def save_recorrencia(payload: RecorrenciaBody, tenant: str = Depends(tenant_id)):
    if payload.valor is not None and payload.valor <= 0:
        raise HTTPException(status_code=400, detail="Valor deve ser maior que zero")
    row = recurring.save_recurrence(tenant, payload.model_dump())
    if not row:
        raise HTTPException(status_code=404, detail="Recorrência não encontrada")
    return row


@router.post("/gerar")
def gerar_transacoes(payload: GerarBody, tenant: str = Depends(tenant_id)):
    return recurring.generate_due_transactions(tenant, payload.ate)


@router.delete("/{recorrencia_id}")
def delete_recorrencia(recorrencia_id: str, tenant: str = Depends(tenant_id)):
    with transaction() as cur:
        cur.execute(
            "DELETE FROM financeiro.recorrencia WHERE id = %s AND tenant_id = %s",
            (recorrencia_id, tenant),
        )
    return {"success": True}
