# routes/equipamentos.py
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from auth import module_tenant_id
from db import query_db, query_one, transaction

router = APIRouter(prefix="/api/equipamentos", tags=["equipamentos"])

_COLUMNS = """
    id, tenant_id, nome, tipo, marca, modelo, numero_serie, patrimonio,
    data_aquisicao, valor_aquisicao, vida_util_anos, localizacao, status,
    observacoes, created_at
"""


class EquipamentoBody(BaseModel):
    nome: Optional[str] = None
    tipo: Optional[str] = None
    marca: Optional[str] = None
    modelo: Optional[str] = None
    numero_serie: Optional[str] = None
    patrimonio: Optional[str] = None
    data_aquisicao: Optional[date] = None
    valor_aquisicao: Optional[Decimal] = None
    vida_util_anos: Optional[int] = None
    localizacao: Optional[str] = None
    status: Optional[str] = None
    observacoes: Optional[str] = None


@router.get("")
def list_equipamentos(tenant: str = Depends(module_tenant_id)):
    return query_db(
        f"""
        SELECT {_COLUMNS}
        FROM equipamentos.equipamento
        WHERE tenant_id = %s AND is_deleted = FALSE
        ORDER BY created_at DESC
        """,
        (tenant,),
    )


@router.get("/{equipamento_id}")
def get_equipamento(equipamento_id: str, tenant: str = Depends(module_tenant_id)):
    row = query_one(
        f"""
        SELECT {_COLUMNS}
        FROM equipamentos.equipamento
        WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE
        """,
        (equipamento_id, tenant),
    )
    if not row:
        raise HTTPException(status_code=404, detail="Equipamento não encontrado")
    return row


@router.post("", status_code=201)
def create_equipamento(payload: EquipamentoBody, tenant: str = Depends(module_tenant_id)):
    if not payload.nome or not payload.tipo:
        raise HTTPException(status_code=400, detail="Nome e tipo são obrigatórios")
    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO equipamentos.equipamento
              (tenant_id, nome, tipo, marca, modelo, numero_serie, patrimonio, data_aquisicao,
               valor_aquisicao, vida_util_anos, localizacao, status, observacoes)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                tenant, payload.nome, payload.tipo, payload.marca, payload.modelo,
                payload.numero_serie, payload.patrimonio, payload.data_aquisicao,
                payload.valor_aquisicao or 0, payload.vida_util_anos or 5,
                payload.localizacao, payload.status or "ativo", payload.observacoes,
            ),
        )
        return cur.fetchone()


@router.put("/{equipamento_id}")
def update_equipamento(equipamento_id: str, payload: EquipamentoBody, tenant: str = Depends(module_tenant_id)):
    with transaction() as cur:
        cur.execute(
            """
            UPDATE equipamentos.equipamento
            SET nome = COALESCE(%s, nome),
                tipo = COALESCE(%s, tipo),
                marca = COALESCE(%s, marca),
                modelo = COALESCE(%s, modelo),
                numero_serie = COALESCE(%s, numero_serie),
                patrimonio = COALESCE(%s, patrimonio),
                data_aquisicao = COALESCE(%s, data_aquisicao),
                valor_aquisicao = COALESCE(%s, valor_aquisicao),
                vida_util_anos = COALESCE(%s, vida_util_anos),
                localizacao = COALESCE(%s, localizacao),
                status = COALESCE(%s, status),
                observacoes = COALESCE(%s, observacoes),
                updated_at = NOW()
            WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE
            RETURNING *
            """,
            (
                payload.nome, payload.tipo, payload.marca, payload.modelo, payload.numero_serie,
                payload.patrimonio, payload.data_aquisicao, payload.valor_aquisicao,
                payload.vida_util_anos, payload.localizacao, payload.status, payload.observacoes,
                equipamento_id, tenant,
            ),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Equipamento não encontrado")
    return row


@router.delete("/{equipamento_id}", status_code=204)
def delete_equipamento(equipamento_id: str, tenant: str = Depends(module_tenant_id)):
    with transaction() as cur:
        cur.execute(
            "DELETE FROM equipamentos.equipamento WHERE id = %s AND tenant_id = %s RETURNING id",
            (equipamento_id, tenant),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Equipamento não encontrado")
    return Response(status_code=204)
