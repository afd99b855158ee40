# routes/produtos.py
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel

from auth import module_tenant_id
from db import query_db, transaction

router = APIRouter(prefix="/api/produtos", tags=["estoque"])

_COLUMNS = """
    id, tenant_id, sku, nome, categoria, preco_venda, preco_custo,
    quantidade_disponivel, quantidade_reservada, estoque_minimo,
    is_ativo, is_kit, variante, imagem_url, created_at, updated_at
"""


class ProdutoBody(BaseModel):
    sku: Optional[str] = None
    nome: Optional[str] = None
    categoria: Optional[str] = None
    preco_venda: Optional[Decimal] = None
    preco_custo: Optional[Decimal] = None
    quantidade_disponivel: Optional[Decimal] = None
    quantidade_reservada: Optional[Decimal] = None
    estoque_minimo: Optional[Decimal] = None
    is_ativo: Optional[bool] = None
    is_kit: Optional[bool] = None
    variante: Optional[str] = None
    imagem_url: Optional[str] = None


@router.get("")
def list_produtos(
    q: Optional[str] = None,
    sku: Optional[str] = None,
    only_active: bool = True,
    include_kits: bool = True,
    updated_since: Optional[date] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=500),
    tenant: str = Depends(module_tenant_id),
):
    where = ["tenant_id = %s", "is_deleted = FALSE"]
    params: List[Any] = [tenant]
    # exact sku wins over the free-text search
    if sku:
        where.append("sku = %s")
        params.append(sku)
    elif q:
        where.append("(sku ILIKE %s OR nome ILIKE %s)")
        params.extend([f"%{q}%", f"%{q}%"])
    if only_active:
        where.append("is_ativo = TRUE")
    if not include_kits:
        where.append("is_kit = FALSE")
    if updated_since:
        where.append("updated_at >= %s")
        params.append(updated_since)
    params.extend([page_size, (page - 1) * page_size])

    return query_db(
        f"""
        SELECT {_COLUMNS}
        FROM estoque.produto
        WHERE {' AND '.join(where)}
        ORDER BY nome ASC
        LIMIT %s OFFSET %s
        """,
        tuple(params),
    )


@router.post("", status_code=201)
def create_produto(payload: ProdutoBody, tenant: str = Depends(module_tenant_id)):
    if not payload.sku or not payload.nome:
        raise HTTPException(status_code=400, detail="SKU e nome são obrigatórios")
    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO estoque.produto
              (tenant_id, sku, nome, categoria, preco_venda, preco_custo, quantidade_disponivel,
               quantidade_reservada, estoque_minimo, is_ativo, is_kit, variante, imagem_url)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                tenant, payload.sku, payload.nome, payload.categoria,
                payload.preco_venda or 0, payload.preco_custo or 0,
                payload.quantidade_disponivel or 0, payload.quantidade_reservada or 0,
                payload.estoque_minimo or 0,
                True if payload.is_ativo is None else payload.is_ativo,
                bool(payload.is_kit), payload.variante, payload.imagem_url,
            ),
        )
        return cur.fetchone()


@router.put("/{produto_id}")
def update_produto(produto_id: str, payload: ProdutoBody, tenant: str = Depends(module_tenant_id)):
    with transaction() as cur:
        cur.execute(
            """
            UPDATE estoque.produto
            SET sku = COALESCE(%s, sku),
                nome = COALESCE(%s, nome),
                categoria = COALESCE(%s, categoria),
                preco_venda = COALESCE(%s, preco_venda),
                preco_custo = COALESCE(%s, preco_custo),
                quantidade_disponivel = COALESCE(%s, quantidade_disponivel),
                quantidade_reservada = COALESCE(%s, quantidade_reservada),
                estoque_minimo = COALESCE(%s, estoque_minimo),
                is_ativo = COALESCE(%s, is_ativo),
                is_kit = COALESCE(%s, is_kit),
                variante = COALESCE(%s, variante),
                imagem_url = COALESCE(%s, imagem_url),
                updated_at = NOW()
            WHERE id = %s AND tenant_id = %s AND is_deleted = FALSE
            RETURNING *
            """,
            (
                payload.sku, payload.nome, payload.categoria, payload.preco_venda, payload.preco_custo,
                payload.quantidade_disponivel, payload.quantidade_reservada, payload.estoque_minimo,
                payload.is_ativo, payload.is_kit, payload.variante, payload.imagem_url,
                produto_id, tenant,
            ),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return row


@router.delete("/{produto_id}", status_code=204)
def delete_produto(produto_id: str, tenant: str = Depends(module_tenant_id)):
    with transaction() as cur:
        cur.execute(
            "DELETE FROM estoque.produto WHERE id = %s AND tenant_id = %s RETURNING id",
            (produto_id, tenant),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return Response(status_code=204)
