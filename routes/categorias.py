# routes/categorias.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from auth import tenant_id
from db import query_db, query_one, transaction

router = APIRouter(prefix="/api/categorias", tags=["categorias"])

TIPOS_CATEGORIA = ("receita", "despesa", "transferencia")


class CategoriaBody(BaseModel):
    id: Optional[str] = None
    nome: Optional[str] = None
    tipo: Optional[str] = None
    parent_id: Optional[str] = None


def build_tree(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Top-level categories (ordered by tipo, nome) each with their `children`."""
    parents = sorted((r for r in rows if not r.get("parent_id")), key=lambda r: (r["tipo"], r["nome"]))
    children = sorted((r for r in rows if r.get("parent_id")), key=lambda r: r["nome"])
    return [
        {**p, "children": [c for c in children if str(c["parent_id"]) == str(p["id"])]}
        for p in parents
    ]


@router.get("")
def list_categorias(tenant: str = Depends(tenant_id)):
    rows = query_db("SELECT * FROM financeiro.categoria WHERE tenant_id = %s", (tenant,))
    return build_tree(rows)


@router.post("")
def save_categoria(payload: CategoriaBody, tenant: str = Depends(tenant_id)):
    if not payload.nome:
        raise HTTPException(status_code=400, detail="Nome é obrigatório")

    tipo = payload.tipo
    if payload.parent_id:
        if payload.id and str(payload.parent_id) == str(payload.id):
            raise HTTPException(status_code=400, detail="Categoria não pode ser pai de si mesma")
        parent = query_one(
            "SELECT tipo, parent_id FROM financeiro.categoria WHERE id = %s AND tenant_id = %s",
            (payload.parent_id, tenant),
        )
        if not parent:
            raise HTTPException(status_code=400, detail="Categoria pai não encontrada")
        if parent.get("parent_id"):
            raise HTTPException(status_code=400, detail="Subcategorias não podem ter subcategorias")
        # subcategories always follow the parent's kind
        tipo = parent["tipo"]
    elif not tipo:
        raise HTTPException(status_code=400, detail="Tipo é obrigatório para categoria principal")

    if tipo not in TIPOS_CATEGORIA:
        raise HTTPException(status_code=400, detail=f"Tipo inválido: {tipo}")

    with transaction() as cur:
        if payload.id:
            if payload.parent_id:
                cur.execute(
                    "SELECT COUNT(*)::int AS n FROM financeiro.categoria WHERE parent_id = %s AND tenant_id = %s",
                    (payload.id, tenant),
                )
                if cur.fetchone()["n"] > 0:
                    raise HTTPException(
                        status_code=400,
                        detail="Categoria com subcategorias não pode virar subcategoria",
                    )
            cur.execute(
                """
                UPDATE financeiro.categoria
                SET nome = %s, tipo = %s, parent_id = %s
                WHERE id = %s AND tenant_id = %s
                RETURNING *
                """,
                (payload.nome, tipo, payload.parent_id, payload.id, tenant),
            )
            row = cur.fetchone()
            if row and not payload.parent_id:
                # children follow the parent's kind
                cur.execute(
                    "UPDATE financeiro.categoria SET tipo = %s WHERE parent_id = %s AND tenant_id = %s",
                    (tipo, payload.id, tenant),
                )
        else:
            cur.execute(
                """
                INSERT INTO financeiro.categoria (nome, tipo, parent_id, tenant_id)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (payload.nome, tipo, payload.parent_id, tenant),
            )
            row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Categoria não encontrada")
    return row


@router.delete("/{categoria_id}")
def delete_categoria(categoria_id: str, tenant: str = Depends(tenant_id)):
    with transaction() as cur:
        cur.execute(
            "SELECT COUNT(*)::int AS n FROM financeiro.categoria WHERE parent_id = %s AND tenant_id = %s",
            (categoria_id, tenant),
        )
        if cur.fetchone()["n"] > 0:
            raise HTTPException(status_code=400, detail="Não é possível deletar categoria com subcategorias")

        cur.execute(
            """
            SELECT
              (SELECT COUNT(*) FROM financeiro.transacao WHERE categoria_id = %s AND tenant_id = %s)
            + (SELECT COUNT(*) FROM financeiro.recorrencia WHERE categoria_id = %s AND tenant_id = %s)
            + (SELECT COUNT(*) FROM financeiro.fatura_item
               WHERE categoria_id = %s AND tenant_id = %s AND is_deleted = FALSE) AS n
            """,
            (categoria_id, tenant) * 3,
        )
        if int(cur.fetchone()["n"]) > 0:
            raise HTTPException(status_code=409, detail="Não é possível deletar categoria em uso")

        cur.execute("DELETE FROM financeiro.categoria WHERE id = %s AND tenant_id = %s", (categoria_id, tenant))
    return {"success": True}
