# routes/faturas.py
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

import invoices
from auth import tenant_id
from errors import InvalidState

router = APIRouter(prefix="/api", tags=["faturas"])


class CompraBody(BaseModel):
    id: Optional[str] = None
    cartao_id: Optional[str] = None
    categoria_id: Optional[str] = None
    descricao: Optional[str] = None
    valor: Optional[Decimal] = None
    data_compra: Optional[str] = None
    competencia: Optional[str] = None
    parcela_numero: int = 1
    parcela_total: int = 1
    compra_id: Optional[str] = None


class CompraParceladaBody(BaseModel):
    cartao_id: Optional[str] = None
    categoria_id: Optional[str] = None
    descricao: Optional[str] = None
    valor_total: Optional[Decimal] = None
    parcela_total: Optional[int] = None
    data_compra: Optional[str] = None
    competencia: Optional[str] = None


class ParcelaBody(BaseModel):
    id: Optional[str] = None
    descricao: Optional[str] = None
    valor: Optional[Decimal] = None
    categoria_id: Optional[str] = None


class FecharBody(BaseModel):
    fatura_id: Optional[str] = None
    cartao_id: Optional[str] = None
    competencia: Optional[str] = None


class PagarFaturaBody(BaseModel):
    fatura_id: Optional[str] = None
    conta_id: Optional[str] = None
    valor_pago: Optional[Decimal] = None
    data_pagamento: Optional[str] = None


@router.get("/faturas")
def list_faturas(cartao_id: Optional[str] = None, status: Optional[str] = None,
                 limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
                 tenant: str = Depends(tenant_id)):
    return invoices.list_invoices(tenant, cartao_id=cartao_id, status=status, limit=limit, offset=offset)


@router.get("/faturas/itens")
def list_fatura_itens(fatura_id: Optional[str] = None, cartao_id: Optional[str] = None,
                      competencia: Optional[str] = None, order: Optional[str] = None,
                      limit: int = Query(500, ge=1, le=5000), offset: int = Query(0, ge=0),
                      tenant: str = Depends(tenant_id)):
    return invoices.list_items(tenant, fatura_id=fatura_id, cartao_id=cartao_id, competencia=competencia,
                               order=order, limit=limit, offset=offset)


@router.post("/compras")
def save_compra(payload: CompraBody, tenant: str = Depends(tenant_id)):
    if payload.id:
        invoices.validate_parcelas(payload.parcela_numero, payload.parcela_total)
        changes = payload.model_dump(include={"descricao", "valor", "categoria_id", "data_compra"})
        return invoices.update_purchase(tenant, payload.id, changes)
    return invoices.add_purchase(tenant, payload.model_dump())


@router.post("/compras/parcelada")
def save_compra_parcelada(payload: CompraParceladaBody, tenant: str = Depends(tenant_id)):
    return invoices.add_installment_purchase(tenant, payload.model_dump())


@router.delete("/compras/{item_id}")
def delete_compra(item_id: str, todas: bool = False, tenant: str = Depends(tenant_id)):
    return invoices.delete_purchase(tenant, item_id, todas=todas)


@router.post("/parcelas")
def update_parcela(payload: ParcelaBody, tenant: str = Depends(tenant_id)):
    if not payload.id:
        raise InvalidState("id é obrigatório")
    changes = payload.model_dump(include={"descricao", "valor", "categoria_id"})
    return invoices.update_installment(tenant, payload.id, changes)


@router.post("/events/fatura.fechar")
def fechar_fatura(payload: FecharBody, tenant: str = Depends(tenant_id)):
    return invoices.close_invoice(tenant, fatura_id=payload.fatura_id,
                                  cartao_id=payload.cartao_id, competencia=payload.competencia)


@router.post("/events/fatura.pagar")
def pagar_fatura(payload: PagarFaturaBody, tenant: str = Depends(tenant_id)):
    return invoices.pay_invoice(tenant, payload.fatura_id, payload.conta_id,
                                payload.valor_pago, payload.data_pagamento)
