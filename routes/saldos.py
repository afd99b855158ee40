# routes/saldos.py
from fastapi import APIRouter, Depends, Query

import ledger
from auth import tenant_id

router = APIRouter(prefix="/api", tags=["saldos"])


@router.get("/saldo_conta")
def saldo_conta(tenant: str = Depends(tenant_id)):
    return ledger.account_balances(tenant)


@router.get("/fluxo_30d")
def fluxo_30d(tenant: str = Depends(tenant_id)):
    return ledger.cash_flow_30d(tenant)


@router.get("/projecao-mensal")
def projecao_mensal(meses: int = Query(12, ge=1, le=36), tenant: str = Depends(tenant_id)):
    return ledger.monthly_projection(tenant, months=meses)
