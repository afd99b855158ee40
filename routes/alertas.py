# routes/alertas.py
from fastapi import APIRouter, Depends, Query

import alerts
from auth import tenant_id

router = APIRouter(prefix="/api/alertas", tags=["alertas"])


@router.get("")
def list_alertas(dias: int = Query(7, ge=1, le=90), todos: bool = False, tenant: str = Depends(tenant_id)):
    alerts.refresh_alerts(tenant, dias=dias)
    return alerts.list_alerts(tenant, include_read=todos)


@router.post("/{alerta_id}/lida")
def marcar_lida(alerta_id: str, tenant: str = Depends(tenant_id)):
    return alerts.mark_read(tenant, alerta_id)
