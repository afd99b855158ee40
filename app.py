# app.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import psycopg
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from config import CORS_ORIGINS, LOG_LEVEL, PORT, is_prod
from db import query_db, open_pool, close_pool
from errors import BusinessRuleError
from schema import ensure_schema

from routes.sessao import router as sessao_router
from routes.admin import router as admin_router
from routes.contas import router as contas_router
from routes.categorias import router as categorias_router
from routes.transacoes import router as transacoes_router
from routes.cartoes import router as cartoes_router
from routes.faturas import router as faturas_router
from routes.recorrencias import router as recorrencias_router
from routes.saldos import router as saldos_router
from routes.alertas import router as alertas_router
from routes.produtos import router as produtos_router
from routes.equipamentos import router as equipamentos_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="financeiro-api")

for r in (
    sessao_router, admin_router, contas_router, categorias_router, transacoes_router,
    cartoes_router, faturas_router, recorrencias_router, saldos_router, alertas_router,
    produtos_router, equipamentos_router,
):
    app.include_router(r)


@app.on_event("startup")
def _startup():
    open_pool()
    ensure_schema()


@app.on_event("shutdown")
def _shutdown():
    close_pool()

# =============================================================================
# Middleware
# =============================================================================

class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - t0) * 1000
        logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, ms)
        return response


app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Errors -> {"ok": false, "error": ...}
# =============================================================================

def _error(status_code: int, message) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, exc.detail)


@app.exception_handler(BusinessRuleError)
async def _business_error(request: Request, exc: BusinessRuleError):
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    first = errs[0] if errs else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Requisição inválida")
    return _error(422, msg)


@app.exception_handler(psycopg.errors.UniqueViolation)
async def _unique_violation(request: Request, exc: psycopg.errors.UniqueViolation):
    return _error(409, "Registro duplicado")


@app.exception_handler(psycopg.errors.ForeignKeyViolation)
async def _fk_violation(request: Request, exc: psycopg.errors.ForeignKeyViolation):
    return _error(409, "Registro referenciado por outros dados ou referência inexistente")


@app.exception_handler(psycopg.errors.CheckViolation)
async def _check_violation(request: Request, exc: psycopg.errors.CheckViolation):
    return _error(400, "Valor fora das regras permitidas")


@app.exception_handler(psycopg.errors.DataError)
async def _data_error(request: Request, exc: psycopg.errors.DataError):
    # malformed uuid / date / number in a parameter
    return _error(400, "Parâmetro inválido")


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Erro interno do servidor")

# =============================================================================
# Health
# =============================================================================

@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/db-test")
def db_test():
    try:
        rows = query_db("SELECT NOW() AS now, current_database() AS db")
    except psycopg.Error as e:
        logger.exception("db-test failed")
        return _error(500, str(e))
    return {"ok": True, "now": rows[0]["now"].isoformat(), "database": rows[0]["db"]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=PORT, reload=not is_prod)
