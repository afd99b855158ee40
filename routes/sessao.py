# routes/sessao.py
import re
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from auth import (
    create_token, create_user, current_user, find_user_by_email, get_user_with_permissions,
    log_audit, public_user, set_token_cookie, update_last_access, verify_password,
)
from config import COOKIE_NAME, is_prod
from db import query_db, query_one

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LEN = 8


class LoginBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    nome: Optional[str] = None


class SelectWorkspaceBody(BaseModel):
    workspaceId: Optional[str] = None


def validate_new_user(email: Optional[str], password: Optional[str], nome: Optional[str]) -> None:
    if not email or not password or not nome:
        raise HTTPException(status_code=400, detail="Email, senha e nome são obrigatórios")
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Email inválido")
    if len(password) < MIN_PASSWORD_LEN:
        raise HTTPException(status_code=400, detail=f"Senha deve ter no mínimo {MIN_PASSWORD_LEN} caracteres")
    if find_user_by_email(email):
        raise HTTPException(status_code=409, detail="Email já cadastrado")


def user_workspaces(user_id):
    return query_db(
        """
        SELECT w.id, w.tenant_id, w.nome, w.descricao, w.cor, w.icone, uw.padrao AS is_padrao
        FROM financeiro.workspace w
        JOIN financeiro.user_workspace uw ON w.id = uw.workspace_id
        WHERE uw.usuario_id = %s AND w.ativo = TRUE
        ORDER BY uw.padrao DESC, w.nome ASC
        """,
        (user_id,),
    )


@router.post("/login")
def login(payload: LoginBody, request: Request, response: Response):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email e senha são obrigatórios")

    user = find_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("senha_hash")):
        raise HTTPException(status_code=401, detail="Credenciais inválidas")
    if not user.get("ativo"):
        raise HTTPException(status_code=403, detail="Usuário desativado")

    token = create_token(user)
    update_last_access(user["id"])
    log_audit(user["id"], "login", "usuario", user["id"], request=request)

    full = get_user_with_permissions(user["id"]) or user
    set_token_cookie(response, token, secure=is_prod)
    logger.info("login ok: %s", user["email"])
    return {"success": True, "token": token, "user": public_user(full)}


@router.get("/workspaces")
def workspaces(user: Dict[str, Any] = Depends(current_user)):
    return {"success": True, "workspaces": user_workspaces(user["id"])}


@router.post("/select-workspace")
def select_workspace(payload: SelectWorkspaceBody, response: Response, user: Dict[str, Any] = Depends(current_user)):
    if not payload.workspaceId:
        raise HTTPException(status_code=400, detail="workspaceId é obrigatório")

    workspace = query_one(
        """
        SELECT w.id, w.tenant_id, w.nome, w.descricao, w.cor, w.icone
        FROM financeiro.workspace w
        JOIN financeiro.user_workspace uw ON w.id = uw.workspace_id
        WHERE uw.usuario_id = %s AND w.id = %s AND w.ativo = TRUE
        """,
        (user["id"], payload.workspaceId),
    )
    if not workspace:
        raise HTTPException(status_code=403, detail="Você não tem acesso a este workspace")

    token = create_token(user, tenant_id=workspace["tenant_id"])
    set_token_cookie(response, token, secure=is_prod)
    return {"success": True, "token": token, "workspace": workspace}


@router.post("/register", status_code=201)
def register(payload: RegisterBody, request: Request):
    validate_new_user(payload.email, payload.password, payload.nome)
    user = create_user(payload.email, payload.password, payload.nome, ["USER"])
    log_audit(user["id"], "register", "usuario", user["id"], None,
              {"email": payload.email, "nome": payload.nome}, request)
    return {"success": True, "user": {"id": user["id"], "email": user["email"], "nome": user["nome"]}}


@router.get("/me")
def me(user: Dict[str, Any] = Depends(current_user)):
    return {
        "success": True,
        "user": {
            **public_user(user),
            "ativo": user.get("ativo"),
            "email_verificado": user.get("email_verificado"),
            "ultimo_acesso": user.get("ultimo_acesso"),
            "tenantId": user.get("tenantId"),
        },
    }


@router.post("/logout")
def logout(request: Request, response: Response, user: Dict[str, Any] = Depends(current_user)):
    log_audit(user["id"], "logout", "usuario", user["id"], request=request)
    response.delete_cookie(COOKIE_NAME)
    return {"success": True, "message": "Logout realizado com sucesso"}
