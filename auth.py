# auth.py
import json
import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Dict, List, Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from psycopg.types.json import Jsonb

from config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRES_DAYS, BCRYPT_ROUNDS, COOKIE_NAME
from db import query_db, query_one, with_db_cursor

logger = logging.getLogger(__name__)

SUPER_ADMIN_LEVEL = 999

bearer = HTTPBearer(auto_error=False)

_json_dumps = partial(json.dumps, default=str)

# =============================================================================
# Passwords / tokens
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    if not password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed hash in the row
        return False


def create_token(user: Dict[str, Any], tenant_id: Optional[str] = None) -> str:
    payload = {
        "userId": str(user["id"]),
        "email": user["email"],
        "nome": user.get("nome"),
        "exp": datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRES_DAYS),
    }
    if tenant_id:
        payload["tenantId"] = tenant_id
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token inválido")


def set_token_cookie(response, token: str, secure: bool):
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=JWT_EXPIRES_DAYS * 24 * 60 * 60,
    )

# =============================================================================
# Users
# =============================================================================

def find_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    return query_one("SELECT * FROM financeiro.usuario WHERE email = %s", (email,))


def get_user_with_permissions(user_id: str) -> Optional[Dict[str, Any]]:
    user = query_one(
        """
        SELECT id, email, nome, ativo, email_verificado, ultimo_acesso, created_at
        FROM financeiro.usuario
        WHERE id = %s
        """,
        (user_id,),
    )
    if not user:
        return None

    roles = query_db(
        """
        SELECT r.id, r.nome, r.nivel_acesso
        FROM financeiro.role r
        JOIN financeiro.user_role ur ON r.id = ur.role_id
        WHERE ur.usuario_id = %s
        ORDER BY r.nivel_acesso DESC
        """,
        (user_id,),
    )
    permissions = query_db(
        """
        SELECT DISTINCT p.recurso, p.acao
        FROM financeiro.permission p
        JOIN financeiro.role_permission rp ON p.id = rp.permission_id
        JOIN financeiro.user_role ur ON rp.role_id = ur.role_id
        WHERE ur.usuario_id = %s
        ORDER BY p.recurso, p.acao
        """,
        (user_id,),
    )
    user = dict(user)
    user["roles"] = list(roles)
    user["permissions"] = list(permissions)
    return user


def create_user(email: str, password: str, nome: str, role_names: Optional[List[str]] = None) -> Dict[str, Any]:
    role_names = role_names or ["USER"]
    with with_db_cursor() as (conn, cur):
        try:
            cur.execute(
                """
                INSERT INTO financeiro.usuario (email, senha_hash, nome, ativo, email_verificado)
                VALUES (%s, %s, %s, TRUE, FALSE)
                RETURNING id, email, nome, ativo, email_verificado, ultimo_acesso, created_at
                """,
                (email, hash_password(password), nome),
            )
            user = cur.fetchone()
            for role_name in role_names:
                cur.execute(
                    """
                    INSERT INTO financeiro.user_role (usuario_id, role_id)
                    SELECT %s, id FROM financeiro.role WHERE nome = %s
                    ON CONFLICT DO NOTHING
                    """,
                    (user["id"], role_name),
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return user


def update_last_access(user_id) -> None:
    with with_db_cursor() as (conn, cur):
        cur.execute("UPDATE financeiro.usuario SET ultimo_acesso = NOW() WHERE id = %s", (user_id,))
        conn.commit()


def max_level(user: Dict[str, Any]) -> int:
    return max((int(r.get("nivel_acesso") or 0) for r in user.get("roles") or []), default=0)


def is_super_admin(user: Dict[str, Any]) -> bool:
    return max_level(user) >= SUPER_ADMIN_LEVEL


def has_permission(user: Dict[str, Any], recurso: str, acao: str) -> bool:
    if is_super_admin(user):
        return True
    return any(p.get("recurso") == recurso and p.get("acao") == acao for p in user.get("permissions") or [])


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "nome": user.get("nome"),
        "roles": user.get("roles") or [],
        "permissions": user.get("permissions") or [],
    }

# =============================================================================
# Audit
# =============================================================================

def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


def log_audit(usuario_id, acao: str, recurso: str, recurso_id=None,
              dados_anteriores=None, dados_novos=None, request: Optional[Request] = None) -> None:
    """Best effort: a failed audit write is logged and never fails the request."""
    try:
        with with_db_cursor() as (conn, cur):
            cur.execute(
                """
                INSERT INTO financeiro.audit_log
                  (usuario_id, acao, recurso, recurso_id, dados_anteriores, dados_novos, ip_address, user_agent)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    usuario_id,
                    acao,
                    recurso,
                    str(recurso_id) if recurso_id is not None else None,
                    Jsonb(dados_anteriores, dumps=_json_dumps) if dados_anteriores is not None else None,
                    Jsonb(dados_novos, dumps=_json_dumps) if dados_novos is not None else None,
                    client_ip(request),
                    request.headers.get("user-agent") if request is not None else None,
                ),
            )
            conn.commit()
    except Exception:
        logger.exception("audit log write failed (%s %s %s)", acao, recurso, recurso_id)

# =============================================================================
# Dependencies
# =============================================================================

def _token_from_request(request: Request, creds: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if creds is not None and creds.credentials:
        return creds.credentials
    return request.cookies.get(COOKIE_NAME)


def current_user(request: Request, creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Dict[str, Any]:
    token = _token_from_request(request, creds)
    if not token:
        raise HTTPException(status_code=401, detail="Token não fornecido")

    payload = decode_token(token)
    user_id = payload.get("userId") or payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token inválido")

    user = get_user_with_permissions(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Usuário não encontrado")
    if not user.get("ativo"):
        raise HTTPException(status_code=403, detail="Usuário desativado")

    user["tenantId"] = payload.get("tenantId")
    return user


def tenant_id(user: Dict[str, Any] = Depends(current_user)) -> str:
    tid = user.get("tenantId")
    if not tid:
        raise HTTPException(status_code=400, detail="Selecione um workspace primeiro")
    return tid


def module_tenant_id(user: Dict[str, Any] = Depends(current_user)) -> str:
    """Tenant for the estoque/equipamentos modules, which answer 401 instead of 400."""
    tid = user.get("tenantId")
    if not tid:
        raise HTTPException(status_code=401, detail="Tenant não identificado")
    return tid


def require_permission(recurso: str, acao: str):
    def _dep(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
        if not has_permission(user, recurso, acao):
            raise HTTPException(status_code=403, detail=f"Sem permissão para {acao} {recurso}")
        return user
    return _dep


def require_role(min_level: int):
    def _dep(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
        if max_level(user) < min_level:
            raise HTTPException(status_code=403, detail="Nível de acesso insuficiente")
        return user
    return _dep
