# routes/admin.py
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from auth import create_user, current_user, log_audit, require_permission, require_role, SUPER_ADMIN_LEVEL
from db import query_db, query_one, transaction
from routes.sessao import user_workspaces, validate_new_user

router = APIRouter(prefix="/api", tags=["admin"])

TENANT_ID_RE = re.compile(r"^[a-z0-9_-]+$")


class UsuarioCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    nome: Optional[str] = None
    roles: Optional[List[str]] = None


class UsuarioUpdate(BaseModel):
    nome: Optional[str] = None
    ativo: Optional[bool] = None
    email_verificado: Optional[bool] = None


class RoleIds(BaseModel):
    roleIds: Optional[List[int]] = None


class WorkspaceIds(BaseModel):
    workspaceIds: Optional[List[str]] = None


class WorkspaceCreate(BaseModel):
    tenant_id: Optional[str] = None
    nome: Optional[str] = None
    descricao: Optional[str] = None
    cor: Optional[str] = None
    icone: Optional[str] = None


class WorkspaceUpdate(BaseModel):
    nome: Optional[str] = None
    descricao: Optional[str] = None
    cor: Optional[str] = None
    icone: Optional[str] = None
    ativo: Optional[bool] = None


class WorkspaceMember(BaseModel):
    usuario_id: Optional[str] = None
    padrao: bool = False

# =============================================================================
# Usuarios
# =============================================================================

@router.get("/usuarios")
def list_usuarios(user: Dict[str, Any] = Depends(require_permission("usuario", "read"))):
    rows = query_db(
        """
        SELECT u.id, u.email, u.nome, u.ativo, u.email_verificado, u.ultimo_acesso, u.created_at,
               COALESCE(
                 json_agg(json_build_object('id', r.id, 'nome', r.nome, 'nivel_acesso', r.nivel_acesso))
                 FILTER (WHERE r.id IS NOT NULL), '[]'
               ) AS roles
        FROM financeiro.usuario u
        LEFT JOIN financeiro.user_role ur ON u.id = ur.usuario_id
        LEFT JOIN financeiro.role r ON ur.role_id = r.id
        GROUP BY u.id, u.email, u.nome, u.ativo, u.email_verificado, u.ultimo_acesso, u.created_at
        ORDER BY u.created_at DESC
        """
    )
    return {"success": True, "data": rows}


@router.post("/usuarios", status_code=201)
def create_usuario(payload: UsuarioCreate, request: Request,
                   user: Dict[str, Any] = Depends(require_permission("usuario", "create"))):
    validate_new_user(payload.email, payload.password, payload.nome)
    created = create_user(payload.email, payload.password, payload.nome, payload.roles or ["USER"])
    log_audit(user["id"], "create", "usuario", created["id"], None,
              {"email": payload.email, "nome": payload.nome, "roles": payload.roles}, request)
    return {"success": True, "user": {"id": created["id"], "email": created["email"], "nome": created["nome"]}}


@router.put("/usuarios/{usuario_id}")
def update_usuario(usuario_id: str, payload: UsuarioUpdate, request: Request,
                   user: Dict[str, Any] = Depends(require_permission("usuario", "update"))):
    old = query_one(
        "SELECT id, email, nome, ativo, email_verificado FROM financeiro.usuario WHERE id = %s",
        (usuario_id,),
    )
    if not old:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    with transaction() as cur:
        cur.execute(
            """
            UPDATE financeiro.usuario
            SET nome = COALESCE(%s, nome),
                ativo = COALESCE(%s, ativo),
                email_verificado = COALESCE(%s, email_verificado),
                updated_at = NOW()
            WHERE id = %s
            RETURNING id, email, nome, ativo, email_verificado
            """,
            (payload.nome, payload.ativo, payload.email_verificado, usuario_id),
        )
        updated = cur.fetchone()

    log_audit(user["id"], "update", "usuario", usuario_id, old, updated, request)
    return {"success": True, "data": updated}


@router.delete("/usuarios/{usuario_id}")
def delete_usuario(usuario_id: str, request: Request,
                   user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    old = query_one(
        "SELECT id, email, nome, ativo, email_verificado FROM financeiro.usuario WHERE id = %s",
        (usuario_id,),
    )
    if not old:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    with transaction() as cur:
        cur.execute("DELETE FROM financeiro.usuario WHERE id = %s", (usuario_id,))

    log_audit(user["id"], "delete", "usuario", usuario_id, old, None, request)
    return {"success": True, "message": "Usuário deletado com sucesso"}


@router.post("/usuarios/{usuario_id}/roles")
def set_usuario_roles(usuario_id: str, payload: RoleIds, request: Request,
                      user: Dict[str, Any] = Depends(require_permission("usuario", "update"))):
    if payload.roleIds is None:
        raise HTTPException(status_code=400, detail="roleIds deve ser um array")

    with transaction() as cur:
        cur.execute("DELETE FROM financeiro.user_role WHERE usuario_id = %s", (usuario_id,))
        for role_id in payload.roleIds:
            cur.execute(
                "INSERT INTO financeiro.user_role (usuario_id, role_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                (usuario_id, role_id),
            )

    log_audit(user["id"], "update_roles", "usuario", usuario_id, None, {"roleIds": payload.roleIds}, request)
    return {"success": True, "message": "Roles atualizadas com sucesso"}


@router.get("/usuarios/{usuario_id}/workspaces")
def get_usuario_workspaces(usuario_id: str, user: Dict[str, Any] = Depends(require_permission("usuario", "read"))):
    return {"success": True, "workspaces": user_workspaces(usuario_id)}


@router.post("/usuarios/{usuario_id}/workspaces")
def set_usuario_workspaces(usuario_id: str, payload: WorkspaceIds, request: Request,
                           user: Dict[str, Any] = Depends(require_permission("usuario", "update"))):
    if payload.workspaceIds is None:
        raise HTTPException(status_code=400, detail="workspaceIds deve ser um array")

    with transaction() as cur:
        cur.execute("DELETE FROM financeiro.user_workspace WHERE usuario_id = %s", (usuario_id,))
        for i, workspace_id in enumerate(payload.workspaceIds):
            # first one is the default workspace
            cur.execute(
                """
                INSERT INTO financeiro.user_workspace (usuario_id, workspace_id, padrao)
                VALUES (%s, %s, %s)
                ON CONFLICT DO NOTHING
                """,
                (usuario_id, workspace_id, i == 0),
            )

    log_audit(user["id"], "update_workspaces", "usuario", usuario_id, None,
              {"workspaceIds": payload.workspaceIds}, request)
    return {"success": True, "message": "Workspaces atualizados com sucesso"}

# =============================================================================
# Workspaces
# =============================================================================

@router.get("/workspaces/all")
def list_all_workspaces(user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    return {"success": True, "data": query_db("SELECT * FROM financeiro.workspace ORDER BY nome")}


@router.post("/workspaces")
def create_workspace(payload: WorkspaceCreate, request: Request,
                     user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    if not payload.tenant_id or not payload.nome:
        raise HTTPException(status_code=400, detail="tenant_id e nome são obrigatórios")
    if not TENANT_ID_RE.match(payload.tenant_id):
        raise HTTPException(
            status_code=400,
            detail="tenant_id deve conter apenas letras minúsculas, números, hífen ou underscore",
        )
    if query_one("SELECT id FROM financeiro.workspace WHERE tenant_id = %s", (payload.tenant_id,)):
        raise HTTPException(status_code=409, detail="Já existe um workspace com este tenant_id")

    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO financeiro.workspace (tenant_id, nome, descricao, cor, icone, ativo)
            VALUES (%s, %s, %s, %s, %s, TRUE)
            RETURNING *
            """,
            (payload.tenant_id, payload.nome, payload.descricao, payload.cor or "blue", payload.icone or "briefcase"),
        )
        workspace = cur.fetchone()
        # creator gets access right away
        cur.execute(
            """
            INSERT INTO financeiro.user_workspace (usuario_id, workspace_id, padrao)
            VALUES (%s, %s, FALSE)
            ON CONFLICT (usuario_id, workspace_id) DO NOTHING
            """,
            (user["id"], workspace["id"]),
        )

    log_audit(user["id"], "create", "workspace", workspace["id"], None, workspace, request)
    return {"success": True, "data": workspace}


@router.put("/workspaces/{workspace_id}")
def update_workspace(workspace_id: str, payload: WorkspaceUpdate,
                     user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    with transaction() as cur:
        cur.execute(
            """
            UPDATE financeiro.workspace
            SET nome = COALESCE(%s, nome),
                descricao = COALESCE(%s, descricao),
                cor = COALESCE(%s, cor),
                icone = COALESCE(%s, icone),
                ativo = COALESCE(%s, ativo),
                updated_at = NOW()
            WHERE id = %s
            RETURNING *
            """,
            (payload.nome, payload.descricao, payload.cor, payload.icone, payload.ativo, workspace_id),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Workspace não encontrado")
    return {"success": True, "data": row}


@router.delete("/workspaces/{workspace_id}")
def delete_workspace(workspace_id: str, user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    with transaction() as cur:
        cur.execute(
            "SELECT COUNT(*)::int AS n FROM financeiro.user_workspace WHERE workspace_id = %s",
            (workspace_id,),
        )
        if cur.fetchone()["n"] > 0:
            raise HTTPException(
                status_code=400,
                detail="Não é possível excluir workspace com usuários atribuídos. Remova os usuários primeiro.",
            )
        cur.execute("DELETE FROM financeiro.workspace WHERE id = %s RETURNING id", (workspace_id,))
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Workspace não encontrado")
    return {"success": True, "message": "Workspace excluído com sucesso"}


@router.get("/workspaces/{workspace_id}/users")
def workspace_users(workspace_id: str, user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    rows = query_db(
        """
        SELECT u.id, u.nome, u.email, uw.padrao, uw.created_at AS acesso_desde
        FROM financeiro.usuario u
        JOIN financeiro.user_workspace uw ON u.id = uw.usuario_id
        WHERE uw.workspace_id = %s
        ORDER BY u.nome
        """,
        (workspace_id,),
    )
    return {"success": True, "data": rows}


@router.post("/workspaces/{workspace_id}/users")
def add_workspace_user(workspace_id: str, payload: WorkspaceMember,
                       user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    if not payload.usuario_id:
        raise HTTPException(status_code=400, detail="usuario_id é obrigatório")
    if not query_one("SELECT id FROM financeiro.workspace WHERE id = %s", (workspace_id,)):
        raise HTTPException(status_code=404, detail="Workspace não encontrado")
    if not query_one("SELECT id FROM financeiro.usuario WHERE id = %s", (payload.usuario_id,)):
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    with transaction() as cur:
        cur.execute(
            """
            INSERT INTO financeiro.user_workspace (usuario_id, workspace_id, padrao)
            VALUES (%s, %s, %s)
            ON CONFLICT (usuario_id, workspace_id) DO UPDATE SET padrao = EXCLUDED.padrao
            """,
            (payload.usuario_id, workspace_id, payload.padrao),
        )
    return {"success": True, "message": "Usuário adicionado ao workspace com sucesso"}


@router.delete("/workspaces/{workspace_id}/users/{usuario_id}")
def remove_workspace_user(workspace_id: str, usuario_id: str,
                          user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    with transaction() as cur:
        cur.execute(
            "DELETE FROM financeiro.user_workspace WHERE workspace_id = %s AND usuario_id = %s RETURNING usuario_id",
            (workspace_id, usuario_id),
        )
        row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Permissão não encontrada")
    return {"success": True, "message": "Usuário removido do workspace com sucesso"}


@router.get("/users/all")
def all_users(user: Dict[str, Any] = Depends(require_role(SUPER_ADMIN_LEVEL))):
    return {"success": True, "data": query_db("SELECT id, nome, email FROM financeiro.usuario ORDER BY nome")}

# =============================================================================
# Roles / permissions / audit
# =============================================================================

@router.get("/roles")
def list_roles(user: Dict[str, Any] = Depends(current_user)):
    return {"success": True, "data": query_db("SELECT * FROM financeiro.role ORDER BY nivel_acesso DESC")}


@router.get("/permissions")
def list_permissions(user: Dict[str, Any] = Depends(require_role(100))):
    return {"success": True, "data": query_db("SELECT * FROM financeiro.permission ORDER BY recurso, acao")}


@router.get("/audit-logs")
def audit_logs(limit: int = Query(100, ge=1, le=1000), offset: int = Query(0, ge=0),
               user: Dict[str, Any] = Depends(require_permission("auditoria", "read"))):
    rows = query_db(
        """
        SELECT a.*, u.email AS usuario_email, u.nome AS usuario_nome
        FROM financeiro.audit_log a
        LEFT JOIN financeiro.usuario u ON a.usuario_id = u.id
        ORDER BY a.created_at DESC
        LIMIT %s OFFSET %s
        """,
        (limit, offset),
    )
    return {"success": True, "data": rows}
