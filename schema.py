# schema.py
"""
Idempotent DDL for the three module schemas (financeiro, estoque, equipamentos)
plus the role/permission seed. Run once at startup, safe to re-run.
"""
import logging

from db import with_db_cursor

logger = logging.getLogger(__name__)

# =============================================================================
# Auth / workspaces
# =============================================================================

_AUTH_DDL = [
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",
    "CREATE SCHEMA IF NOT EXISTS financeiro",
    "CREATE SCHEMA IF NOT EXISTS estoque",
    "CREATE SCHEMA IF NOT EXISTS equipamentos",
    """
    CREATE TABLE IF NOT EXISTS financeiro.usuario (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      email TEXT NOT NULL UNIQUE,
      senha_hash TEXT NOT NULL,
      nome TEXT NOT NULL,
      ativo BOOLEAN NOT NULL DEFAULT TRUE,
      email_verificado BOOLEAN NOT NULL DEFAULT FALSE,
      ultimo_acesso TIMESTAMPTZ,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.role (
      id SERIAL PRIMARY KEY,
      nome TEXT NOT NULL UNIQUE,
      descricao TEXT,
      nivel_acesso INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.permission (
      id SERIAL PRIMARY KEY,
      recurso TEXT NOT NULL,
      acao TEXT NOT NULL,
      descricao TEXT,
      UNIQUE (recurso, acao)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.role_permission (
      role_id INTEGER NOT NULL REFERENCES financeiro.role(id) ON DELETE CASCADE,
      permission_id INTEGER NOT NULL REFERENCES financeiro.permission(id) ON DELETE CASCADE,
      PRIMARY KEY (role_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.user_role (
      usuario_id UUID NOT NULL REFERENCES financeiro.usuario(id) ON DELETE CASCADE,
      role_id INTEGER NOT NULL REFERENCES financeiro.role(id) ON DELETE CASCADE,
      PRIMARY KEY (usuario_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.workspace (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL UNIQUE,
      nome TEXT NOT NULL,
      descricao TEXT,
      cor TEXT NOT NULL DEFAULT 'blue',
      icone TEXT NOT NULL DEFAULT 'briefcase',
      ativo BOOLEAN NOT NULL DEFAULT TRUE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.user_workspace (
      usuario_id UUID NOT NULL REFERENCES financeiro.usuario(id) ON DELETE CASCADE,
      workspace_id UUID NOT NULL REFERENCES financeiro.workspace(id) ON DELETE CASCADE,
      padrao BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      PRIMARY KEY (usuario_id, workspace_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.audit_log (
      id BIGSERIAL PRIMARY KEY,
      usuario_id UUID,
      acao TEXT NOT NULL,
      recurso TEXT NOT NULL,
      recurso_id TEXT,
      dados_anteriores JSONB,
      dados_novos JSONB,
      ip_address TEXT,
      user_agent TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_created ON financeiro.audit_log (created_at DESC)",
]

# =============================================================================
# Ledger
# =============================================================================

_LEDGER_DDL = [
    """
    CREATE TABLE IF NOT EXISTS financeiro.conta (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      nome TEXT NOT NULL,
      tipo TEXT NOT NULL,
      saldo_inicial NUMERIC(14,2) NOT NULL DEFAULT 0,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.categoria (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      nome TEXT NOT NULL,
      tipo TEXT NOT NULL CHECK (tipo IN ('receita', 'despesa', 'transferencia')),
      parent_id UUID REFERENCES financeiro.categoria(id),
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.cartao (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      apelido TEXT NOT NULL,
      bandeira TEXT,
      limite_total NUMERIC(14,2),
      dia_fechamento INTEGER NOT NULL CHECK (dia_fechamento BETWEEN 1 AND 31),
      dia_vencimento INTEGER NOT NULL CHECK (dia_vencimento BETWEEN 1 AND 31),
      conta_pagamento_id UUID REFERENCES financeiro.conta(id),
      is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.recorrencia (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      conta_id UUID NOT NULL REFERENCES financeiro.conta(id),
      categoria_id UUID NOT NULL REFERENCES financeiro.categoria(id),
      tipo TEXT NOT NULL,
      valor NUMERIC(14,2) NOT NULL,
      descricao TEXT NOT NULL,
      frequencia TEXT NOT NULL CHECK (frequencia IN ('diario', 'semanal', 'quinzenal', 'mensal', 'anual')),
      dia_vencimento INTEGER CHECK (dia_vencimento BETWEEN 1 AND 31),
      data_inicio DATE NOT NULL,
      data_fim DATE,
      proxima_ocorrencia DATE,
      is_paused BOOLEAN NOT NULL DEFAULT FALSE,
      alerta_dias_antes INTEGER,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      CHECK (data_fim IS NULL OR data_fim >= data_inicio)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.transacao (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      tipo TEXT NOT NULL CHECK (tipo IN ('credito', 'debito', 'transferencia')),
      valor NUMERIC(14,2) NOT NULL CHECK (valor > 0),
      descricao TEXT NOT NULL,
      data_transacao DATE NOT NULL DEFAULT CURRENT_DATE,
      conta_id UUID NOT NULL REFERENCES financeiro.conta(id),
      conta_destino_id UUID REFERENCES financeiro.conta(id),
      categoria_id UUID REFERENCES financeiro.categoria(id),
      recorrencia_id UUID REFERENCES financeiro.recorrencia(id) ON DELETE SET NULL,
      origem TEXT NOT NULL DEFAULT 'manual',
      status TEXT NOT NULL DEFAULT 'previsto' CHECK (status IN ('previsto', 'liquidado')),
      referencia TEXT,
      mes_referencia TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transacao_tenant_data ON financeiro.transacao (tenant_id, data_transacao DESC)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_transacao_recorrencia_dia
    ON financeiro.transacao (recorrencia_id, data_transacao)
    WHERE recorrencia_id IS NOT NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.fatura (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      cartao_id UUID NOT NULL REFERENCES financeiro.cartao(id),
      competencia DATE NOT NULL,
      data_fechamento DATE,
      data_vencimento DATE NOT NULL,
      valor_fechado NUMERIC(14,2),
      valor_pago NUMERIC(14,2),
      data_pagamento DATE,
      status TEXT NOT NULL DEFAULT 'aberta' CHECK (status IN ('aberta', 'fechada', 'paga')),
      transacao_id UUID REFERENCES financeiro.transacao(id) ON DELETE SET NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      UNIQUE (tenant_id, cartao_id, competencia)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS financeiro.fatura_item (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      fatura_id UUID NOT NULL REFERENCES financeiro.fatura(id),
      cartao_id UUID REFERENCES financeiro.cartao(id),
      categoria_id UUID REFERENCES financeiro.categoria(id),
      compra_id UUID,
      descricao TEXT NOT NULL,
      valor NUMERIC(14,2) NOT NULL CHECK (valor > 0),
      data_compra DATE NOT NULL,
      parcela_numero INTEGER NOT NULL DEFAULT 1,
      parcela_total INTEGER NOT NULL DEFAULT 1,
      competencia DATE,
      is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      CHECK (parcela_numero >= 1 AND parcela_total >= 1 AND parcela_numero <= parcela_total)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fatura_item_fatura ON financeiro.fatura_item (fatura_id) WHERE is_deleted = FALSE",
    "CREATE INDEX IF NOT EXISTS idx_fatura_item_compra ON financeiro.fatura_item (compra_id)",
    """
    CREATE TABLE IF NOT EXISTS financeiro.alerta (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      tipo TEXT NOT NULL,
      referencia TEXT NOT NULL,
      titulo TEXT NOT NULL,
      mensagem TEXT,
      data_alvo DATE,
      lida BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      UNIQUE (tenant_id, referencia)
    )
    """,
]

# =============================================================================
# Estoque / equipamentos
# =============================================================================

_MODULES_DDL = [
    """
    CREATE TABLE IF NOT EXISTS estoque.produto (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      sku TEXT NOT NULL,
      nome TEXT NOT NULL,
      categoria TEXT,
      preco_venda NUMERIC(14,2),
      preco_custo NUMERIC(14,2),
      quantidade_disponivel NUMERIC(14,3) NOT NULL DEFAULT 0,
      quantidade_reservada NUMERIC(14,3) NOT NULL DEFAULT 0,
      estoque_minimo NUMERIC(14,3) NOT NULL DEFAULT 0,
      is_ativo BOOLEAN NOT NULL DEFAULT TRUE,
      is_kit BOOLEAN NOT NULL DEFAULT FALSE,
      variante TEXT,
      imagem_url TEXT,
      is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      UNIQUE (tenant_id, sku)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS equipamentos.equipamento (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      tenant_id TEXT NOT NULL,
      nome TEXT NOT NULL,
      tipo TEXT NOT NULL,
      marca TEXT,
      modelo TEXT,
      numero_serie TEXT,
      patrimonio TEXT,
      data_aquisicao DATE,
      valor_aquisicao NUMERIC(14,2),
      vida_util_anos INTEGER NOT NULL DEFAULT 5,
      localizacao TEXT,
      status TEXT NOT NULL DEFAULT 'ativo',
      observacoes TEXT,
      is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]

# =============================================================================
# Seed: roles + permissions
# =============================================================================

ROLES = [
    # (nome, descricao, nivel_acesso)
    ("SUPER_ADMIN", "Acesso total", 999),
    ("ADMIN", "Administrador do workspace", 100),
    ("USER", "Usuário padrão", 10),
    ("VIEWER", "Somente leitura", 1),
]

RECURSOS = ["usuario", "conta", "categoria", "transacao", "cartao", "fatura",
            "recorrencia", "produto", "equipamento", "auditoria"]
ACOES = ["create", "read", "update", "delete"]


def _grants_for(role: str):
    if role in ("SUPER_ADMIN", "ADMIN"):
        return [(r, a) for r in RECURSOS for a in ACOES]
    if role == "USER":
        return [(r, a) for r in RECURSOS if r not in ("usuario", "auditoria") for a in ACOES]
    return [(r, "read") for r in RECURSOS if r not in ("usuario", "auditoria")]


def _seed_roles(cur):
    for nome, descricao, nivel in ROLES:
        cur.execute(
            """
            INSERT INTO financeiro.role (nome, descricao, nivel_acesso)
            VALUES (%s, %s, %s)
            ON CONFLICT (nome) DO NOTHING
            """,
            (nome, descricao, nivel),
        )
    for recurso in RECURSOS:
        for acao in ACOES:
            cur.execute(
                """
                INSERT INTO financeiro.permission (recurso, acao)
                VALUES (%s, %s)
                ON CONFLICT (recurso, acao) DO NOTHING
                """,
                (recurso, acao),
            )
    for nome, _, _ in ROLES:
        for recurso, acao in _grants_for(nome):
            cur.execute(
                """
                INSERT INTO financeiro.role_permission (role_id, permission_id)
                SELECT r.id, p.id
                FROM financeiro.role r, financeiro.permission p
                WHERE r.nome = %s AND p.recurso = %s AND p.acao = %s
                ON CONFLICT DO NOTHING
                """,
                (nome, recurso, acao),
            )


def ensure_schema():
    with with_db_cursor() as (conn, cur):
        try:
            for stmt in _AUTH_DDL + _LEDGER_DDL + _MODULES_DDL:
                cur.execute(stmt)
            _seed_roles(cur)
            conn.commit()
        except Exception:
            conn.rollback()
            logger.exception("schema bootstrap failed")
            raise
    logger.info("schema ready")
