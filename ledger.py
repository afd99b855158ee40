# ledger.py
import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dates import add_months, mes_referencia, parse_ymd
from db import query_db
from recurring import occurrences_between

logger = logging.getLogger(__name__)

CARTAO_GRUPO = "Cartão de Crédito"
SEM_CATEGORIA = "Sem categoria"

# =============================================================================
# Balances
# =============================================================================

def account_balances(tenant_id: str) -> List[Dict[str, Any]]:
    """saldo_atual = saldo_inicial + settled inflows - settled outflows (transfers count on both ends)."""
    return query_db(
        """
        SELECT c.id, c.nome, c.tipo, c.saldo_inicial,
               c.saldo_inicial
                 + COALESCE(SUM(CASE
                     WHEN t.tipo = 'credito' AND t.conta_id = c.id THEN t.valor
                     WHEN t.tipo = 'transferencia' AND t.conta_destino_id = c.id THEN t.valor
                     ELSE 0 END), 0)
                 - COALESCE(SUM(CASE
                     WHEN t.tipo IN ('debito', 'transferencia') AND t.conta_id = c.id THEN t.valor
                     ELSE 0 END), 0) AS saldo_atual
        FROM financeiro.conta c
        LEFT JOIN financeiro.transacao t
          ON t.tenant_id = c.tenant_id
         AND t.status = 'liquidado'
         AND (t.conta_id = c.id OR t.conta_destino_id = c.id)
        WHERE c.tenant_id = %s
        GROUP BY c.id, c.nome, c.tipo, c.saldo_inicial
        ORDER BY c.nome
        """,
        (tenant_id,),
    )


def cash_flow_30d(tenant_id: str) -> List[Dict[str, Any]]:
    return query_db(
        """
        SELECT TO_CHAR(data_transacao, 'YYYY-MM-DD') AS dia,
               SUM(CASE WHEN tipo = 'credito' THEN valor ELSE 0 END) AS entradas,
               SUM(CASE WHEN tipo = 'debito' THEN valor ELSE 0 END) AS saidas
        FROM financeiro.transacao
        WHERE tenant_id = %s
          AND data_transacao >= CURRENT_DATE
          AND data_transacao < CURRENT_DATE + INTERVAL '30 days'
        GROUP BY data_transacao
        ORDER BY data_transacao
        """,
        (tenant_id,),
    )

# =============================================================================
# Monthly projection
# =============================================================================

def month_keys(start: date, months: int) -> List[str]:
    first = date(start.year, start.month, 1)
    return [mes_referencia(add_months(first, i)) for i in range(months)]


def build_projection(meses: List[str], lancamentos: Iterable[Tuple[str, str, str, Any]]) -> Dict[str, Any]:
    """
    lancamentos: (mes 'YYYY-MM', tipo 'credito'|'debito', grupo, valor).
    Entries outside `meses` are ignored.
    """
    idx = set(meses)
    receitas = defaultdict(lambda: defaultdict(Decimal))
    despesas = defaultdict(lambda: defaultdict(Decimal))

    for mes, tipo, grupo, valor in lancamentos:
        if mes not in idx:
            continue
        bucket = receitas if tipo == "credito" else despesas if tipo == "debito" else None
        if bucket is None:
            continue
        bucket[grupo or SEM_CATEGORIA][mes] += Decimal(str(valor or 0))

    def _rows(bucket):
        out = []
        for grupo in sorted(bucket):
            valores = {m: float(bucket[grupo].get(m, 0)) for m in meses}
            out.append({"categoria": grupo, "valores": valores, "total": round(sum(valores.values()), 2)})
        return out

    totais_receitas = {m: float(sum(b.get(m, 0) for b in receitas.values())) for m in meses}
    totais_despesas = {m: float(sum(b.get(m, 0) for b in despesas.values())) for m in meses}

    resultado_mensal = {}
    resultado_acumulado = {}
    running = 0.0
    for m in meses:
        resultado_mensal[m] = round(totais_receitas[m] - totais_despesas[m], 2)
        running = round(running + resultado_mensal[m], 2)
        resultado_acumulado[m] = running

    return {
        "meses": meses,
        "receitas": _rows(receitas),
        "despesas": _rows(despesas),
        "totaisReceitas": totais_receitas,
        "totaisDespesas": totais_despesas,
        "resultadoMensal": resultado_mensal,
        "resultadoAcumulado": resultado_acumulado,
    }


def _transacoes_in_window(tenant_id: str, start: date, end: date):
    return query_db(
        """
        SELECT COALESCE(t.mes_referencia, TO_CHAR(t.data_transacao, 'YYYY-MM')) AS mes,
               t.tipo, t.valor,
               COALESCE(parent.nome, cat.nome) AS grupo
        FROM financeiro.transacao t
        LEFT JOIN financeiro.categoria cat ON t.categoria_id = cat.id
        LEFT JOIN financeiro.categoria parent ON cat.parent_id = parent.id
        WHERE t.tenant_id = %s
          AND t.tipo IN ('credito', 'debito')
          AND t.data_transacao BETWEEN %s AND %s
        """,
        (tenant_id, start, end),
    )


def _pending_recurrences(tenant_id: str, start: date, end: date):
    recs = query_db(
        """
        SELECT r.*, COALESCE(parent.nome, cat.nome) AS grupo
        FROM financeiro.recorrencia r
        LEFT JOIN financeiro.categoria cat ON r.categoria_id = cat.id
        LEFT JOIN financeiro.categoria parent ON cat.parent_id = parent.id
        WHERE r.tenant_id = %s AND r.is_paused = FALSE
          AND r.data_inicio <= %s
          AND (r.data_fim IS NULL OR r.data_fim >= %s)
        """,
        (tenant_id, end, start),
    )
    done = {
        (str(r["recorrencia_id"]), parse_ymd(r["data_transacao"]))
        for r in query_db(
            """
            SELECT recorrencia_id, data_transacao
            FROM financeiro.transacao
            WHERE tenant_id = %s AND recorrencia_id IS NOT NULL
              AND data_transacao BETWEEN %s AND %s
            """,
            (tenant_id, start, end),
        )
    }
    out = []
    for rec in recs:
        tipo = {"receita": "credito", "despesa": "debito"}.get(rec["tipo"], rec["tipo"])
        for d in occurrences_between(rec, start, end):
            if (str(rec["id"]), d) in done:
                continue
            out.append((mes_referencia(d), tipo, rec.get("grupo"), rec["valor"]))
    return out


def _closed_unpaid_invoices(tenant_id: str, start: date, end: date):
    rows = query_db(
        """
        SELECT data_vencimento, COALESCE(valor_fechado, 0) AS valor
        FROM financeiro.fatura
        WHERE tenant_id = %s AND status = 'fechada'
          AND data_vencimento BETWEEN %s AND %s
        """,
        (tenant_id, start, end),
    )
    return [(mes_referencia(r["data_vencimento"]), "debito", CARTAO_GRUPO, r["valor"]) for r in rows]


def monthly_projection(tenant_id: str, months: int = 12, start: Optional[date] = None) -> Dict[str, Any]:
    start = start or date.today()
    first = date(start.year, start.month, 1)
    end = add_months(first, months) - timedelta(days=1)
    meses = month_keys(first, months)

    lancamentos = [(r["mes"], r["tipo"], r.get("grupo"), r["valor"]) for r in _transacoes_in_window(tenant_id, first, end)]
    lancamentos += _pending_recurrences(tenant_id, first, end)
    lancamentos += _closed_unpaid_invoices(tenant_id, first, end)
    return build_projection(meses, lancamentos)
