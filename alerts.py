# alerts.py
import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from dates import format_br, parse_ymd
from db import query_db, transaction
from errors import NotFound

logger = logging.getLogger(__name__)


def build_alerts(recorrencias: Iterable[Dict[str, Any]], faturas: Iterable[Dict[str, Any]],
                 produtos: Iterable[Dict[str, Any]], today: date, dias: int = 7) -> List[Dict[str, Any]]:
    """Turn candidate rows into alert dicts keyed by a stable `referencia`."""
    out = []

    for r in recorrencias:
        antes = r.get("alerta_dias_antes")
        proxima = parse_ymd(r.get("proxima_ocorrencia"))
        if antes is None or proxima is None or r.get("is_paused"):
            continue
        if not (today <= proxima <= today + timedelta(days=int(antes))):
            continue
        out.append({
            "tipo": "recorrencia",
            "referencia": f"recorrencia:{r['id']}:{proxima.isoformat()}",
            "titulo": f"{r['descricao']} vence em {format_br(proxima)}",
            "mensagem": f"Valor previsto: {r['valor']}",
            "data_alvo": proxima,
        })

    for f in faturas:
        venc = parse_ymd(f.get("data_vencimento"))
        if venc is None or f.get("status") == "paga":
            continue
        if not (today <= venc <= today + timedelta(days=dias)):
            continue
        valor = f.get("valor_fechado") if f.get("valor_fechado") is not None else f.get("total_itens")
        out.append({
            "tipo": "fatura",
            "referencia": f"fatura:{f['id']}",
            "titulo": f"Fatura {f.get('cartao_apelido') or ''} vence em {format_br(venc)}".replace("  ", " "),
            "mensagem": f"Status: {f.get('status')} | Valor: {valor}",
            "data_alvo": venc,
        })

    for p in produtos:
        # estoque_minimo 0 means no minimum configured
        minimo = p.get("estoque_minimo") or 0
        if minimo <= 0 or (p.get("quantidade_disponivel") or 0) > minimo:
            continue
        out.append({
            "tipo": "estoque",
            "referencia": f"produto:{p['id']}",
            "titulo": f"Estoque baixo: {p['nome']} ({p['sku']})",
            "mensagem": f"Disponível {p.get('quantidade_disponivel')} / mínimo {minimo}",
            "data_alvo": today,
        })

    return out


def _candidates(tenant_id: str, today: date, dias: int):
    recs = query_db(
        """
        SELECT id, descricao, valor, proxima_ocorrencia, alerta_dias_antes, is_paused
        FROM financeiro.recorrencia
        WHERE tenant_id = %s AND is_paused = FALSE AND alerta_dias_antes IS NOT NULL
        """,
        (tenant_id,),
    )
    faturas = query_db(
        """
        SELECT f.id, f.status, f.data_vencimento, f.valor_fechado, c.apelido AS cartao_apelido,
               COALESCE((SELECT SUM(fi.valor) FROM financeiro.fatura_item fi
                         WHERE fi.fatura_id = f.id AND fi.is_deleted = FALSE), 0) AS total_itens
        FROM financeiro.fatura f
        LEFT JOIN financeiro.cartao c ON f.cartao_id = c.id
        WHERE f.tenant_id = %s AND f.status <> 'paga'
          AND f.data_vencimento BETWEEN %s AND %s
        """,
        (tenant_id, today, today + timedelta(days=dias)),
    )
    produtos = query_db(
        """
        SELECT id, sku, nome, quantidade_disponivel, estoque_minimo
        FROM estoque.produto
        WHERE tenant_id = %s AND is_deleted = FALSE AND is_ativo = TRUE
          AND estoque_minimo > 0 AND quantidade_disponivel <= estoque_minimo
        """,
        (tenant_id,),
    )
    return recs, faturas, produtos


def refresh_alerts(tenant_id: str, dias: int = 7, today: Optional[date] = None) -> int:
    today = today or date.today()
    alerts = build_alerts(*_candidates(tenant_id, today, dias), today=today, dias=dias)
    novos = 0
    with transaction() as cur:
        for a in alerts:
            cur.execute(
                """
                INSERT INTO financeiro.alerta (tenant_id, tipo, referencia, titulo, mensagem, data_alvo)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, referencia) DO NOTHING
                """,
                (tenant_id, a["tipo"], a["referencia"], a["titulo"], a["mensagem"], a["data_alvo"]),
            )
            novos += cur.rowcount or 0
    if novos:
        logger.info("tenant %s: %s new alerts", tenant_id, novos)
    return novos


def list_alerts(tenant_id: str, include_read: bool = False) -> List[Dict[str, Any]]:
    return query_db(
        f"""
        SELECT id, tipo, referencia, titulo, mensagem, data_alvo, lida, created_at
        FROM financeiro.alerta
        WHERE tenant_id = %s {'' if include_read else 'AND lida = FALSE'}
        ORDER BY data_alvo ASC NULLS LAST, created_at DESC
        """,
        (tenant_id,),
    )


def mark_read(tenant_id: str, alerta_id) -> Dict[str, Any]:
    with transaction() as cur:
        cur.execute(
            "UPDATE financeiro.alerta SET lida = TRUE WHERE id = %s AND tenant_id = %s RETURNING *",
            (alerta_id, tenant_id),
        )
        row = cur.fetchone()
    if not row:
        raise NotFound("Alerta não encontrado")
    return row
