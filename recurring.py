# recurring.py
import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterator, List, Optional

from dates import add_months, parse_ymd, with_day, mes_referencia
from db import query_db, transaction
from errors import InvalidState

logger = logging.getLogger(__name__)

FREQUENCIAS = ("diario", "semanal", "quinzenal", "mensal", "anual")
# receita/despesa are category kinds, mapped to credito/debito when generated
TIPOS = ("credito", "debito", "receita", "despesa")

_DAY_STEPS = {
    "diario": 1,
    "semanal": 7,
    "quinzenal": 14,
}

_MONTH_STEPS = {
    "mensal": 1,
    "anual": 12,
}

# guards a bad row from spinning forever
_MAX_OCCURRENCES = 5000


def _step_days(frequencia: str) -> Optional[int]:
    return _DAY_STEPS.get(frequencia)


def _step_months(frequencia: str) -> Optional[int]:
    return _MONTH_STEPS.get(frequencia)


def validate_recurrence(payload: Dict[str, Any]) -> None:
    required = ("conta_id", "tipo", "valor", "descricao", "frequencia", "data_inicio")
    if any(payload.get(f) in (None, "") for f in required):
        raise InvalidState("Conta, tipo, valor, descrição, frequência e data início são obrigatórios")
    if not payload.get("categoria_id"):
        raise InvalidState("Categoria é obrigatória")
    if payload["tipo"] not in TIPOS:
        raise InvalidState(f"Tipo inválido: {payload['tipo']}")
    if payload["frequencia"] not in FREQUENCIAS:
        raise InvalidState(f"Frequência inválida: {payload['frequencia']}")

    dia = payload.get("dia_vencimento")
    if dia not in (None, ""):
        try:
            dia = int(dia)
        except (TypeError, ValueError):
            raise InvalidState("Dia de vencimento deve estar entre 1 e 31")
        if not 1 <= dia <= 31:
            raise InvalidState("Dia de vencimento deve estar entre 1 e 31")

    inicio = parse_ymd(payload["data_inicio"])
    if inicio is None:
        raise InvalidState("Data início inválida")
    fim = parse_ymd(payload.get("data_fim"))
    if fim is not None and fim < inicio:
        raise InvalidState("A data final deve ser posterior à data inicial")


def first_occurrence(data_inicio, frequencia: str, dia_vencimento: Optional[int] = None) -> date:
    """
    Month based schedules anchor on dia_vencimento: if that day already passed
    in the start month, the first occurrence moves to the next period.
    """
    start = parse_ymd(data_inicio, strict=True)
    if not dia_vencimento or _step_months(frequencia) is None:
        return start
    d = with_day(start, dia_vencimento)
    if d < start:
        d = with_day(add_months(date(start.year, start.month, 1), _step_months(frequencia)), dia_vencimento)
    return d


def next_occurrence(d: date, frequencia: str, dia_vencimento: Optional[int] = None) -> date:
    days = _step_days(frequencia)
    if days is not None:
        return d + timedelta(days=days)
    months = _step_months(frequencia)
    if months is None:
        raise InvalidState(f"Frequência inválida: {frequencia}")
    nxt = add_months(date(d.year, d.month, 1), months)
    # re-anchor so Jan 31 -> Feb 28 -> Mar 31 instead of drifting to the 28th
    return with_day(nxt, dia_vencimento or d.day)


def occurrences_between(rec: Dict[str, Any], start: date, end: date) -> Iterator[date]:
    """Occurrence dates of rec within [start, end], honoring data_inicio/data_fim."""
    freq = rec["frequencia"]
    dia = rec.get("dia_vencimento")
    if not dia and _step_months(freq) is not None:
        dia = parse_ymd(rec["data_inicio"], strict=True).day
    d = first_occurrence(rec["data_inicio"], freq, dia)
    fim = parse_ymd(rec.get("data_fim"))
    if fim is not None and fim < end:
        end = fim

    n = 0
    while d <= end and n < _MAX_OCCURRENCES:
        if d >= start:
            yield d
        d = next_occurrence(d, freq, dia)
        n += 1


def list_recurrences(tenant_id: str) -> List[Dict[str, Any]]:
    return query_db(
        """
        SELECT r.*,
               c.nome AS conta_nome,
               cat.nome AS categoria_nome,
               cat.parent_id AS categoria_parent_id,
               cat.tipo AS categoria_tipo,
               parent_cat.nome AS categoria_pai_nome,
               parent_cat.id AS categoria_pai_id
        FROM financeiro.recorrencia r
        LEFT JOIN financeiro.conta c ON r.conta_id = c.id
        LEFT JOIN financeiro.categoria cat ON r.categoria_id = cat.id
        LEFT JOIN financeiro.categoria parent_cat ON cat.parent_id = parent_cat.id
        WHERE r.tenant_id = %s
        ORDER BY r.descricao
        """,
        (tenant_id,),
    )


def save_recurrence(tenant_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    validate_recurrence(payload)
    dia = payload.get("dia_vencimento") or None
    proxima = first_occurrence(payload["data_inicio"], payload["frequencia"], int(dia) if dia else None)
    params = (
        payload["conta_id"], payload["categoria_id"], payload["tipo"], payload["valor"],
        payload["descricao"], payload["frequencia"], dia, payload["data_inicio"],
        payload.get("data_fim") or None, bool(payload.get("is_paused") or False),
        payload.get("alerta_dias_antes"),
    )
    with transaction() as cur:
        if payload.get("id"):
            cur.execute(
                """
                UPDATE financeiro.recorrencia
                SET conta_id = %s, categoria_id = %s, tipo = %s, valor = %s, descricao = %s,
                    frequencia = %s, dia_vencimento = %s, data_inicio = %s, data_fim = %s,
                    is_paused = %s, alerta_dias_antes = %s
                WHERE id = %s AND tenant_id = %s
                RETURNING *
                """,
                params + (payload["id"], tenant_id),
            )
        else:
            cur.execute(
                """
                INSERT INTO financeiro.recorrencia
                  (conta_id, categoria_id, tipo, valor, descricao, frequencia, dia_vencimento,
                   data_inicio, data_fim, is_paused, alerta_dias_antes, tenant_id, proxima_ocorrencia)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                params + (tenant_id, proxima),
            )
        return cur.fetchone()


def _transacao_tipo(rec_tipo: str) -> str:
    # recurrences may be typed by category kind (receita/despesa) or by ledger kind
    return {"receita": "credito", "despesa": "debito"}.get(rec_tipo, rec_tipo)


def generate_due_transactions(tenant_id: str, ate: Optional[date] = None) -> Dict[str, Any]:
    """
    Materialize every occurrence up to `ate` as a 'previsto' transaction and
    advance proxima_ocorrencia. Re-running is a no-op thanks to the unique
    (recorrencia_id, data_transacao) index.
    """
    ate = ate or date.today()
    criadas = 0
    with transaction() as cur:
        cur.execute(
            """
            SELECT * FROM financeiro.recorrencia
            WHERE tenant_id = %s AND is_paused = FALSE
              AND COALESCE(proxima_ocorrencia, data_inicio) <= %s
            FOR UPDATE
            """,
            (tenant_id, ate),
        )
        recs = cur.fetchall()
        for rec in recs:
            start = parse_ymd(rec.get("proxima_ocorrencia")) or parse_ymd(rec["data_inicio"])
            last = None
            for d in occurrences_between(rec, start, ate):
                cur.execute(
                    """
                    INSERT INTO financeiro.transacao
                      (tenant_id, tipo, valor, descricao, data_transacao, conta_id, categoria_id,
                       recorrencia_id, origem, status, mes_referencia)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'recorrencia', 'previsto', %s)
                    ON CONFLICT (recorrencia_id, data_transacao) WHERE recorrencia_id IS NOT NULL DO NOTHING
                    """,
                    (
                        tenant_id, _transacao_tipo(rec["tipo"]), rec["valor"], rec["descricao"], d,
                        rec["conta_id"], rec["categoria_id"], rec["id"], mes_referencia(d),
                    ),
                )
                criadas += cur.rowcount or 0
                last = d
            if last is not None:
                cur.execute(
                    "UPDATE financeiro.recorrencia SET proxima_ocorrencia = %s WHERE id = %s",
                    (next_occurrence(last, rec["frequencia"], rec.get("dia_vencimento") or parse_ymd(rec["data_inicio"]).day), rec["id"]),
                )

    logger.info("tenant %s: %s recurring transactions generated up to %s", tenant_id, criadas, ate)
    return {"criadas": criadas, "ate": ate.isoformat(), "recorrencias": len(recs)}
