import unittest
from datetime import date
from unittest.mock import patch

import recurring
from errors import InvalidState
from tests.fakes import FakeCursor, fake_transaction


def _payload(**overrides):
    p = {
        "conta_id": "a1", "categoria_id": "cat1", "tipo": "despesa", "valor": "1200",
        "descricao": "Aluguel", "frequencia": "mensal", "data_inicio": "2025-01-15",
    }
    p.update(overrides)
    return p


class TestValidateRecurrence(unittest.TestCase):
    def test_valid(self):
        recurring.validate_recurrence(_payload(dia_vencimento=10, data_fim="2025-12-31"))

    def test_missing_category(self):
        with self.assertRaisesRegex(InvalidState, "Categoria"):
            recurring.validate_recurrence(_payload(categoria_id=None))

    def test_bad_frequency(self):
        with self.assertRaisesRegex(InvalidState, "Frequência inválida"):
            recurring.validate_recurrence(_payload(frequencia="bimestral"))

    def test_bad_kind(self):
        for tipo in ("bogus", "transferencia"):
            with self.assertRaisesRegex(InvalidState, "Tipo inválido"):
                recurring.validate_recurrence(_payload(tipo=tipo))

    def test_day_out_of_range(self):
        for dia in (0, 32, "x"):
            with self.assertRaisesRegex(InvalidState, "entre 1 e 31"):
                recurring.validate_recurrence(_payload(dia_vencimento=dia))

    def test_end_before_start(self):
        with self.assertRaisesRegex(InvalidState, "posterior"):
            recurring.validate_recurrence(_payload(data_fim="2025-01-01"))


class TestSchedule(unittest.TestCase):
    def test_first_occurrence_moves_past_due_day_to_next_month(self):
        self.assertEqual(recurring.first_occurrence("2025-01-15", "mensal", 10), date(2025, 2, 10))
        self.assertEqual(recurring.first_occurrence("2025-01-05", "mensal", 10), date(2025, 1, 10))

    def test_first_occurrence_day_based(self):
        self.assertEqual(recurring.first_occurrence("2025-01-15", "semanal", 10), date(2025, 1, 15))

    def test_next_occurrence_steps(self):
        d = date(2025, 1, 1)
        self.assertEqual(recurring.next_occurrence(d, "diario"), date(2025, 1, 2))
        self.assertEqual(recurring.next_occurrence(d, "semanal"), date(2025, 1, 8))
        self.assertEqual(recurring.next_occurrence(d, "quinzenal"), date(2025, 1, 15))
        self.assertEqual(recurring.next_occurrence(d, "anual"), date(2026, 1, 1))

    def test_monthly_does_not_drift_after_short_month(self):
        d = recurring.next_occurrence(date(2025, 1, 31), "mensal", 31)
        self.assertEqual(d, date(2025, 2, 28))
        self.assertEqual(recurring.next_occurrence(d, "mensal", 31), date(2025, 3, 31))

    def test_occurrences_between_honors_window_and_end(self):
        rec = {"frequencia": "mensal", "dia_vencimento": 5, "data_inicio": "2025-01-01", "data_fim": "2025-04-30"}
        got = list(recurring.occurrences_between(rec, date(2025, 2, 1), date(2025, 12, 31)))
        self.assertEqual(got, [date(2025, 2, 5), date(2025, 3, 5), date(2025, 4, 5)])

    def test_occurrences_between_without_due_day_uses_start_day(self):
        rec = {"frequencia": "mensal", "data_inicio": "2025-01-20"}
        got = list(recurring.occurrences_between(rec, date(2025, 1, 1), date(2025, 3, 31)))
        self.assertEqual(got, [date(2025, 1, 20), date(2025, 2, 20), date(2025, 3, 20)])

    def test_weekly(self):
        rec = {"frequencia": "semanal", "data_inicio": "2025-03-03"}
        got = list(recurring.occurrences_between(rec, date(2025, 3, 1), date(2025, 3, 20)))
        self.assertEqual(got, [date(2025, 3, 3), date(2025, 3, 10), date(2025, 3, 17)])


class TestGenerate(unittest.TestCase):
    def test_generate_due_transactions(self):
        rec = {
            "id": "r1", "tipo": "despesa", "valor": 100, "descricao": "Internet", "conta_id": "a1",
            "categoria_id": "cat1", "frequencia": "mensal", "dia_vencimento": 10,
            "data_inicio": date(2025, 1, 1), "data_fim": None, "proxima_ocorrencia": date(2025, 1, 10),
        }
        cur = FakeCursor(fetchall=[[rec]])
        with patch("recurring.transaction", fake_transaction(cur)):
            result = recurring.generate_due_transactions("acme", ate=date(2025, 3, 15))

        self.assertEqual(result, {"criadas": 3, "ate": "2025-03-15", "recorrencias": 1})
        inserts = cur.statements("INSERT INTO financeiro.transacao")
        self.assertEqual([p[4] for _, p in inserts], [date(2025, 1, 10), date(2025, 2, 10), date(2025, 3, 10)])
        self.assertEqual(inserts[0][1][1], "debito")
        self.assertIn("ON CONFLICT", inserts[0][0])
        _, params = cur.statements("UPDATE financeiro.recorrencia")[0]
        self.assertEqual(params, (date(2025, 4, 10), "r1"))

    def test_rerun_creates_nothing(self):
        rec = {
            "id": "r1", "tipo": "credito", "valor": 100, "descricao": "Salário", "conta_id": "a1",
            "categoria_id": "cat1", "frequencia": "mensal", "dia_vencimento": 5,
            "data_inicio": date(2025, 1, 1), "data_fim": None, "proxima_ocorrencia": date(2025, 3, 5),
        }
        cur = FakeCursor(fetchall=[[rec]], rowcount=0)
        with patch("recurring.transaction", fake_transaction(cur)):
            result = recurring.generate_due_transactions("acme", ate=date(2025, 3, 10))
        self.assertEqual(result["criadas"], 0)


if __name__ == "__main__":
    unittest.main()
