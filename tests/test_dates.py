import unittest
from datetime import date, datetime

import dates


class TestParseYmd(unittest.TestCase):
    def test_plain_date(self):
        self.assertEqual(dates.parse_ymd("2025-11-05"), date(2025, 11, 5))

    def test_month_only_is_first_day(self):
        self.assertEqual(dates.parse_ymd("2025-11"), date(2025, 11, 1))

    def test_timestamp_keeps_calendar_day(self):
        # no timezone shift: late-night UTC timestamps stay on the same day
        self.assertEqual(dates.parse_ymd("2025-11-05T23:30:00Z"), date(2025, 11, 5))
        self.assertEqual(dates.parse_ymd("2025-11-05T00:00:00-03:00"), date(2025, 11, 5))

    def test_date_and_datetime_objects(self):
        self.assertEqual(dates.parse_ymd(date(2024, 2, 29)), date(2024, 2, 29))
        self.assertEqual(dates.parse_ymd(datetime(2024, 2, 29, 22, 0)), date(2024, 2, 29))

    def test_garbage(self):
        self.assertIsNone(dates.parse_ymd("ontem"))
        self.assertIsNone(dates.parse_ymd("2025-02-30"))
        self.assertIsNone(dates.parse_ymd(""))
        self.assertIsNone(dates.parse_ymd(None))

    def test_strict_raises(self):
        with self.assertRaises(ValueError):
            dates.parse_ymd("ontem", strict=True)
        with self.assertRaises(ValueError):
            dates.parse_ymd(None, strict=True)


class TestFormatting(unittest.TestCase):
    def test_to_ymd(self):
        self.assertEqual(dates.to_ymd("2025-03-07T10:00:00"), "2025-03-07")
        self.assertIsNone(dates.to_ymd("x"))

    def test_format_br(self):
        self.assertEqual(dates.format_br("2025-03-07"), "07/03/2025")
        self.assertEqual(dates.format_br(None), "")

    def test_format_competencia(self):
        self.assertEqual(dates.format_competencia("2025-11-01"), "Nov/2025")
        self.assertEqual(dates.format_competencia(date(2026, 2, 1)), "Fev/2026")

    def test_mes_referencia(self):
        self.assertEqual(dates.mes_referencia("2025-01-31"), "2025-01")


class TestArithmetic(unittest.TestCase):
    def test_add_months_clamps_to_month_end(self):
        self.assertEqual(dates.add_months(date(2025, 1, 31), 1), date(2025, 2, 28))
        self.assertEqual(dates.add_months(date(2024, 1, 31), 1), date(2024, 2, 29))

    def test_add_months_crosses_year(self):
        self.assertEqual(dates.add_months(date(2025, 11, 15), 3), date(2026, 2, 15))
        self.assertEqual(dates.add_months(date(2025, 1, 15), -1), date(2024, 12, 15))

    def test_with_day_clamps(self):
        self.assertEqual(dates.with_day(date(2025, 2, 1), 31), date(2025, 2, 28))
        self.assertEqual(dates.with_day(date(2025, 4, 10), 0), date(2025, 4, 1))

    def test_competencia_of(self):
        self.assertEqual(dates.competencia_of("2025-07-19"), date(2025, 7, 1))


if __name__ == "__main__":
    unittest.main()
