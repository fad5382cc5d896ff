import random
from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from .conf import SollIstConfig
from .records import InvalidRecordError, InvoiceRecord, PaymentRecord, TenantRecord, UnitRecord
from .services.money import allocate_by_weight, correct_rounding
from .services.mrg_allocation import allocate_mrg, allocate_payment, allocate_payments
from .services.period_filter import Period, aggregate_payments, eligible_tenants, target_units
from .services.results import TenantSollIstResult
from .services.soll_ist_service import SollIstService, calculate_tenant_soll_ist, calculate_totals
from .services.soll_service import SOURCE_FALLBACK, SOURCE_INVOICES, compute_tenant_soll, invoice_soll
from .services.vacancy_service import compute_vacancies

CENT = Decimal("0.01")


def build_portfolio():
    properties = [
        {"id": "p1", "name": "Haus Wien"},
        {"id": "p2", "name": "Haus Graz"},
    ]
    units = [
        {"id": "u1", "property_id": "p1", "top_nummer": "Top 1"},
        {"id": "u2", "propertyId": "p1", "topNummer": "Top 2"},
        {"id": "u3", "property_id": "p1", "top_nummer": "Top 3"},
        {"id": "u9", "property_id": "p2", "top_nummer": "Top 9"},
    ]
    tenants = [
        {
            "id": "t1",
            "unit_id": "u1",
            "first_name": "Anna",
            "last_name": "Berger",
            "grundmiete": "500.00",
            "betriebskosten_vorschuss": "100.00",
            "heizungskosten_vorschuss": "50.00",
            "mietbeginn": "2024-01-01",
        },
        {
            "id": "t2",
            "unitId": "u2",
            "firstName": "Karl",
            "lastName": "Huber",
            "grundmiete": 800,
            "betriebskostenVorschuss": 150,
            "heizungskostenVorschuss": 100,
            "mietbeginn": "2020-05-01",
        },
        {
            "id": "t3",
            "unit_id": "u3",
            "vorname": "Eva",
            "nachname": "Moser",
            "grundmiete": "400.00",
            "mietbeginn": "2019-01-01",
            "mietende": "2024-12-31",
        },
        {
            "id": "t4",
            "unit_id": "u9",
            "first_name": "Otto",
            "last_name": "Graf",
            "grundmiete": "300.00",
            "mietbeginn": "2022-01-01",
        },
        {
            "id": "t5",
            "unit_id": "u1",
            "first_name": "Gelöscht",
            "grundmiete": "999.00",
            "deleted_at": "2025-01-15",
        },
    ]
    invoices = [
        {
            "id": f"i1-{month}",
            "tenant_id": "t1",
            "unit_id": "u1",
            "year": 2025,
            "month": month,
            "grundmiete": "500.00",
            "betriebskosten": "100.00",
            "heizungskosten": "50.00",
            "ust_satz_miete": 10,
            "ust_satz_bk": 10,
            "ust_satz_heizung": 20,
            "gesamtbetrag": "720.00",
        }
        for month in (1, 2, 3, 4)
    ]
    invoices += [
        {
            "id": "v3-1",
            "unitId": "u3",
            "year": 2025,
            "month": 1,
            "betriebskosten": "80.00",
            "heizungskosten": "40.00",
            "gesamtbetrag": "136.00",
            "isVacancy": True,
            "paidAmount": "136.00",
        },
        {
            "id": "v3-2",
            "unit_id": "u3",
            "year": 2025,
            "month": 2,
            "betriebskosten": "80.00",
            "heizungskosten": "40.00",
            "gesamtbetrag": "136.00",
            "is_vacancy": True,
            "paid_amount": "68.00",
        },
        {
            "id": "v9-1",
            "unit_id": "u9",
            "year": 2025,
            "month": 1,
            "betriebskosten": "10.00",
            "gesamtbetrag": "11.00",
            "is_vacancy": True,
            "paid_amount": "11.00",
        },
    ]
    payments = [
        {"id": "z1", "tenant_id": "t1", "amount": "720.00", "payment_date": "2025-01-03"},
        {"id": "z2", "tenant_id": "t1", "amount": "720.00", "payment_date": "2025-02-03"},
        {"id": "z3", "tenantId": "t1", "amount": "300.00", "paymentDate": "2025-03-03"},
        {"id": "z4", "tenant_id": "t1", "amount": "720.00", "payment_date": "2025-04-03"},
        {"id": "z5", "tenant_id": "t1", "amount": "720.00", "payment_date": "2024-12-28"},
        {"id": "z6", "tenant_id": "t2", "betrag": "4000.00", "buchungsdatum": "2025-02-01"},
        {"id": "z7", "tenant_id": "t2", "amount": "50.00"},
    ]
    return {
        "tenants": tenants,
        "units": units,
        "properties": properties,
        "invoices": invoices,
        "payments": payments,
    }


def assert_result_invariants(testcase, result):
    testcase.assertLess(
        (result.soll_bk + result.soll_hk + result.soll_miete - result.soll_betrag).copy_abs(),
        CENT,
    )
    testcase.assertLessEqual(result.ist_bk, result.soll_bk)
    testcase.assertLessEqual(result.ist_hk, result.soll_hk)
    testcase.assertLessEqual(result.ist_miete, result.soll_miete)
    if result.haben_betrag >= result.soll_betrag - CENT:
        testcase.assertEqual(result.ist_bk, result.soll_bk)
        testcase.assertEqual(result.ist_hk, result.soll_hk)
        testcase.assertEqual(result.ist_miete, result.soll_miete)
    testcase.assertEqual(result.saldo, result.soll_betrag - result.haben_betrag)
    testcase.assertFalse(result.saldo > 0 and result.ueberzahlung > 0)
    testcase.assertGreaterEqual(result.ueberzahlung, Decimal("0"))
    if result.is_vacancy:
        testcase.assertEqual(result.soll_miete, Decimal("0"))
        testcase.assertEqual(result.ist_miete, Decimal("0"))


class PeriodTests(SimpleTestCase):
    def test_month_count_and_bounds(self):
        period = Period(year=2024, start_month=2, end_month=4)

        self.assertEqual(period.month_count, 3)
        self.assertEqual(period.period_start, date(2024, 2, 1))
        self.assertEqual(period.period_end, date(2024, 4, 30))
        self.assertEqual(period.label, "02-04.2024")

    def test_february_in_leap_year_ends_on_29th(self):
        self.assertEqual(Period.single_month(2024, 2).period_end, date(2024, 2, 29))
        self.assertEqual(Period.single_month(2025, 2).period_end, date(2025, 2, 28))

    def test_contains_is_inclusive(self):
        period = Period.full_year(2025)

        self.assertTrue(period.contains(date(2025, 1, 1)))
        self.assertTrue(period.contains(date(2025, 12, 31)))
        self.assertFalse(period.contains(date(2024, 12, 31)))
        self.assertFalse(period.contains(None))

    def test_invalid_month_window_raises(self):
        with self.assertRaises(ValueError):
            Period(year=2025, start_month=5, end_month=4)
        with self.assertRaises(ValueError):
            Period(year=2025, start_month=0, end_month=4)
        with self.assertRaises(ValueError):
            Period(year=2025, start_month=1, end_month=13)


class RecordNormalizationTests(SimpleTestCase):
    def test_camel_and_snake_case_tenants_are_identical(self):
        snake = TenantRecord.from_raw(
            {
                "id": "t1",
                "unit_id": "u1",
                "first_name": "Anna",
                "last_name": "Berger",
                "grundmiete": "500",
                "betriebskosten_vorschuss": "100",
                "heizungskosten_vorschuss": "50",
                "mietbeginn": "2024-01-01",
            }
        )
        camel = TenantRecord.from_raw(
            {
                "id": "t1",
                "unitId": "u1",
                "firstName": "Anna",
                "lastName": "Berger",
                "grundmiete": 500,
                "betriebskostenVorschuss": 100,
                "heizungskostenVorschuss": 50,
                "mietbeginn": date(2024, 1, 1),
            }
        )

        self.assertEqual(snake, camel)
        self.assertEqual(snake.full_name, "Anna Berger")

    def test_missing_or_malformed_numbers_default_to_zero(self):
        tenant = TenantRecord.from_raw({"id": 7, "unit_id": 3, "grundmiete": "abc", "betriebskosten_vorschuss": ""})

        self.assertEqual(tenant.id, "7")
        self.assertEqual(tenant.unit_id, "3")
        self.assertEqual(tenant.grundmiete, Decimal("0.00"))
        self.assertEqual(tenant.bk_vorschuss, Decimal("0.00"))
        self.assertEqual(tenant.hk_vorschuss, Decimal("0.00"))
        self.assertEqual(tenant.full_name, "N/A")

    def test_invoice_rates_default_but_explicit_zero_is_kept(self):
        defaults = InvoiceRecord.from_raw({"id": "i1", "year": "2025", "month": "3"})
        explicit = InvoiceRecord.from_raw(
            {"id": "i2", "ustSatzBk": 0, "ust_satz_heizung": "10", "ustSatzMiete": None}
        )

        self.assertEqual(defaults.year, 2025)
        self.assertEqual(defaults.month, 3)
        self.assertEqual(defaults.ust_satz_bk, Decimal("10"))
        self.assertEqual(defaults.ust_satz_hk, Decimal("20"))
        self.assertEqual(defaults.ust_satz_miete, Decimal("10"))
        self.assertEqual(explicit.ust_satz_bk, Decimal("0"))
        self.assertEqual(explicit.ust_satz_hk, Decimal("10"))
        self.assertEqual(explicit.ust_satz_miete, Decimal("10"))

    @override_settings(SOLL_IST_DEFAULT_UST={"bk": 20, "hk": 13, "miete": 0})
    def test_invoice_rate_defaults_ignore_settings(self):
        invoice = InvoiceRecord.from_raw({"id": "i1"})

        self.assertEqual(invoice.ust_satz_bk, Decimal("10"))
        self.assertEqual(invoice.ust_satz_hk, Decimal("20"))
        self.assertEqual(invoice.ust_satz_miete, Decimal("10"))

    def test_out_of_range_amounts_default_to_zero(self):
        tenant = TenantRecord.from_raw(
            {"id": "t1", "unit_id": "u1", "grundmiete": "1e40", "bk_vorschuss": Decimal("1E+30"), "hk_vorschuss": 1e300}
        )
        invoice = InvoiceRecord.from_raw(
            {"id": "i1", "gesamtbetrag": "99999999999999999999999999999", "paid_amount": "-1e27", "ustSatzBk": "1e50"}
        )

        self.assertEqual(tenant.grundmiete, Decimal("0.00"))
        self.assertEqual(tenant.bk_vorschuss, Decimal("0.00"))
        self.assertEqual(tenant.hk_vorschuss, Decimal("0.00"))
        self.assertEqual(invoice.gesamtbetrag, Decimal("0.00"))
        self.assertEqual(invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(invoice.ust_satz_bk, Decimal("10"))

    def test_out_of_range_amounts_do_not_abort_calculation(self):
        report = SollIstService(Period(2025, 1, 1)).calculate(
            tenants=[{"id": "t1", "unit_id": "u1", "grundmiete": "1e40"}],
            units=[{"id": "u1", "property_id": "p1"}],
            payments=[{"id": "z1", "tenant_id": "t1", "amount": "1e40", "payment_date": "2025-01-10"}],
        )

        result = report.results[0]
        self.assertEqual(result.soll_betrag, Decimal("0.00"))
        self.assertEqual(result.haben_betrag, Decimal("0.00"))
        self.assertEqual(result.status, "vollstaendig")

    def test_payment_aliases_and_datetime_strings(self):
        payment = PaymentRecord.from_raw(
            {"id": "z1", "tenantId": "t1", "betrag": "99.999", "buchungsdatum": "2025-03-15T10:00:00Z"}
        )

        self.assertEqual(payment.amount, Decimal("100.00"))
        self.assertEqual(payment.payment_date, date(2025, 3, 15))

    def test_invalid_dates_become_none(self):
        payment = PaymentRecord.from_raw({"id": "z1", "tenant_id": "t1", "amount": 10, "payment_date": "2025-02-30"})
        tenant = TenantRecord.from_raw({"id": "t1", "mietbeginn": "irgendwann"})

        self.assertIsNone(payment.payment_date)
        self.assertIsNone(tenant.mietbeginn)

    def test_vacancy_flag_accepts_strings(self):
        self.assertTrue(InvoiceRecord.from_raw({"id": "i1", "is_vacancy": "true"}).is_vacancy)
        self.assertFalse(InvoiceRecord.from_raw({"id": "i2", "is_vacancy": "false"}).is_vacancy)

    def test_record_without_id_raises(self):
        with self.assertRaises(InvalidRecordError):
            TenantRecord.from_raw({"unit_id": "u1"})
        with self.assertRaises(InvalidRecordError):
            PaymentRecord.from_raw({"id": "  ", "amount": 10})

    def test_canonical_records_pass_through(self):
        unit = UnitRecord(id="u1", property_id="p1", top_nummer="Top 1")

        self.assertIs(UnitRecord.from_raw(unit), unit)


class EligibilityFilterTests(SimpleTestCase):
    def setUp(self):
        self.period = Period(year=2025, start_month=3, end_month=5)
        self.units = target_units(
            [
                UnitRecord(id="u1", property_id="p1"),
                UnitRecord(id="u2", property_id="p2"),
            ],
            "p1",
        )

    def _tenant(self, **kwargs):
        data = {"id": "t", "unit_id": "u1"}
        data.update(kwargs)
        return TenantRecord.from_raw(data)

    def test_property_scope_filters_units(self):
        self.assertEqual(list(self.units), ["u1"])
        self.assertEqual(list(target_units([UnitRecord(id="u1"), UnitRecord(id="u2")], "all")), ["u1", "u2"])
        self.assertEqual(list(target_units([UnitRecord(id="u1"), UnitRecord(id="u2")], None)), ["u1", "u2"])

    def test_overlap_rules(self):
        tenants = [
            self._tenant(id="open", mietbeginn="2020-01-01"),
            self._tenant(id="no-dates"),
            self._tenant(id="starts-last-day", mietbeginn="2025-05-31"),
            self._tenant(id="ends-first-day", mietende="2025-03-01"),
            self._tenant(id="starts-after", mietbeginn="2025-06-01"),
            self._tenant(id="ended-before", mietbeginn="2020-01-01", mietende="2025-02-28"),
            self._tenant(id="deleted", deletedAt="2025-04-01"),
            self._tenant(id="other-property", unit_id="u2"),
            self._tenant(id="unknown-unit", unit_id="u404"),
            self._tenant(id="no-unit", unit_id=""),
        ]

        eligible = eligible_tenants(tenants, self.units, self.period)

        self.assertEqual(
            [tenant.id for tenant in eligible],
            ["open", "no-dates", "starts-last-day", "ends-first-day"],
        )

    def test_payments_are_aggregated_within_window(self):
        payments = [
            PaymentRecord.from_raw({"id": "1", "tenant_id": "t1", "amount": "100", "payment_date": "2025-03-01"}),
            PaymentRecord.from_raw({"id": "2", "tenant_id": "t1", "amount": "50.50", "payment_date": "2025-05-31"}),
            PaymentRecord.from_raw({"id": "3", "tenant_id": "t1", "amount": "10", "payment_date": "2025-06-01"}),
            PaymentRecord.from_raw({"id": "4", "tenant_id": "t1", "amount": "10"}),
            PaymentRecord.from_raw({"id": "5", "tenant_id": "t2", "amount": "20", "payment_date": "2025-04-10"}),
            PaymentRecord.from_raw({"id": "6", "amount": "20", "payment_date": "2025-04-10"}),
        ]

        aggregated = aggregate_payments(payments, self.period)

        self.assertEqual(set(aggregated), {"t1", "t2"})
        self.assertEqual(aggregated["t1"].total, Decimal("150.50"))
        self.assertEqual(aggregated["t1"].count, 2)
        self.assertEqual(aggregated["t2"].total, Decimal("20.00"))
        self.assertEqual(aggregated["t2"].count, 1)


class SollComputationTests(SimpleTestCase):
    def test_fallback_projection_from_contract(self):
        tenant = TenantRecord.from_raw(
            {"id": "t1", "grundmiete": 800, "bkVorschuss": 150, "hkVorschuss": 100}
        )

        soll = compute_tenant_soll(
            tenant,
            [],
            period=Period(year=2025, start_month=1, end_month=3),
        )

        self.assertEqual(soll.source, SOURCE_FALLBACK)
        self.assertEqual(soll.miete, Decimal("2640.00"))
        self.assertEqual(soll.bk, Decimal("495.00"))
        self.assertEqual(soll.hk, Decimal("360.00"))
        self.assertEqual(soll.betrag, Decimal("3495.00"))

    def test_reconciliation_scales_components_to_billed_total(self):
        invoice = InvoiceRecord.from_raw(
            {
                "id": "i1",
                "grundmiete": "200.00",
                "betriebskosten": "100.00",
                "heizungskosten": "100.00",
                "ust_satz_heizung": 10,
                "gesamtbetrag": "450.00",
            }
        )

        with self.assertLogs("sollist.services.soll_service", level="INFO") as logs:
            soll = invoice_soll([invoice])

        self.assertEqual(soll.source, SOURCE_INVOICES)
        self.assertEqual(soll.miete, Decimal("225.00"))
        self.assertEqual(soll.bk, Decimal("112.50"))
        self.assertEqual(soll.hk, Decimal("112.50"))
        self.assertEqual(soll.bk + soll.hk + soll.miete, Decimal("450.00"))
        self.assertIn("Faktor", logs.output[0])

    def test_matching_components_are_not_rescaled(self):
        invoice = InvoiceRecord.from_raw(
            {
                "id": "i1",
                "grundmiete": "30.31",
                "betriebskosten": "33.33",
                "heizungskosten": "33.33",
                "gesamtbetrag": "110.00",
            }
        )

        soll = invoice_soll([invoice])

        self.assertEqual(soll.bk, Decimal("36.66"))
        self.assertEqual(soll.hk, Decimal("40.00"))
        self.assertEqual(soll.miete, Decimal("33.34"))
        self.assertEqual(soll.betrag, Decimal("110.00"))

    def test_only_in_period_non_vacancy_invoices_count(self):
        tenant = TenantRecord.from_raw({"id": "t1", "grundmiete": 999})
        invoices = [
            InvoiceRecord.from_raw({"id": "a", "year": 2025, "month": 2, "grundmiete": 100, "gesamtbetrag": 110}),
            InvoiceRecord.from_raw({"id": "b", "year": 2025, "month": 7, "grundmiete": 100, "gesamtbetrag": 110}),
            InvoiceRecord.from_raw({"id": "c", "year": 2024, "month": 2, "grundmiete": 100, "gesamtbetrag": 110}),
            InvoiceRecord.from_raw(
                {"id": "d", "year": 2025, "month": 2, "betriebskosten": 10, "gesamtbetrag": 11, "is_vacancy": True}
            ),
        ]

        soll = compute_tenant_soll(
            tenant,
            invoices,
            period=Period(year=2025, start_month=1, end_month=3),
        )

        self.assertEqual(soll.invoice_count, 1)
        self.assertEqual(soll.betrag, Decimal("110.00"))
        self.assertEqual(soll.miete, Decimal("110.00"))

    def test_gross_only_invoice_is_booked_to_rent(self):
        invoice = InvoiceRecord.from_raw({"id": "i1", "gesamtbetrag": "300.00"})

        with self.assertLogs("sollist.services.soll_service", level="WARNING"):
            soll = invoice_soll([invoice])

        self.assertEqual(soll.miete, Decimal("300.00"))
        self.assertEqual(soll.bk, Decimal("0.00"))
        self.assertEqual(soll.hk, Decimal("0.00"))

    def test_credit_note_components_are_not_rescaled(self):
        invoice = InvoiceRecord.from_raw(
            {
                "id": "g1",
                "grundmiete": "-100.00",
                "betriebskosten": "-50.00",
                "gesamtbetrag": "-160.00",
            }
        )

        with self.assertLogs("sollist.services.soll_service", level="INFO") as logs:
            soll = invoice_soll([invoice])

        self.assertEqual(soll.bk, Decimal("-55.00"))
        self.assertEqual(soll.hk, Decimal("0.00"))
        self.assertEqual(soll.miete, Decimal("-105.00"))
        self.assertEqual(soll.bk + soll.hk + soll.miete, Decimal("-160.00"))
        self.assertTrue(all("Faktor" not in line for line in logs.output))
        self.assertIn("WARNING", logs.output[0])

    def test_components_always_foot_to_billed_total(self):
        rng = random.Random(4711)
        for _ in range(300):
            invoices = []
            for index in range(rng.randint(1, 12)):
                net_miete = Decimal(rng.randint(0, 150000)) / 100
                net_bk = Decimal(rng.randint(0, 40000)) / 100
                net_hk = Decimal(rng.randint(0, 30000)) / 100
                exact = net_miete * Decimal("1.1") + net_bk * Decimal("1.1") + net_hk * Decimal("1.2")
                drift = Decimal(rng.choice([0, 0, 1, -1, 250, -900])) / 100
                invoices.append(
                    InvoiceRecord.from_raw(
                        {
                            "id": str(index),
                            "grundmiete": net_miete,
                            "betriebskosten": net_bk,
                            "heizungskosten": net_hk,
                            "gesamtbetrag": exact + drift,
                        }
                    )
                )

            soll = invoice_soll(invoices)

            self.assertEqual(soll.bk + soll.hk + soll.miete, soll.betrag)


class MoneyTests(SimpleTestCase):
    def test_rounding_correction_hits_target(self):
        rounded = correct_rounding(
            total_amount=Decimal("100.00"),
            raw_amounts={"a": Decimal("33.333"), "b": Decimal("33.333"), "c": Decimal("33.334")},
        )

        self.assertEqual(sum(rounded.values()), Decimal("100.00"))
        self.assertEqual(rounded, {"a": Decimal("33.33"), "b": Decimal("33.33"), "c": Decimal("33.34")})

    def test_allocate_by_weight_handles_zero_weight(self):
        self.assertEqual(
            allocate_by_weight(total_amount=Decimal("10.00"), weights={"a": Decimal("0"), "b": Decimal("0")}),
            {"a": Decimal("0.00"), "b": Decimal("0.00")},
        )


class MrgAllocationTests(SimpleTestCase):
    SOLL = {
        "soll_bk": Decimal("100.00"),
        "soll_hk": Decimal("50.00"),
        "soll_miete": Decimal("300.00"),
        "soll_betrag": Decimal("450.00"),
    }

    def _result(self, haben_betrag):
        allocation = allocate_mrg(**self.SOLL, haben_betrag=haben_betrag)
        return TenantSollIstResult(
            tenant_id="t1",
            tenant_name="Anna Berger",
            unit_id="u1",
            unit_name="Top 1",
            property_id="p1",
            property_name="Haus Wien",
            ist_bk=allocation.ist_bk,
            ist_hk=allocation.ist_hk,
            ist_miete=allocation.ist_miete,
            haben_betrag=haben_betrag,
            **self.SOLL,
        )

    def test_underpayment_is_allocated_bk_then_hk_then_rent(self):
        allocation = allocate_mrg(**self.SOLL, haben_betrag=Decimal("120.00"))

        self.assertEqual(allocation.ist_bk, Decimal("100.00"))
        self.assertEqual(allocation.ist_hk, Decimal("20.00"))
        self.assertEqual(allocation.ist_miete, Decimal("0.00"))

    def test_underpayment_result_reports_open_balance(self):
        result = self._result(Decimal("120.00"))

        self.assertEqual(result.saldo, Decimal("330.00"))
        self.assertEqual(result.ueberzahlung, Decimal("0"))
        self.assertEqual(result.unterzahlung, Decimal("330.00"))
        self.assertEqual(result.status, "teilbezahlt")

    def test_overpayment_fills_all_buckets_and_keeps_excess_aggregate(self):
        allocation = allocate_mrg(**self.SOLL, haben_betrag=Decimal("500.00"))

        self.assertEqual(allocation.ist_bk, Decimal("100.00"))
        self.assertEqual(allocation.ist_hk, Decimal("50.00"))
        self.assertEqual(allocation.ist_miete, Decimal("300.00"))
        self.assertEqual(allocation.ist_gesamt, Decimal("450.00"))

    def test_overpayment_result_reports_negative_saldo(self):
        result = self._result(Decimal("500.00"))

        self.assertEqual(result.saldo, Decimal("-50.00"))
        self.assertEqual(result.ueberzahlung, Decimal("50.00"))
        self.assertEqual(result.unterzahlung, Decimal("0.00"))
        self.assertEqual(result.diff_gesamt, Decimal("0.00"))
        self.assertEqual(result.status, "ueberzahlt")

    def test_payment_within_tolerance_counts_as_full(self):
        allocation = allocate_mrg(**self.SOLL, haben_betrag=Decimal("449.99"))

        self.assertEqual(allocation.ist_miete, Decimal("300.00"))

    def test_no_payment_allocates_nothing(self):
        for haben in (Decimal("0.00"), Decimal("0.009"), Decimal("-25.00")):
            allocation = allocate_mrg(**self.SOLL, haben_betrag=haben)
            self.assertEqual(allocation.ist_gesamt, Decimal("0"))

    def test_priority_order_over_random_samples(self):
        rng = random.Random(20250101)
        for _ in range(2000):
            soll_bk = Decimal(rng.randint(0, 50000)) / 100
            soll_hk = Decimal(rng.randint(0, 30000)) / 100
            soll_miete = Decimal(rng.randint(0, 150000)) / 100
            soll_betrag = soll_bk + soll_hk + soll_miete
            haben = Decimal(rng.randint(0, int(soll_betrag * 100) + 20000)) / 100

            allocation = allocate_mrg(
                soll_bk=soll_bk,
                soll_hk=soll_hk,
                soll_miete=soll_miete,
                soll_betrag=soll_betrag,
                haben_betrag=haben,
            )

            self.assertLessEqual(allocation.ist_bk, soll_bk)
            self.assertLessEqual(allocation.ist_hk, soll_hk)
            self.assertLessEqual(allocation.ist_miete, soll_miete)
            if haben >= soll_betrag - CENT:
                self.assertEqual(
                    (allocation.ist_bk, allocation.ist_hk, allocation.ist_miete),
                    (soll_bk, soll_hk, soll_miete),
                )
            elif haben < CENT:
                self.assertEqual(allocation.ist_gesamt, Decimal("0"))
            else:
                self.assertEqual(allocation.ist_bk, min(haben, soll_bk))
                remaining = haben - allocation.ist_bk
                self.assertEqual(allocation.ist_hk, min(remaining, soll_hk))
                remaining -= allocation.ist_hk
                self.assertEqual(allocation.ist_miete, min(remaining, soll_miete))
                self.assertEqual(allocation.ist_gesamt, haben)

    def test_allocated_total_is_monotonic_and_capped(self):
        previous = Decimal("0")
        haben = Decimal("0.00")
        while haben <= Decimal("520.00"):
            allocation = allocate_mrg(**self.SOLL, haben_betrag=haben)
            self.assertGreaterEqual(allocation.ist_gesamt, previous)
            self.assertLessEqual(allocation.ist_gesamt, self.SOLL["soll_betrag"])
            previous = allocation.ist_gesamt
            haben += Decimal("0.37")


class PaymentAllocationTests(SimpleTestCase):
    def test_partial_payment_breakdown(self):
        allocation = allocate_payment(
            Decimal("200.00"),
            grundmiete=Decimal("500.00"),
            betriebskosten=Decimal("100.00"),
            heizungskosten=Decimal("50.00"),
        )

        self.assertEqual(allocation.betriebskosten_anteil, Decimal("110.00"))
        self.assertEqual(allocation.heizung_anteil, Decimal("60.00"))
        self.assertEqual(allocation.miete_anteil, Decimal("30.00"))
        self.assertEqual(allocation.ust_anteil, Decimal("20.00"))
        self.assertEqual(allocation.unterzahlung, Decimal("470.00"))
        self.assertEqual(allocation.ueberzahlung, Decimal("0"))
        self.assertEqual(allocation.status, "teilbezahlt")
        self.assertEqual(allocation.beschreibung, "Teilzahlung - Offen: 470.00 € (Miete: 30.00/500.00 €)")
        self.assertIn("davon USt: 20.00 €", allocation.display_lines())

    def test_overpayment_breakdown(self):
        allocation = allocate_payment(
            Decimal("700.00"),
            grundmiete=Decimal("500.00"),
            betriebskosten=Decimal("100.00"),
            heizungskosten=Decimal("50.00"),
        )

        self.assertEqual(allocation.status, "ueberzahlt")
        self.assertEqual(allocation.ueberzahlung, Decimal("30.00"))
        self.assertEqual(allocation.beschreibung, "Überzahlung: 30.00 €")

    def test_multiple_payments_are_applied_in_date_order(self):
        run = allocate_payments(
            [
                (date(2025, 1, 10), Decimal("100.00")),
                (date(2025, 1, 5), Decimal("570.00")),
            ],
            grundmiete=Decimal("500.00"),
            betriebskosten=Decimal("100.00"),
            heizungskosten=Decimal("50.00"),
            gesamtbetrag=Decimal("670.00"),
        )

        first_date, _, first = run.einzelzuordnungen[0]
        _, _, second = run.einzelzuordnungen[1]
        self.assertEqual(first_date, date(2025, 1, 5))
        self.assertEqual(first.miete_anteil, Decimal("400.00"))
        self.assertEqual(second.miete_anteil, Decimal("100.00"))
        self.assertTrue(second.vollstaendig_bezahlt)
        self.assertEqual(run.gesamtstatus, "bezahlt")
        self.assertEqual(run.gesamtbezahlt, Decimal("670.00"))
        self.assertEqual(run.restbetrag, Decimal("0.00"))

    def test_no_payments_is_open(self):
        run = allocate_payments(
            [],
            grundmiete=Decimal("500.00"),
            betriebskosten=Decimal("0"),
            heizungskosten=Decimal("0"),
            gesamtbetrag=Decimal("500.00"),
        )

        self.assertEqual(run.gesamtstatus, "offen")
        self.assertEqual(run.restbetrag, Decimal("500.00"))


class VacancyTests(SimpleTestCase):
    def setUp(self):
        self.config = SollIstConfig()
        self.units = target_units([UnitRecord(id="u3", property_id="p1", top_nummer="Top 3")])
        self.period = Period(year=2025, start_month=1, end_month=3)

    def _invoice(self, invoice_id, month, paid):
        return InvoiceRecord.from_raw(
            {
                "id": invoice_id,
                "unit_id": "u3",
                "year": 2025,
                "month": month,
                "betriebskosten": "80.00",
                "heizungskosten": "40.00",
                "grundmiete": "500.00",
                "gesamtbetrag": "136.00",
                "is_vacancy": True,
                "paid_amount": paid,
            }
        )

    def test_partial_owner_settlement_is_split_proportionally(self):
        results = compute_vacancies(
            [self._invoice("a", 1, "136.00"), self._invoice("b", 2, "68.00")],
            units_by_id=self.units,
            properties_by_id={},
            period=self.period,
            config=self.config,
        )

        self.assertEqual(len(results), 1)
        result = results[0]
        self.assertTrue(result.is_vacancy)
        self.assertEqual(result.tenant_id, "vacancy-u3")
        self.assertEqual(result.tenant_name, "Leerstand (2 Mon.)")
        self.assertEqual(result.unit_name, "Top 3")
        self.assertEqual(result.property_name, "-")
        self.assertEqual(result.soll_betrag, Decimal("272.00"))
        self.assertEqual(result.soll_bk, Decimal("176.00"))
        self.assertEqual(result.soll_hk, Decimal("96.00"))
        self.assertEqual(result.soll_miete, Decimal("0"))
        self.assertEqual(result.haben_betrag, Decimal("204.00"))
        self.assertEqual(result.ist_bk, Decimal("132.00"))
        self.assertEqual(result.ist_hk, Decimal("72.00"))
        self.assertEqual(result.ist_miete, Decimal("0"))
        self.assertEqual(result.saldo, Decimal("68.00"))
        self.assertEqual(result.payment_count, 0)
        assert_result_invariants(self, result)

    def test_proportional_split_differs_from_priority_rule(self):
        result = compute_vacancies(
            [self._invoice("a", 1, "68.00")],
            units_by_id=self.units,
            properties_by_id={},
            period=self.period,
            config=self.config,
        )[0]

        self.assertEqual(result.ist_bk, Decimal("44.00"))
        self.assertEqual(result.ist_hk, Decimal("24.00"))

    def test_owner_overpayment_is_aggregate_only(self):
        result = compute_vacancies(
            [self._invoice("a", 1, "150.00")],
            units_by_id=self.units,
            properties_by_id={},
            period=self.period,
            config=self.config,
        )[0]

        self.assertEqual(result.ist_bk, result.soll_bk)
        self.assertEqual(result.ist_hk, result.soll_hk)
        self.assertEqual(result.ueberzahlung, Decimal("14.00"))
        assert_result_invariants(self, result)

    def test_invoices_outside_scope_or_period_are_ignored(self):
        invoices = [
            self._invoice("a", 4, "0"),
            InvoiceRecord.from_raw(
                {"id": "b", "unit_id": "u404", "year": 2025, "month": 1, "gesamtbetrag": 10, "is_vacancy": True}
            ),
        ]

        self.assertEqual(
            compute_vacancies(
                invoices,
                units_by_id=self.units,
                properties_by_id={},
                period=self.period,
                config=self.config,
            ),
            [],
        )


class SollIstServiceTests(SimpleTestCase):
    def setUp(self):
        self.data = build_portfolio()
        self.period = Period(year=2025, start_month=1, end_month=3)

    def _report(self, property_id="p1", **overrides):
        data = dict(self.data)
        data.update(overrides)
        return SollIstService(self.period, property_id=property_id).calculate(**data)

    def test_result_order_and_membership(self):
        report = self._report()

        self.assertEqual([result.tenant_id for result in report.results], ["t1", "t2", "vacancy-u3"])
        self.assertEqual([result.tenant_id for result in report.tenant_results], ["t1", "t2"])
        self.assertEqual([result.tenant_id for result in report.vacancy_results], ["vacancy-u3"])

    def test_invoice_backed_tenant_with_partial_payment(self):
        result = self._report().results[0]

        self.assertEqual(result.tenant_name, "Anna Berger")
        self.assertEqual(result.unit_name, "Top 1")
        self.assertEqual(result.property_name, "Haus Wien")
        self.assertEqual(result.label, "Haus Wien · Top 1 · Anna Berger")
        self.assertEqual(result.soll_source, SOURCE_INVOICES)
        self.assertEqual(result.soll_betrag, Decimal("2160.00"))
        self.assertEqual(result.soll_miete, Decimal("1650.00"))
        self.assertEqual(result.soll_bk, Decimal("330.00"))
        self.assertEqual(result.soll_hk, Decimal("180.00"))
        self.assertEqual(result.haben_betrag, Decimal("1740.00"))
        self.assertEqual(result.payment_count, 3)
        self.assertEqual(result.ist_bk, Decimal("330.00"))
        self.assertEqual(result.ist_hk, Decimal("180.00"))
        self.assertEqual(result.ist_miete, Decimal("1230.00"))
        self.assertEqual(result.saldo, Decimal("420.00"))
        self.assertEqual(result.diff_miete, Decimal("420.00"))
        self.assertEqual(result.unterzahlung, Decimal("420.00"))
        self.assertEqual(result.ueberzahlung, Decimal("0"))
        self.assertEqual(result.status, "teilbezahlt")

    def test_fallback_tenant_with_overpayment(self):
        result = self._report().results[1]

        self.assertEqual(result.tenant_name, "Karl Huber")
        self.assertEqual(result.soll_source, SOURCE_FALLBACK)
        self.assertEqual(result.soll_betrag, Decimal("3495.00"))
        self.assertEqual(result.ist_miete, Decimal("2640.00"))
        self.assertEqual(result.haben_betrag, Decimal("4000.00"))
        self.assertEqual(result.payment_count, 1)
        self.assertEqual(result.saldo, Decimal("-505.00"))
        self.assertEqual(result.ueberzahlung, Decimal("505.00"))
        self.assertEqual(result.diff_gesamt, Decimal("0.00"))
        self.assertEqual(result.status, "ueberzahlt")

    def test_totals_foot_to_results(self):
        totals = self._report().totals

        self.assertEqual(totals.soll_gesamt, Decimal("5927.00"))
        self.assertEqual(totals.soll_bk, Decimal("1001.00"))
        self.assertEqual(totals.soll_hk, Decimal("636.00"))
        self.assertEqual(totals.soll_miete, Decimal("4290.00"))
        self.assertEqual(totals.ist_bk, Decimal("957.00"))
        self.assertEqual(totals.ist_hk, Decimal("612.00"))
        self.assertEqual(totals.ist_miete, Decimal("3870.00"))
        self.assertEqual(totals.ist_gesamt, Decimal("5439.00"))
        self.assertEqual(totals.diff_gesamt, Decimal("488.00"))
        self.assertEqual(totals.haben_betrag, Decimal("5944.00"))
        self.assertEqual(totals.saldo, Decimal("-17.00"))
        self.assertEqual(totals.ueberzahlung, Decimal("505.00"))
        self.assertEqual(totals.payment_count, 4)
        self.assertEqual(totals.tenant_count, 2)
        self.assertEqual(totals.vacancy_count, 1)
        self.assertEqual(totals.soll_bk + totals.soll_hk + totals.soll_miete, totals.soll_gesamt)
        self.assertEqual(totals.diff_bk + totals.diff_hk + totals.diff_miete, totals.diff_gesamt)

    def test_empty_input_gives_zero_totals(self):
        report = SollIstService(self.period).calculate()

        self.assertEqual(report.results, ())
        self.assertEqual(calculate_totals([]), report.totals)
        self.assertEqual(report.totals.soll_gesamt, Decimal("0"))

    def test_without_property_scope_all_units_are_included(self):
        report = self._report(property_id="all")

        self.assertEqual(
            [result.tenant_id for result in report.results],
            ["t1", "t2", "t4", "vacancy-u3", "vacancy-u9"],
        )
        self.assertIsNone(report.property_id)

    def test_every_result_satisfies_invariants(self):
        for result in self._report(property_id=None).results:
            with self.subTest(tenant=result.tenant_id):
                assert_result_invariants(self, result)

    def test_identical_input_gives_identical_output(self):
        first = self._report()
        second = self._report()

        self.assertEqual(first.results, second.results)
        self.assertEqual(first.totals, second.totals)
        self.assertEqual(first.as_dict(), second.as_dict())

    def test_contract_field_names_in_serialized_result(self):
        payload = self._report().as_dict()
        row = payload["results"][0]

        self.assertEqual(payload["meta"]["month_count"], 3)
        self.assertEqual(payload["meta"]["property_id"], "p1")
        for key in (
            "tenantId", "unitId", "sollBk", "sollHk", "sollMiete", "sollBetrag", "istBk", "istHk",
            "istMiete", "habenBetrag", "saldo", "diffBk", "diffHk", "diffMiete", "diffGesamt",
            "ueberzahlung", "paymentCount", "isVacancy",
        ):
            self.assertIn(key, row)
        self.assertEqual(row["saldo"], "420.00")
        self.assertEqual(payload["totals"]["sollGesamt"], "5927.00")

    def test_module_entry_point_returns_result_list(self):
        results = calculate_tenant_soll_ist(
            year=2025,
            start_month=1,
            end_month=3,
            property_id="p1",
            config=SollIstConfig(),
            **self.data,
        )

        self.assertEqual([result.tenant_id for result in results], ["t1", "t2", "vacancy-u3"])

    def test_missing_identity_propagates(self):
        with self.assertRaises(InvalidRecordError):
            self._report(payments=[{"tenant_id": "t1", "amount": 10}])

    def test_random_portfolios_keep_invariants(self):
        rng = random.Random(99)
        for _ in range(40):
            units = [{"id": f"u{index}", "property_id": "p1"} for index in range(6)]
            tenants = [
                {
                    "id": f"t{index}",
                    "unit_id": f"u{index}",
                    "grundmiete": rng.randint(0, 120000) / 100,
                    "bk_vorschuss": rng.randint(0, 30000) / 100,
                    "hk_vorschuss": rng.randint(0, 20000) / 100,
                }
                for index in range(4)
            ]
            invoices = []
            for index in range(6):
                for month in range(1, 4):
                    if rng.random() < 0.4:
                        continue
                    invoices.append(
                        {
                            "id": f"i{index}-{month}",
                            "tenant_id": f"t{index}" if index < 4 else None,
                            "unit_id": f"u{index}",
                            "year": 2025,
                            "month": month,
                            "grundmiete": 0 if index >= 4 else rng.randint(0, 90000) / 100,
                            "betriebskosten": rng.randint(0, 20000) / 100,
                            "heizungskosten": rng.randint(0, 15000) / 100,
                            "gesamtbetrag": rng.randint(0, 150000) / 100,
                            "is_vacancy": index >= 4,
                            "paid_amount": rng.randint(0, 150000) / 100,
                        }
                    )
            payments = [
                {
                    "id": f"z{number}",
                    "tenant_id": f"t{rng.randint(0, 3)}",
                    "amount": rng.randint(0, 200000) / 100,
                    "payment_date": date(2025, rng.randint(1, 3), rng.randint(1, 28)),
                }
                for number in range(rng.randint(0, 10))
            ]

            report = SollIstService(self.period, config=SollIstConfig()).calculate(
                tenants=tenants,
                units=units,
                properties=[],
                invoices=invoices,
                payments=payments,
            )

            for result in report.results:
                assert_result_invariants(self, result)

    @override_settings(
        SOLL_IST_DEFAULT_UST={"bk": 20, "hk": 20, "miete": 20},
        SOLL_IST_TOLERANCE="500",
        SOLL_IST_VACANCY_PREFIX="leer-",
    )
    def test_settings_cannot_change_contract_figures(self):
        report = self._report()
        invoiced, fallback, vacancy = report.results

        self.assertEqual(fallback.soll_miete, Decimal("2640.00"))
        self.assertEqual(fallback.soll_bk, Decimal("495.00"))
        self.assertEqual(fallback.soll_hk, Decimal("360.00"))
        self.assertEqual(fallback.soll_betrag, Decimal("3495.00"))
        self.assertEqual(invoiced.ist_miete, Decimal("1230.00"))
        self.assertEqual(invoiced.saldo, Decimal("420.00"))
        self.assertEqual(vacancy.tenant_id, "leer-u3")
