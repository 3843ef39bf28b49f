from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from core.exceptions import InvalidTarget
from core.models import BankTransaction, Customer, Invoice, MatchTargetType, SupplierInvoice
from core.services.bank_matching import Suggestion, get_suggestions
from core.services.matching_policy import get_matching_policy
from core.tests.helpers import LedgerFixtureMixin, make_bank_transaction, make_bill, make_invoice


class SuggestionEngineTest(LedgerFixtureMixin, TestCase):
    def setUp(self):
        self.create_ledger_fixture()
        self.invoice = make_invoice(
            self.business,
            self.customer,
            "INV-0042",
            "1000.00",
            issue_date=date(2024, 2, 25),
            due_date=date(2024, 3, 10),
        )
        self.tx = make_bank_transaction(
            self.business,
            date=date(2024, 3, 15),
            description="INV-0042 payment",
            amount="1000.00",
        )

    def test_exact_reference_is_top_suggestion(self):
        suggestions = get_suggestions(self.business, self.tx.pk)

        self.assertGreaterEqual(len(suggestions), 1)
        top = suggestions[0]
        self.assertEqual((top.type, top.id), (MatchTargetType.INVOICE, self.invoice.pk))
        self.assertGreaterEqual(top.score, 90)
        self.assertEqual(top.amount, Decimal("1000.00"))
        self.assertEqual(top.document_number, "INV-0042")
        self.assertEqual(top.counterparty, "Acme Retail")

    def test_closed_and_unsent_documents_are_not_suggested(self):
        paid = make_invoice(self.business, self.customer, "INV-0043", "1000.00", status=Invoice.Status.PAID, amount_paid="1000.00")
        draft = make_invoice(self.business, self.customer, "INV-0044", "1000.00", status=Invoice.Status.DRAFT)
        cancelled = make_invoice(self.business, self.customer, "INV-0045", "1000.00", status=Invoice.Status.CANCELLED)
        bill = make_bill(self.business, self.supplier, "INV-0042", "1000.00")

        ids = {(s.type, s.id) for s in get_suggestions(self.business, self.tx.pk)}

        for document in (paid, draft, cancelled):
            self.assertNotIn((MatchTargetType.INVOICE, document.pk), ids)
        self.assertNotIn((MatchTargetType.SUPPLIER_INVOICE, bill.pk), ids)
        self.assertFalse(any(t == MatchTargetType.ACCOUNT for t, _ in ids))

    def test_low_scores_are_hidden(self):
        globex = Customer.objects.create(business=self.business, name="Globex")
        unrelated = make_invoice(
            self.business,
            globex,
            "Z-77",
            "5000.00",
            issue_date=date(2022, 12, 1),
            due_date=date(2023, 1, 1),
        )

        ids = [s.id for s in get_suggestions(self.business, self.tx.pk)]
        self.assertNotIn(unrelated.pk, ids)

    def test_results_are_capped(self):
        for n in range(3):
            make_invoice(
                self.business,
                self.customer,
                f"INV-10{n}",
                "1000.00",
                issue_date=date(2024, 3, 1),
                due_date=date(2024, 3, 14),
            )
        policy = get_matching_policy(max_suggestions=2)

        suggestions = get_suggestions(self.business, self.tx.pk, policy=policy)
        self.assertEqual(len(suggestions), 2)
        self.assertEqual(suggestions[0].id, self.invoice.pk)

    def test_debit_suggests_payables_and_expense_accounts(self):
        today = timezone.localdate()
        bill = make_bill(self.business, self.supplier, "B-100", "250.00", issue_date=today)
        tx = make_bank_transaction(
            self.business,
            date=today,
            description="Office rent",
            amount="250.00",
            direction=BankTransaction.Direction.DEBIT,
        )

        suggestions = get_suggestions(self.business, tx.pk)
        found = [(s.type, s.id) for s in suggestions]

        self.assertEqual(found[0], (MatchTargetType.SUPPLIER_INVOICE, bill.pk))
        self.assertIn((MatchTargetType.ACCOUNT, self.expense_account.pk), found)
        self.assertNotIn((MatchTargetType.ACCOUNT, self.income_account.pk), found)
        self.assertNotIn((MatchTargetType.INVOICE, self.invoice.pk), found)
        account = next(s for s in suggestions if s.type == MatchTargetType.ACCOUNT)
        self.assertEqual(account.score, 30)
        self.assertIsNone(account.amount)

    def test_partly_paid_bill_is_scored_on_its_balance(self):
        bill = make_bill(
            self.business,
            self.supplier,
            "B-200",
            "500.00",
            status=SupplierInvoice.Status.PART_PAID,
            amount_paid="200.00",
        )
        tx = make_bank_transaction(
            self.business,
            date=timezone.localdate(),
            description="Paper supplies B-200",
            amount="300.00",
            direction=BankTransaction.Direction.DEBIT,
        )
        top = get_suggestions(self.business, tx.pk)[0]
        self.assertEqual((top.type, top.id), (MatchTargetType.SUPPLIER_INVOICE, bill.pk))
        self.assertEqual(top.amount, Decimal("300.00"))

    def test_other_business_transaction_is_rejected(self):
        other, _ = self.create_other_business()
        foreign = make_bank_transaction(other, date=date(2024, 3, 15), description="Deposit", amount="10.00")

        with self.assertRaises(InvalidTarget):
            get_suggestions(self.business, foreign.pk)

    def test_deleted_transaction_is_rejected(self):
        self.tx.is_deleted = True
        self.tx.save(update_fields=["is_deleted"])
        with self.assertRaises(InvalidTarget):
            get_suggestions(self.business, self.tx.pk)

    def test_suggestions_are_not_persisted(self):
        get_suggestions(self.business, self.tx.pk)
        self.tx.refresh_from_db()
        self.assertEqual(self.tx.match_state, BankTransaction.MatchState.UNMATCHED)
        self.assertEqual(self.tx.version, 0)


class SuggestionOrderingTest(SimpleTestCase):
    def _suggestion(self, score, date_distance, amount_difference, id_, type_=MatchTargetType.INVOICE):
        return Suggestion(
            type=type_,
            id=id_,
            score=score,
            amount=Decimal("100.00"),
            date=None,
            counterparty="",
            document_number="",
            date_distance=date_distance,
            amount_difference=amount_difference,
        )

    def test_ties_break_on_date_then_amount_then_id(self):
        a = self._suggestion(80, 3, Decimal("0.00"), 4)
        b = self._suggestion(80, 1, Decimal("5.00"), 9)
        c = self._suggestion(80, 1, Decimal("0.00"), 7)
        d = self._suggestion(80, 1, Decimal("0.00"), 2)
        e = self._suggestion(95, 20, Decimal("50.00"), 99)

        ordered = sorted([a, b, c, d, e], key=Suggestion.sort_key)
        self.assertEqual([s.id for s in ordered], [99, 2, 7, 9, 4])

    def test_suggestions_without_dates_sort_last_among_equals(self):
        dated = self._suggestion(30, 10, Decimal("1.00"), 5, MatchTargetType.SUPPLIER_INVOICE)
        undated = self._suggestion(30, None, None, 1, MatchTargetType.ACCOUNT)
        self.assertEqual(sorted([undated, dated], key=Suggestion.sort_key), [dated, undated])
