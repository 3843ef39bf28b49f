from datetime import date
from decimal import Decimal

from django.test import TestCase

from core.exceptions import ConcurrentModification, InvalidTarget
from core.models import (
    Account,
    BankTransaction,
    Customer,
    Invoice,
    MatchMethod,
    MatchTargetType,
    Payment,
    ReconciliationHistoryEntry,
    SupplierInvoice,
)
from core.services.bank_reconciliation import (
    categorize_transaction,
    delete_transaction,
    list_transactions,
    match_transaction,
    reconcile_transaction,
    unmatch_transaction,
)
from core.services.payment_allocation import create_invoice_payment
from core.tests.helpers import LedgerFixtureMixin, make_bank_transaction, make_bill, make_invoice

INVOICE = MatchTargetType.INVOICE
SUPPLIER_INVOICE = MatchTargetType.SUPPLIER_INVOICE
ACCOUNT = MatchTargetType.ACCOUNT
Action = ReconciliationHistoryEntry.Action


class ReconciliationTestMixin(LedgerFixtureMixin):
    def setUp(self):
        self.create_ledger_fixture()
        self.invoice = make_invoice(self.business, self.customer, "INV-100", "1000.00")
        self.credit = make_bank_transaction(self.business, date=date(2024, 3, 15), description="Acme payment", amount="1000.00")
        self.debit = make_bank_transaction(
            self.business,
            date=date(2024, 3, 16),
            description="Rent",
            amount="250.00",
            direction=BankTransaction.Direction.DEBIT,
        )

    def _actions(self, bank_tx):
        return list(bank_tx.history_entries.order_by("id").values_list("action", flat=True))


class MatchTransactionTest(ReconciliationTestMixin, TestCase):
    def test_match_links_and_labels(self):
        tx = match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, notes="checked remittance")

        tx.refresh_from_db()
        self.assertEqual(tx.matched_invoice, self.invoice)
        self.assertIsNone(tx.matched_supplier_invoice)
        self.assertIsNone(tx.matched_account)
        self.assertEqual(tx.match_state, BankTransaction.MatchState.MATCHED)
        self.assertEqual(tx.match_method, MatchMethod.MANUAL)
        self.assertIsNotNone(tx.matched_at)
        self.assertEqual(tx.category_type, BankTransaction.CategoryType.CLIENT)
        self.assertEqual(tx.customer, self.customer)
        self.assertEqual(tx.category_invoice, self.invoice)
        self.assertEqual(tx.version, 1)

        entry = tx.history_entries.get()
        self.assertEqual(entry.action, Action.MATCHED)
        self.assertEqual((entry.matched_to_type, entry.matched_to_id), (INVOICE, self.invoice.pk))
        self.assertEqual(entry.actor, self.user)
        self.assertEqual(entry.notes, "checked remittance")

        # Matching alone moves no money.
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))
        self.assertFalse(Payment.objects.exists())

    def test_invalid_targets_are_rejected(self):
        other, other_customer = self.create_other_business()
        foreign = make_invoice(other, other_customer, "F-1", "1000.00")
        draft = make_invoice(self.business, self.customer, "INV-D", "10.00", status=Invoice.Status.DRAFT)
        cancelled = make_invoice(self.business, self.customer, "INV-C", "10.00", status=Invoice.Status.CANCELLED)
        paid = make_invoice(self.business, self.customer, "INV-P", "10.00", status=Invoice.Status.PAID, amount_paid="10.00")
        bill = make_bill(self.business, self.supplier, "B-1", "1000.00")
        closed_account = Account.objects.create(
            business=self.business,
            code="6900",
            name="Closed Expenses",
            type=Account.AccountType.EXPENSE,
            is_active=False,
        )

        cases = [
            (self.credit.pk, INVOICE, foreign.pk),
            (self.credit.pk, INVOICE, draft.pk),
            (self.credit.pk, INVOICE, cancelled.pk),
            (self.credit.pk, INVOICE, paid.pk),
            (self.credit.pk, SUPPLIER_INVOICE, bill.pk),
            (self.debit.pk, INVOICE, self.invoice.pk),
            (self.debit.pk, ACCOUNT, closed_account.pk),
            (self.credit.pk, "journal_entry", 1),
        ]
        for tx_id, target_type, target_id in cases:
            with self.subTest(target_type=target_type, target_id=target_id):
                with self.assertRaises(InvalidTarget):
                    match_transaction(self.business, self.user, tx_id, target_type, target_id)

        self.credit.refresh_from_db()
        self.assertEqual(self.credit.version, 0)
        self.assertFalse(ReconciliationHistoryEntry.objects.exists())

    def test_other_business_transaction_is_rejected(self):
        other, other_customer = self.create_other_business()
        foreign_tx = make_bank_transaction(other, date=date(2024, 3, 15), description="x", amount="5.00")
        with self.assertRaises(InvalidTarget):
            match_transaction(self.business, self.user, foreign_tx.pk, ACCOUNT, self.expense_account.pk)

    def test_account_match_requires_debit_to_expense_account(self):
        with self.assertRaises(InvalidTarget):
            match_transaction(self.business, self.user, self.credit.pk, ACCOUNT, self.expense_account.pk)
        with self.assertRaises(InvalidTarget):
            match_transaction(self.business, self.user, self.debit.pk, ACCOUNT, self.income_account.pk)

        match_transaction(self.business, self.user, self.debit.pk, ACCOUNT, self.expense_account.pk)

        self.credit.refresh_from_db()
        self.debit.refresh_from_db()
        self.assertIsNone(self.credit.matched_account)
        self.assertEqual(self.debit.matched_account, self.expense_account)
        self.assertEqual(self.debit.category_type, BankTransaction.CategoryType.ACCOUNT)
        self.assertEqual(self.debit.history_entries.count(), 1)

    def test_rematch_replaces_link_and_appends_history(self):
        second = make_invoice(self.business, self.customer, "INV-101", "1000.00")
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk)
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, second.pk)

        self.credit.refresh_from_db()
        self.assertEqual(self.credit.matched_invoice, second)
        entries = list(self.credit.history_entries.order_by("id"))
        self.assertEqual([e.matched_to_id for e in entries], [self.invoice.pk, second.pk])
        self.assertEqual(self.credit.version, 2)

    def test_reconciled_transaction_must_be_unmatched_first(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)
        second = make_invoice(self.business, self.customer, "INV-101", "1000.00")

        with self.assertRaises(InvalidTarget):
            match_transaction(self.business, self.user, self.credit.pk, INVOICE, second.pk)

    def test_stale_version_is_rejected(self):
        second = make_invoice(self.business, self.customer, "INV-101", "1000.00")
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk)

        with self.assertRaises(ConcurrentModification) as ctx:
            match_transaction(self.business, self.user, self.credit.pk, INVOICE, second.pk, expected_version=0)
        self.assertTrue(ctx.exception.retryable)

        self.credit.refresh_from_db()
        self.assertEqual(self.credit.matched_invoice, self.invoice)
        self.assertEqual(self.credit.history_entries.count(), 1)

    def test_matching_with_current_version(self):
        tx = match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, expected_version=0)
        self.assertEqual(tx.version, 1)


class ReconcileTransactionTest(ReconciliationTestMixin, TestCase):
    def test_reconcile_records_payment_and_leftover(self):
        tx = make_bank_transaction(self.business, date=date(2024, 3, 20), description="Acme overpayment", amount="1200.00", reference="RCPT-77")
        match_transaction(self.business, self.user, tx.pk, INVOICE, self.invoice.pk)

        reconcile_transaction(self.business, self.user, tx.pk)

        tx.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertTrue(tx.is_reconciled)
        self.assertIsNotNone(tx.reconciled_at)
        self.assertEqual(tx.match_state, BankTransaction.MatchState.RECONCILED)
        self.assertEqual(self.invoice.amount_paid, Decimal("1000.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.PAID)

        payment = tx.settlement_payment
        self.assertEqual(payment.amount, Decimal("1000.00"))
        self.assertEqual(payment.kind, Payment.Kind.RECEIVED)
        self.assertEqual(payment.reference, "RCPT-77")
        self.assertEqual(payment.payment_date, date(2024, 3, 20))
        self.assertEqual(payment.created_by, self.user)

        entry = tx.history_entries.filter(action=Action.RECONCILED).get()
        self.assertEqual(entry.notes, "200.00 of the bank amount was left unallocated.")

    def test_partial_settlement(self):
        tx = make_bank_transaction(self.business, date=date(2024, 3, 20), description="Acme instalment", amount="400.00")
        match_transaction(self.business, self.user, tx.pk, INVOICE, self.invoice.pk, auto_reconcile=True)

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("400.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.PART_PAID)
        self.assertEqual(self._actions(tx), [Action.MATCHED, Action.RECONCILED])

    def test_unreconcile_and_reconcile_again_pays_once(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk)
        reconcile_transaction(self.business, self.user, self.credit.pk)
        tx = reconcile_transaction(self.business, self.user, self.credit.pk, reconciled=False)

        self.assertFalse(tx.is_reconciled)
        self.assertIsNone(tx.reconciled_at)
        self.assertEqual(tx.match_state, BankTransaction.MatchState.MATCHED)

        reconcile_transaction(self.business, self.user, self.credit.pk)

        self.assertEqual(Payment.objects.count(), 1)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("1000.00"))
        self.assertEqual(
            self._actions(self.credit),
            [Action.MATCHED, Action.RECONCILED, Action.UNRECONCILED, Action.RECONCILED],
        )

    def test_unmatch_and_rematch_same_document_pays_once(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)
        unmatch_transaction(self.business, self.user, self.credit.pk)
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)

        self.assertEqual(Payment.objects.count(), 1)
        self.credit.refresh_from_db()
        self.assertTrue(self.credit.is_reconciled)
        self.assertIsNotNone(self.credit.settlement_payment)

    def test_settled_transaction_cannot_be_matched_to_another_target(self):
        second = make_invoice(self.business, self.customer, "INV-101", "1000.00")
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)
        first_payment = Payment.objects.get()
        unmatch_transaction(self.business, self.user, self.credit.pk)

        with self.assertRaisesMessage(InvalidTarget, "reverse the recorded payment first"):
            match_transaction(self.business, self.user, self.credit.pk, INVOICE, second.pk, auto_reconcile=True)

        self.credit.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(Payment.objects.count(), 1)
        self.assertEqual(self.credit.settlement_payment, first_payment)
        self.assertEqual(self.credit.match_state, BankTransaction.MatchState.UNMATCHED)
        self.assertEqual(second.amount_paid, Decimal("0.00"))
        self.assertEqual(self._actions(self.credit), [Action.MATCHED, Action.RECONCILED, Action.UNMATCHED])

    def test_reconcile_is_idempotent(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)
        reconcile_transaction(self.business, self.user, self.credit.pk)

        self.assertEqual(self.credit.history_entries.filter(action=Action.RECONCILED).count(), 1)
        self.assertEqual(Payment.objects.count(), 1)

    def test_document_settled_elsewhere_records_no_payment(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk)
        create_invoice_payment(
            business=self.business,
            amount="1000.00",
            allocations=[{"target_id": self.invoice.pk, "amount": "1000.00"}],
        )

        tx = reconcile_transaction(self.business, self.user, self.credit.pk)

        self.assertTrue(tx.is_reconciled)
        self.assertIsNone(tx.settlement_payment)
        self.assertEqual(Payment.objects.count(), 1)
        entry = tx.history_entries.filter(action=Action.RECONCILED).get()
        self.assertEqual(entry.notes, "INV-100 was already settled; no payment recorded.")

    def test_account_match_reconciles_without_payment(self):
        match_transaction(self.business, self.user, self.debit.pk, ACCOUNT, self.expense_account.pk, auto_reconcile=True)

        self.debit.refresh_from_db()
        self.assertTrue(self.debit.is_reconciled)
        self.assertIsNone(self.debit.settlement_payment)
        self.assertFalse(Payment.objects.exists())

    def test_unmatched_transaction_can_be_reconciled(self):
        tx = reconcile_transaction(self.business, self.user, self.debit.pk)
        self.assertEqual(tx.match_state, BankTransaction.MatchState.RECONCILED)
        entry = tx.history_entries.get()
        self.assertEqual(entry.matched_to_type, "")
        self.assertIsNone(entry.matched_to_id)

    def test_supplier_invoice_reconcile_records_payment_made(self):
        bill = make_bill(self.business, self.supplier, "B-7", "250.00")
        match_transaction(self.business, self.user, self.debit.pk, SUPPLIER_INVOICE, bill.pk, auto_reconcile=True)

        bill.refresh_from_db()
        self.debit.refresh_from_db()
        self.assertEqual(bill.status, SupplierInvoice.Status.PAID)
        self.assertEqual(self.debit.category_type, BankTransaction.CategoryType.SUPPLIER)
        payment = self.debit.settlement_payment
        self.assertEqual(payment.kind, Payment.Kind.MADE)
        self.assertEqual(payment.supplier, self.supplier)
        self.assertEqual(payment.allocations.get().supplier_invoice, bill)

    def test_reconcile_with_stale_version(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk)
        with self.assertRaises(ConcurrentModification):
            reconcile_transaction(self.business, self.user, self.credit.pk, expected_version=0)
        self.assertFalse(Payment.objects.exists())


class UnmatchTransactionTest(ReconciliationTestMixin, TestCase):
    def test_unmatch_clears_link_and_keeps_payment(self):
        match_transaction(self.business, self.user, self.credit.pk, INVOICE, self.invoice.pk, auto_reconcile=True)
        tx = unmatch_transaction(self.business, self.user, self.credit.pk, notes="wrong customer")

        self.assertEqual(tx.match_state, BankTransaction.MatchState.UNMATCHED)
        self.assertEqual(tx.match_method, "")
        self.assertIsNone(tx.matched_at)
        self.assertEqual(Payment.objects.count(), 1)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("1000.00"))

        entry = tx.history_entries.filter(action=Action.UNMATCHED).get()
        self.assertEqual((entry.matched_to_type, entry.matched_to_id), (INVOICE, self.invoice.pk))
        self.assertEqual(entry.notes, "wrong customer")

    def test_unmatch_requires_a_match(self):
        with self.assertRaises(InvalidTarget):
            unmatch_transaction(self.business, self.user, self.credit.pk)


class CategorizeAndDeleteTest(ReconciliationTestMixin, TestCase):
    def test_categorize_client_with_invoice(self):
        tx = categorize_transaction(
            self.business,
            self.user,
            self.credit.pk,
            BankTransaction.CategoryType.CLIENT,
            self.customer.pk,
            invoice_id=self.invoice.pk,
        )
        self.assertEqual(tx.category_type, BankTransaction.CategoryType.CLIENT)
        self.assertEqual(tx.customer, self.customer)
        self.assertEqual(tx.category_invoice, self.invoice)
        self.assertEqual(tx.match_state, BankTransaction.MatchState.UNMATCHED)
        self.assertFalse(tx.history_entries.exists())

    def test_categorize_account_and_clear(self):
        categorize_transaction(self.business, self.user, self.debit.pk, BankTransaction.CategoryType.ACCOUNT, self.expense_account.pk)
        tx = categorize_transaction(self.business, self.user, self.debit.pk, BankTransaction.CategoryType.NONE)

        self.assertEqual(tx.category_type, BankTransaction.CategoryType.NONE)
        self.assertIsNone(tx.account)
        self.assertEqual(tx.version, 2)

    def test_categorize_rejects_bad_input(self):
        other, other_customer = self.create_other_business()
        another = Customer.objects.create(business=self.business, name="Second Customer")
        cases = [
            ("VENDOR", self.customer.pk, None),
            (BankTransaction.CategoryType.CLIENT, None, None),
            (BankTransaction.CategoryType.CLIENT, other_customer.pk, None),
            (BankTransaction.CategoryType.CLIENT, another.pk, self.invoice.pk),
            (BankTransaction.CategoryType.SUPPLIER, self.customer.pk + 1000, None),
        ]
        for category_type, category_id, invoice_id in cases:
            with self.subTest(category_type=category_type, category_id=category_id):
                with self.assertRaises(InvalidTarget):
                    categorize_transaction(self.business, self.user, self.credit.pk, category_type, category_id, invoice_id)

    def test_delete_is_soft(self):
        delete_transaction(self.business, self.user, self.debit.pk)

        self.debit.refresh_from_db()
        self.assertTrue(self.debit.is_deleted)
        self.assertIsNotNone(self.debit.deleted_at)
        self.assertNotIn(self.debit, list(list_transactions(self.business)))
        with self.assertRaises(InvalidTarget):
            match_transaction(self.business, self.user, self.debit.pk, ACCOUNT, self.expense_account.pk)

    def test_reconciled_transaction_cannot_be_deleted(self):
        reconcile_transaction(self.business, self.user, self.debit.pk)
        with self.assertRaises(InvalidTarget):
            delete_transaction(self.business, self.user, self.debit.pk)

    def test_list_filters(self):
        early = make_bank_transaction(self.business, date=date(2024, 1, 2), description="Early", amount="3.00")
        match_transaction(self.business, self.user, self.debit.pk, ACCOUNT, self.expense_account.pk)
        reconcile_transaction(self.business, self.user, early.pk)

        def ids(**filters):
            return [tx.pk for tx in list_transactions(self.business, **filters)]

        self.assertEqual(ids(), [self.debit.pk, self.credit.pk, early.pk])
        self.assertEqual(ids(match_state=BankTransaction.MatchState.UNMATCHED), [self.credit.pk])
        self.assertEqual(ids(match_state=BankTransaction.MatchState.MATCHED), [self.debit.pk])
        self.assertEqual(ids(match_state=BankTransaction.MatchState.RECONCILED), [early.pk])
        self.assertEqual(ids(reconciled=False), [self.debit.pk, self.credit.pk])
        self.assertEqual(ids(start=date(2024, 3, 1), end=date(2024, 3, 15)), [self.credit.pk])
