"""
Tests for the payment allocation engine.
"""

from datetime import date, timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from core.exceptions import AllocationMismatch, InvalidTarget
from core.ledger_queries import OpenDocument
from core.models import Customer, Invoice, MatchTargetType, Payment, PaymentAllocation, SupplierInvoice
from core.services.payment_allocation import (
    auto_allocate,
    create_invoice_payment,
    create_payment,
    create_supplier_payment,
    list_document_payments,
    plan_auto_allocation,
)
from core.tests.helpers import LedgerFixtureMixin, make_bill, make_invoice


class CreatePaymentTest(LedgerFixtureMixin, TestCase):
    def setUp(self):
        self.create_ledger_fixture()
        self.invoice = make_invoice(self.business, self.customer, "INV-1001", "1000.00")

    def _pay(self, amount, allocations, **kwargs):
        return create_invoice_payment(
            business=self.business,
            amount=amount,
            allocations=allocations,
            actor=self.user,
            **kwargs,
        )

    def test_partial_then_full_payment(self):
        """400 then 600 against a 1000 invoice ends PAID."""
        self._pay("400.00", [{"target_id": self.invoice.pk, "amount": "400.00"}])
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("400.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.PART_PAID)
        self.assertEqual(self.invoice.version, 1)

        self._pay("600.00", [{"target_id": self.invoice.pk, "amount": "600.00"}])
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("1000.00"))
        self.assertEqual(self.invoice.status, Invoice.Status.PAID)
        self.assertEqual(self.invoice.version, 2)

    def test_payment_records_party_and_metadata(self):
        payment = self._pay(
            "250.00",
            [{"target_id": self.invoice.pk, "amount": "250.00"}],
            reference="CHQ 881",
            payment_date=date(2024, 5, 1),
            currency_code="EUR",
            fx_rate="1.085000",
        )
        self.assertEqual(payment.kind, Payment.Kind.RECEIVED)
        self.assertEqual(payment.customer, self.customer)
        self.assertIsNone(payment.supplier)
        self.assertEqual(payment.reference, "CHQ 881")
        self.assertEqual(payment.payment_date, date(2024, 5, 1))
        self.assertEqual(payment.currency_code, "EUR")
        self.assertEqual(payment.fx_rate, Decimal("1.085000"))
        self.assertEqual(payment.created_by, self.user)

    def test_split_payment_across_invoices(self):
        second = make_invoice(self.business, self.customer, "INV-1002", "800.00")
        payment = self._pay(
            "1500.00",
            [
                {"target_id": self.invoice.pk, "amount": "1000.00"},
                {"target_id": second.pk, "amount": "500.00"},
            ],
        )
        self.invoice.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.invoice.status, Invoice.Status.PAID)
        self.assertEqual(second.amount_paid, Decimal("500.00"))
        self.assertEqual(second.status, Invoice.Status.PART_PAID)
        total_allocated = sum(a.amount for a in payment.allocations.all())
        self.assertEqual(total_allocated, payment.amount)
        self.assertEqual(payment.allocations.count(), 2)

    def test_allocations_must_sum_to_payment_amount(self):
        with self.assertRaises(AllocationMismatch):
            self._pay("500.00", [{"target_id": self.invoice.pk, "amount": "400.00"}])
        self.assertFalse(Payment.objects.exists())
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))

    def test_non_positive_amounts_rejected(self):
        with self.assertRaises(AllocationMismatch):
            self._pay("0.00", [{"target_id": self.invoice.pk, "amount": "0.00"}])
        with self.assertRaises(AllocationMismatch):
            self._pay("100.00", [])

    def test_over_allocation_rejected_without_partial_writes(self):
        second = make_invoice(self.business, self.customer, "INV-1002", "100.00")
        with self.assertRaises(AllocationMismatch):
            self._pay(
                "1200.00",
                [
                    {"target_id": self.invoice.pk, "amount": "1000.00"},
                    {"target_id": second.pk, "amount": "200.00"},
                ],
            )
        self.invoice.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))
        self.assertEqual(second.amount_paid, Decimal("0.00"))
        self.assertFalse(Payment.objects.exists())
        self.assertFalse(PaymentAllocation.objects.exists())

    def test_duplicate_target_rejected(self):
        with self.assertRaises(AllocationMismatch):
            self._pay(
                "200.00",
                [
                    {"target_id": self.invoice.pk, "amount": "100.00"},
                    {"target_id": self.invoice.pk, "amount": "100.00"},
                ],
            )

    def test_foreign_business_invoice_rejected(self):
        other, other_customer = self.create_other_business()
        foreign = make_invoice(other, other_customer, "INV-X", "100.00")
        with self.assertRaises(InvalidTarget):
            self._pay("100.00", [{"target_id": foreign.pk, "amount": "100.00"}])
        foreign.refresh_from_db()
        self.assertEqual(foreign.amount_paid, Decimal("0.00"))

    def test_draft_and_cancelled_invoices_rejected(self):
        draft = make_invoice(self.business, self.customer, "INV-D", "100.00", status=Invoice.Status.DRAFT)
        cancelled = make_invoice(self.business, self.customer, "INV-C", "100.00", status=Invoice.Status.CANCELLED)
        for document in (draft, cancelled):
            with self.assertRaises(InvalidTarget):
                self._pay("100.00", [{"target_id": document.pk, "amount": "100.00"}])

    def test_party_mismatch_rejected(self):
        other_customer = Customer.objects.create(business=self.business, name="Globex")
        with self.assertRaises(InvalidTarget):
            self._pay(
                "100.00",
                [{"target_id": self.invoice.pk, "amount": "100.00"}],
                customer_id=other_customer.pk,
            )

    def test_mixed_customers_without_party_rejected(self):
        other_customer = Customer.objects.create(business=self.business, name="Globex")
        other_invoice = make_invoice(self.business, other_customer, "INV-G", "100.00")
        with self.assertRaises(InvalidTarget):
            self._pay(
                "200.00",
                [
                    {"target_id": self.invoice.pk, "amount": "100.00"},
                    {"target_id": other_invoice.pk, "amount": "100.00"},
                ],
            )

    def test_partially_paid_after_due_date_is_overdue(self):
        late = make_invoice(
            self.business,
            self.customer,
            "INV-LATE",
            "1000.00",
            due_date=timezone.localdate() - timedelta(days=1),
        )
        self._pay("100.00", [{"target_id": late.pk, "amount": "100.00"}])
        late.refresh_from_db()
        self.assertEqual(late.status, Invoice.Status.OVERDUE)

    def test_amount_paid_stays_within_total_across_many_payments(self):
        for _ in range(3):
            self._pay("300.00", [{"target_id": self.invoice.pk, "amount": "300.00"}])
        with self.assertRaises(AllocationMismatch):
            self._pay("300.00", [{"target_id": self.invoice.pk, "amount": "300.00"}])
        self._pay("100.00", [{"target_id": self.invoice.pk, "amount": "100.00"}])

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, self.invoice.total)
        self.assertEqual(self.invoice.status, Invoice.Status.PAID)
        for payment in Payment.objects.all():
            allocated = sum(a.amount for a in payment.allocations.all())
            self.assertLessEqual(abs(allocated - payment.amount), Decimal("0.005"))

    def test_supplier_payment_settles_bill(self):
        bill = make_bill(self.business, self.supplier, "BILL-7", "300.00")
        payment = create_supplier_payment(
            business=self.business,
            supplier_id=self.supplier.pk,
            amount="300.00",
            allocations=[{"target_id": bill.pk, "amount": "300.00"}],
        )
        bill.refresh_from_db()
        self.assertEqual(payment.kind, Payment.Kind.MADE)
        self.assertEqual(payment.supplier, self.supplier)
        self.assertEqual(bill.status, SupplierInvoice.Status.PAID)
        self.assertEqual(payment.allocations.get().supplier_invoice, bill)

    def test_invoice_ids_are_not_valid_bill_targets(self):
        with self.assertRaises(InvalidTarget):
            create_payment(
                business=self.business,
                kind=Payment.Kind.MADE,
                amount="100.00",
                allocations=[{"target_id": self.invoice.pk, "amount": "100.00"}],
            )

    def test_payments_are_immutable(self):
        payment = self._pay("100.00", [{"target_id": self.invoice.pk, "amount": "100.00"}])
        payment.amount = Decimal("50.00")
        with self.assertRaises(ValidationError):
            payment.save()


class AutoAllocateTest(SimpleTestCase):
    def _doc(self, doc_id, total, due, paid="0.00"):
        return OpenDocument(
            id=doc_id,
            kind=MatchTargetType.INVOICE,
            business_id=1,
            party_id=1,
            total=Decimal(total),
            amount_paid=Decimal(paid),
            issue_date=due - timedelta(days=30),
            due_date=due,
            counterparty_name="Acme Retail",
            document_number=f"INV-{doc_id}",
            status="SENT",
        )

    def test_oldest_due_first(self):
        """1500 over 1000 and 800 fills the older invoice first."""
        targets = [
            self._doc(2, "800.00", date(2024, 2, 1)),
            self._doc(1, "1000.00", date(2024, 1, 1)),
        ]
        plan = auto_allocate(Decimal("1500.00"), targets)
        self.assertEqual([(a.target_id, a.amount) for a in plan.allocations], [(1, Decimal("1000.00")), (2, Decimal("500.00"))])
        self.assertEqual(plan.unallocated, Decimal("0.00"))
        self.assertEqual(plan.allocated, Decimal("1500.00"))

    def test_leftover_is_surfaced(self):
        targets = [self._doc(1, "1000.00", date(2024, 1, 1)), self._doc(2, "800.00", date(2024, 2, 1))]
        plan = auto_allocate("2000.00", targets)
        self.assertEqual(plan.allocated, Decimal("1800.00"))
        self.assertEqual(plan.unallocated, Decimal("200.00"))

    def test_caps_at_outstanding(self):
        targets = [self._doc(1, "1000.00", date(2024, 1, 1), paid="900.00")]
        plan = auto_allocate("250.00", targets)
        self.assertEqual(plan.allocations[0].amount, Decimal("100.00"))
        self.assertEqual(plan.unallocated, Decimal("150.00"))

    def test_zero_amount_allocates_nothing(self):
        plan = auto_allocate("0", [self._doc(1, "1000.00", date(2024, 1, 1))])
        self.assertEqual(plan.allocations, [])
        self.assertEqual(plan.unallocated, Decimal("0.00"))


class PlanAndHistoryTest(LedgerFixtureMixin, TestCase):
    def setUp(self):
        self.create_ledger_fixture()

    def test_plan_uses_open_documents_of_the_customer(self):
        older = make_invoice(self.business, self.customer, "INV-1", "1000.00", due_date=date(2030, 1, 1))
        newer = make_invoice(self.business, self.customer, "INV-2", "800.00", due_date=date(2030, 2, 1))
        other_customer = Customer.objects.create(business=self.business, name="Globex")
        make_invoice(self.business, other_customer, "INV-3", "50.00", due_date=date(2029, 1, 1))
        make_invoice(self.business, self.customer, "INV-4", "50.00", due_date=date(2029, 1, 1), status=Invoice.Status.DRAFT)

        plan = plan_auto_allocation(
            business=self.business,
            kind=Payment.Kind.RECEIVED,
            amount="1500.00",
            party_id=self.customer.pk,
        )
        self.assertEqual(
            [(a.target_id, a.amount) for a in plan.allocations],
            [(older.pk, Decimal("1000.00")), (newer.pk, Decimal("500.00"))],
        )
        self.assertEqual(plan.unallocated, Decimal("0.00"))

    def test_plan_can_be_recorded_as_a_payment(self):
        invoice = make_invoice(self.business, self.customer, "INV-1", "1000.00")
        plan = plan_auto_allocation(business=self.business, kind=Payment.Kind.RECEIVED, amount="600.00")
        create_invoice_payment(business=self.business, amount=plan.allocated, allocations=plan.allocations)
        invoice.refresh_from_db()
        self.assertEqual(invoice.amount_paid, Decimal("600.00"))

    def test_list_document_payments_oldest_first(self):
        invoice = make_invoice(self.business, self.customer, "INV-1", "1000.00")
        create_invoice_payment(
            business=self.business,
            amount="300.00",
            payment_date=date(2024, 3, 5),
            allocations=[{"target_id": invoice.pk, "amount": "300.00"}],
        )
        create_invoice_payment(
            business=self.business,
            amount="200.00",
            payment_date=date(2024, 3, 1),
            allocations=[{"target_id": invoice.pk, "amount": "200.00"}],
        )
        rows = list_document_payments(invoice)
        self.assertEqual([row["payment_date"] for row in rows], [date(2024, 3, 1), date(2024, 3, 5)])
        self.assertEqual([row["allocated_amount"] for row in rows], [Decimal("200.00"), Decimal("300.00")])
