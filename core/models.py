from decimal import Decimal
import re
from typing import TYPE_CHECKING, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

if TYPE_CHECKING:
    from django.db.models import Manager


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Tolerance used when comparing allocation sums and settled balances.
PAYMENT_EPSILON = Decimal("0.005")


def derive_payment_status(*, total, amount_paid, due_date, today, unpaid_status: str) -> str:
    """
    Status of an open receivable/payable as a pure function of its balances.

    PAID once the balance is settled within PAYMENT_EPSILON; OVERDUE when anything is
    still owed after the due date; PART_PAID when some but not all has been paid;
    otherwise the document's unpaid status (SENT for invoices, UNPAID for bills).
    """
    total = total or ZERO
    paid = amount_paid or ZERO
    if abs(total - paid) <= PAYMENT_EPSILON:
        return "PAID"
    if due_date is not None and today is not None and due_date < today:
        return "OVERDUE"
    if paid > 0:
        return "PART_PAID"
    return unpaid_status


class MatchTargetType(models.TextChoices):
    INVOICE = "invoice", "Invoice"
    SUPPLIER_INVOICE = "supplier_invoice", "Supplier invoice"
    ACCOUNT = "account", "Account"


class MatchMethod(models.TextChoices):
    MANUAL = "manual", "Manual"
    AUTO_RULE = "auto_rule", "Automatic"
    SUGGESTION = "suggestion", "Accepted suggestion"


class Business(models.Model):
    name = models.CharField(max_length=255)
    currency = models.CharField(max_length=3, default="USD")
    owner_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="businesses",
    )
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name


class Customer(models.Model):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="customers",
    )
    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=255, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"],
                name="uniq_customer_per_business_name",
            )
        ]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="suppliers",
    )
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "name"],
                name="uniq_supplier_per_business_name",
            )
        ]

    def __str__(self):
        return self.name


class Account(models.Model):
    class AccountType(models.TextChoices):
        ASSET = "ASSET", "Asset"
        LIABILITY = "LIABILITY", "Liability"
        EQUITY = "EQUITY", "Equity"
        INCOME = "INCOME", "Income"
        EXPENSE = "EXPENSE", "Expense"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="accounts",
    )
    code = models.CharField(
        max_length=20,
        blank=True,
        help_text="Optional short code like 1010, 4010, etc.",
    )
    name = models.CharField(max_length=255)
    type = models.CharField(
        max_length=10,
        choices=AccountType.choices,
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["type", "code", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "code"],
                name="unique_account_code_per_business",
            )
        ]

    def __str__(self):
        return f"{self.code} – {self.name}" if self.code else self.name


class SettleableDocument(models.Model):
    """
    Shared balance fields for receivables and payables.

    `version` is bumped on every balance change so writers can detect a stale read.
    """

    issue_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField(blank=True, null=True)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    currency_code = models.CharField(max_length=3, blank=True, default="")
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    UNPAID_STATUS = ""

    class Meta:
        abstract = True

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, (self.total or ZERO) - (self.amount_paid or ZERO))

    @property
    def is_open(self) -> bool:
        """Open documents accept matches and allocations."""
        return self.status not in (self.Status.DRAFT, self.Status.CANCELLED, self.Status.PAID)

    def compute_status(self, today=None) -> str:
        if self.status in (self.Status.DRAFT, self.Status.CANCELLED):
            return self.status
        return derive_payment_status(
            total=self.total,
            amount_paid=self.amount_paid,
            due_date=self.due_date,
            today=today or timezone.localdate(),
            unpaid_status=self.UNPAID_STATUS,
        )

    def clean(self):
        paid = self.amount_paid or ZERO
        if paid < 0 or paid > (self.total or ZERO):
            raise ValidationError({"amount_paid": "Amount paid must be between zero and the document total."})


class Invoice(SettleableDocument):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        SENT = "SENT", "Sent"
        PART_PAID = "PART_PAID", "Partially paid"
        PAID = "PAID", "Paid"
        OVERDUE = "OVERDUE", "Overdue"
        CANCELLED = "CANCELLED", "Cancelled"

    UNPAID_STATUS = Status.SENT

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="invoices",
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=50)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )

    class Meta:
        ordering = ["-issue_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "invoice_number"],
                name="uniq_invoice_number_per_business",
            ),
            models.CheckConstraint(
                condition=Q(amount_paid__gte=0) & Q(amount_paid__lte=F("total")),
                name="invoice_amount_paid_within_total",
            ),
        ]

    def __str__(self):
        return self.invoice_number

    @property
    def counterparty_name(self) -> str:
        return self.customer.name if self.customer_id else ""


class SupplierInvoice(SettleableDocument):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        UNPAID = "UNPAID", "Unpaid"
        PART_PAID = "PART_PAID", "Partially paid"
        PAID = "PAID", "Paid"
        OVERDUE = "OVERDUE", "Overdue"
        CANCELLED = "CANCELLED", "Cancelled"

    UNPAID_STATUS = Status.UNPAID

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="supplier_invoices",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="supplier_invoices",
    )
    invoice_number = models.CharField(
        max_length=50,
        help_text="The supplier's own document number.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )

    class Meta:
        ordering = ["-issue_date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "supplier", "invoice_number"],
                name="uniq_supplier_invoice_number",
            ),
            models.CheckConstraint(
                condition=Q(amount_paid__gte=0) & Q(amount_paid__lte=F("total")),
                name="supplier_invoice_amount_paid_within_total",
            ),
        ]

    def __str__(self):
        return self.invoice_number

    @property
    def counterparty_name(self) -> str:
        return self.supplier.name if self.supplier_id else ""


class BankStatementImport(models.Model):
    class ImportStatus(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PROCESSING = "PROCESSING", "Processing"
        COMPLETED = "COMPLETED", "Completed"
        FAILED = "FAILED", "Failed"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_statement_imports",
    )
    file_name = models.CharField(max_length=255, blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=ImportStatus.choices,
        default=ImportStatus.PENDING,
    )
    imported_count = models.PositiveIntegerField(default=0)
    duplicate_count = models.PositiveIntegerField(default=0)
    skipped_count = models.PositiveIntegerField(default=0)
    errors = models.JSONField(default=list, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_statement_imports",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.file_name or 'statement'} ({self.status})"


class BankTransaction(models.Model):
    class Direction(models.TextChoices):
        CREDIT = "CREDIT", "Credit (money in)"
        DEBIT = "DEBIT", "Debit (money out)"

    class CategoryType(models.TextChoices):
        NONE = "NONE", "Uncategorized"
        CLIENT = "CLIENT", "Client"
        SUPPLIER = "SUPPLIER", "Supplier"
        ACCOUNT = "ACCOUNT", "Account"

    class MatchState(models.TextChoices):
        UNMATCHED = "UNMATCHED", "Unmatched"
        MATCHED = "MATCHED", "Matched"
        RECONCILED = "RECONCILED", "Reconciled"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_transactions",
    )
    statement_import = models.ForeignKey(
        BankStatementImport,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_transactions",
    )
    date = models.DateField(db_index=True)
    description = models.CharField(max_length=512)
    normalized_description = models.CharField(
        max_length=512,
        help_text="Lowercased, whitespace-collapsed description used for deduplication",
    )
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Always positive; see direction",
    )
    direction = models.CharField(max_length=6, choices=Direction.choices)
    reference = models.CharField(max_length=255, blank=True, default="")

    is_reconciled = models.BooleanField(default=False, db_index=True)
    reconciled_at = models.DateTimeField(null=True, blank=True)

    # Lightweight labelling, independent of matching.
    category_type = models.CharField(
        max_length=10,
        choices=CategoryType.choices,
        default=CategoryType.NONE,
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_transactions",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bank_transactions",
    )
    account = models.ForeignKey(
        Account,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="categorized_bank_transactions",
    )
    category_invoice = models.ForeignKey(
        Invoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    category_supplier_invoice = models.ForeignKey(
        SupplierInvoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    # At most one match target is set at a time.
    matched_invoice = models.ForeignKey(
        Invoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="matched_bank_transactions",
    )
    matched_supplier_invoice = models.ForeignKey(
        SupplierInvoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="matched_bank_transactions",
    )
    matched_account = models.ForeignKey(
        Account,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="matched_bank_transactions",
    )
    match_method = models.CharField(
        max_length=20,
        choices=MatchMethod.choices,
        blank=True,
        default="",
    )
    matched_at = models.DateTimeField(null=True, blank=True)
    settlement_payment = models.ForeignKey(
        "core.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="settled_bank_transactions",
        help_text="Payment created when this transaction was reconciled against a document",
    )

    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["business", "date", "normalized_description", "amount", "direction"],
                name="uniq_bank_transaction_dedup_key",
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="bank_transaction_amount_positive",
            ),
        ]

    def __str__(self):
        return f"{self.date} – {self.description}"

    @staticmethod
    def normalize_description(value: str) -> str:
        return re.sub(r"\s+", " ", (value or "").strip()).lower()

    @property
    def match_state(self) -> str:
        if self.is_reconciled:
            return self.MatchState.RECONCILED
        if self.matched_target_type:
            return self.MatchState.MATCHED
        return self.MatchState.UNMATCHED

    @property
    def matched_target_type(self) -> Optional[str]:
        if self.matched_invoice_id:
            return MatchTargetType.INVOICE
        if self.matched_supplier_invoice_id:
            return MatchTargetType.SUPPLIER_INVOICE
        if self.matched_account_id:
            return MatchTargetType.ACCOUNT
        return None

    @property
    def matched_target_id(self) -> Optional[int]:
        return self.matched_invoice_id or self.matched_supplier_invoice_id or self.matched_account_id

    if TYPE_CHECKING:
        id: int
        history_entries: Manager["ReconciliationHistoryEntry"]


class Payment(models.Model):
    class Kind(models.TextChoices):
        RECEIVED = "RECEIVED", "Received from customer"
        MADE = "MADE", "Paid to supplier"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="payments",
    )
    kind = models.CharField(max_length=10, choices=Kind.choices)
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments",
    )
    payment_date = models.DateField(default=timezone.localdate)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reference = models.CharField(max_length=255, blank=True, default="")
    currency_code = models.CharField(max_length=3, blank=True, default="")
    fx_rate = models.DecimalField(max_digits=12, decimal_places=6, default=Decimal("1.000000"))
    bank_transaction = models.ForeignKey(
        BankTransaction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments_recorded",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-payment_date", "-id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self):
        return f"{self.get_kind_display()} {self.amount} on {self.payment_date}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Payments are immutable once recorded.")
        super().save(*args, **kwargs)

    if TYPE_CHECKING:
        allocations: Manager["PaymentAllocation"]


class PaymentAllocation(models.Model):
    payment = models.ForeignKey(
        Payment,
        on_delete=models.CASCADE,
        related_name="allocations",
    )
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_allocations",
    )
    supplier_invoice = models.ForeignKey(
        SupplierInvoice,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_allocations",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="payment_allocation_amount_positive",
            ),
            models.CheckConstraint(
                condition=(
                    Q(invoice__isnull=False, supplier_invoice__isnull=True)
                    | Q(invoice__isnull=True, supplier_invoice__isnull=False)
                ),
                name="payment_allocation_single_target",
            ),
        ]

    def __str__(self):
        return f"{self.amount} → {self.target}"

    @property
    def target(self):
        return self.invoice if self.invoice_id else self.supplier_invoice


class BankMatchingRule(models.Model):
    """
    Operator-defined rule applied by the auto-match batch before score-based matching.
    """

    class RuleType(models.TextChoices):
        DESCRIPTION_PATTERN = "DESCRIPTION_PATTERN", "Description contains"
        AMOUNT_EXACT = "AMOUNT_EXACT", "Exact amount"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="bank_matching_rules",
    )
    name = models.CharField(max_length=255)
    rule_type = models.CharField(max_length=30, choices=RuleType.choices)
    pattern = models.CharField(max_length=255, blank=True, default="")
    pattern_case_sensitive = models.BooleanField(default=False)
    amount_value = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    amount_tolerance = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    match_to_type = models.CharField(max_length=20, choices=MatchTargetType.choices)
    match_to_invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="+",
    )
    match_to_supplier_invoice = models.ForeignKey(
        SupplierInvoice,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="+",
    )
    match_to_account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="+",
    )
    priority = models.PositiveIntegerField(default=100)
    is_active = models.BooleanField(default=True)
    auto_match = models.BooleanField(default=True)
    auto_reconcile = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["priority", "id"]

    def __str__(self):
        return self.name

    @property
    def target_id(self) -> Optional[int]:
        if self.match_to_type == MatchTargetType.INVOICE:
            return self.match_to_invoice_id
        if self.match_to_type == MatchTargetType.SUPPLIER_INVOICE:
            return self.match_to_supplier_invoice_id
        return self.match_to_account_id

    def matches(self, bank_transaction: BankTransaction) -> bool:
        if self.rule_type == self.RuleType.DESCRIPTION_PATTERN:
            if not self.pattern:
                return False
            text = bank_transaction.description or ""
            if self.pattern_case_sensitive:
                return self.pattern in text
            return self.pattern.lower() in text.lower()
        if self.rule_type == self.RuleType.AMOUNT_EXACT:
            if self.amount_value is None:
                return False
            tolerance = self.amount_tolerance or ZERO
            return abs(bank_transaction.amount - self.amount_value) <= tolerance
        return False


class AppendOnlyQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise ValidationError("Reconciliation history is append-only.")

    def delete(self):
        raise ValidationError("Reconciliation history is append-only.")


class ReconciliationHistoryEntry(models.Model):
    class Action(models.TextChoices):
        MATCHED = "matched", "Matched"
        RECONCILED = "reconciled", "Reconciled"
        UNRECONCILED = "unreconciled", "Unreconciled"
        UNMATCHED = "unmatched", "Unmatched"

    business = models.ForeignKey(
        "core.Business",
        on_delete=models.CASCADE,
        related_name="reconciliation_history",
    )
    bank_transaction = models.ForeignKey(
        BankTransaction,
        on_delete=models.RESTRICT,
        related_name="history_entries",
    )
    action = models.CharField(max_length=20, choices=Action.choices, db_index=True)
    matched_to_type = models.CharField(
        max_length=20,
        choices=MatchTargetType.choices,
        blank=True,
        default="",
    )
    matched_to_id = models.PositiveBigIntegerField(null=True, blank=True)
    match_method = models.CharField(
        max_length=20,
        choices=MatchMethod.choices,
        blank=True,
        default="",
    )
    rule = models.ForeignKey(
        BankMatchingRule,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="history_entries",
    )
    score = models.PositiveSmallIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reconciliation_actions",
    )
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "Reconciliation history entries"

    def __str__(self):
        return f"{self.action} tx#{self.bank_transaction_id} ({self.match_method or 'n/a'})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Reconciliation history is append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Reconciliation history is append-only.")
