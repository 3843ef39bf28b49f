from django.contrib import admin

from .models import (
    Account,
    BankMatchingRule,
    BankStatementImport,
    BankTransaction,
    Business,
    Customer,
    Invoice,
    Payment,
    PaymentAllocation,
    ReconciliationHistoryEntry,
    Supplier,
    SupplierInvoice,
)


admin.site.site_header = "ReconBooks – System Admin"
admin.site.site_title = "ReconBooks System Admin"


def _superuser_only(request):
    return request.user.is_active and request.user.is_superuser


admin.site.has_permission = _superuser_only


@admin.register(Business)
class BusinessAdmin(admin.ModelAdmin):
    list_display = ("name", "currency", "owner_user", "is_deleted", "created_at")
    list_filter = ("is_deleted", "currency")
    search_fields = ("name", "owner_user__username")


@admin.register(Customer, Supplier)
class CounterpartyAdmin(admin.ModelAdmin):
    list_display = ("name", "business", "email")
    search_fields = ("name", "email")


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "type", "business", "is_active")
    list_filter = ("type", "is_active")
    search_fields = ("code", "name")


class DocumentAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "business", "status", "total", "amount_paid", "due_date", "version")
    list_filter = ("status",)
    search_fields = ("invoice_number",)
    # Balances move only through recorded payments.
    readonly_fields = ("amount_paid", "version")


admin.site.register(Invoice, DocumentAdmin)
admin.site.register(SupplierInvoice, DocumentAdmin)


@admin.register(BankStatementImport)
class BankStatementImportAdmin(admin.ModelAdmin):
    list_display = ("file_name", "business", "status", "imported_count", "duplicate_count", "skipped_count", "created_at")
    list_filter = ("status",)


@admin.register(BankTransaction)
class BankTransactionAdmin(admin.ModelAdmin):
    list_display = ("date", "description", "amount", "direction", "business", "is_reconciled", "is_deleted")
    list_filter = ("direction", "is_reconciled", "is_deleted", "category_type")
    search_fields = ("description", "reference")
    readonly_fields = ("normalized_description", "version", "settlement_payment")


class PaymentAllocationInline(admin.TabularInline):
    model = PaymentAllocation
    extra = 0
    can_delete = False
    readonly_fields = ("invoice", "supplier_invoice", "amount")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("payment_date", "kind", "amount", "business", "customer", "supplier", "reference")
    list_filter = ("kind",)
    inlines = [PaymentAllocationInline]

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(BankMatchingRule)
class BankMatchingRuleAdmin(admin.ModelAdmin):
    list_display = ("name", "business", "rule_type", "match_to_type", "priority", "is_active", "auto_reconcile")
    list_filter = ("rule_type", "match_to_type", "is_active")
    ordering = ("business", "priority", "id")


@admin.register(ReconciliationHistoryEntry)
class ReconciliationHistoryEntryAdmin(admin.ModelAdmin):
    list_display = ("created_at", "business", "bank_transaction", "action", "match_method", "matched_to_type", "matched_to_id", "actor")
    list_filter = ("action", "match_method")
    search_fields = ("notes",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
