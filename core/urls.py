from django.urls import include, path

from . import views_banking, views_payments

app_name = "core"

business_urlpatterns = [
    path("bank-transactions/", views_banking.BankTransactionListView.as_view(), name="bank_transactions"),
    path(
        "bank-transactions/import/",
        views_banking.BankTransactionImportView.as_view(),
        name="bank_transactions_import",
    ),
    path(
        "bank-transactions/auto-match/",
        views_banking.BankTransactionAutoMatchView.as_view(),
        name="bank_transactions_auto_match",
    ),
    path(
        "bank-transactions/<int:pk>/",
        views_banking.BankTransactionDetailView.as_view(),
        name="bank_transaction_detail",
    ),
    path(
        "bank-transactions/<int:pk>/suggestions/",
        views_banking.BankTransactionSuggestionsView.as_view(),
        name="bank_transaction_suggestions",
    ),
    path(
        "bank-transactions/<int:pk>/match/",
        views_banking.BankTransactionMatchView.as_view(),
        name="bank_transaction_match",
    ),
    path(
        "bank-transactions/<int:pk>/unmatch/",
        views_banking.BankTransactionUnmatchView.as_view(),
        name="bank_transaction_unmatch",
    ),
    path(
        "bank-transactions/<int:pk>/reconcile/",
        views_banking.BankTransactionReconcileView.as_view(),
        name="bank_transaction_reconcile",
    ),
    path(
        "bank-transactions/<int:pk>/categorize/",
        views_banking.BankTransactionCategorizeView.as_view(),
        name="bank_transaction_categorize",
    ),
    path(
        "reconciliation-history/",
        views_banking.ReconciliationHistoryView.as_view(),
        name="reconciliation_history",
    ),
    path("matching-rules/", views_banking.MatchingRuleListView.as_view(), name="matching_rules"),
    path("payments/", views_payments.PaymentListCreateView.as_view(), name="payments"),
    path(
        "payments/auto-allocate/",
        views_payments.PaymentAutoAllocateView.as_view(),
        name="payments_auto_allocate",
    ),
    path(
        "invoices/<int:pk>/payments/",
        views_payments.DocumentPaymentsView.as_view(),
        name="invoice_payments",
    ),
    path(
        "supplier-invoices/<int:pk>/payments/",
        views_payments.SupplierInvoicePaymentsView.as_view(),
        name="supplier_invoice_payments",
    ),
]

urlpatterns = [
    path("businesses/<int:business_id>/", include(business_urlpatterns)),
]
