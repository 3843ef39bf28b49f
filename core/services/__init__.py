# Bank reconciliation and payment allocation services
from .bank_matching import (
    AutoMatchResult,
    Suggestion,
    auto_match_transactions,
    create_matching_rule,
    get_suggestions,
    list_matching_rules,
)
from .bank_reconciliation import (
    categorize_transaction,
    delete_transaction,
    list_transactions,
    match_transaction,
    reconcile_transaction,
    unmatch_transaction,
)
from .match_scoring import score
from .matching_policy import MatchingPolicy, get_matching_policy
from .payment_allocation import (
    AllocationLine,
    AutoAllocationPlan,
    auto_allocate,
    create_invoice_payment,
    create_payment,
    create_supplier_payment,
    list_document_payments,
    plan_auto_allocation,
)
from .reconciliation_history import get_reconciliation_history, record_history
from .statement_import import ImportResult, import_transactions, read_statement_rows

__all__ = [
    "AllocationLine",
    "AutoAllocationPlan",
    "AutoMatchResult",
    "ImportResult",
    "MatchingPolicy",
    "Suggestion",
    "auto_allocate",
    "auto_match_transactions",
    "categorize_transaction",
    "create_invoice_payment",
    "create_matching_rule",
    "create_payment",
    "create_supplier_payment",
    "delete_transaction",
    "get_matching_policy",
    "get_reconciliation_history",
    "get_suggestions",
    "import_transactions",
    "list_document_payments",
    "list_matching_rules",
    "list_transactions",
    "match_transaction",
    "plan_auto_allocation",
    "read_statement_rows",
    "reconcile_transaction",
    "record_history",
    "score",
    "unmatch_transaction",
]
