from __future__ import annotations

import logging

from rest_framework import permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import ConcurrentModification, ReconciliationError
from core.models import BankTransaction
from core.serializers import (
    AutoMatchRequestSerializer,
    BankMatchingRuleSerializer,
    BankTransactionSerializer,
    CategorizeRequestSerializer,
    MatchingRuleRequestSerializer,
    MatchRequestSerializer,
    ReconcileRequestSerializer,
    ReconciliationHistoryEntrySerializer,
    StatementImportRequestSerializer,
    UnmatchRequestSerializer,
)
from core.services import (
    auto_match_transactions,
    categorize_transaction,
    create_matching_rule,
    delete_transaction,
    get_reconciliation_history,
    get_suggestions,
    import_transactions,
    list_matching_rules,
    list_transactions,
    match_transaction,
    read_statement_rows,
    reconcile_transaction,
    unmatch_transaction,
)
from core.services.reconciliation_history import DEFAULT_HISTORY_LIMIT
from core.utils import get_business_for_user, parse_optional_bool, parse_optional_date

logger = logging.getLogger(__name__)


def _bad_request(message: str, code: str = "invalid_request"):
    return Response({"detail": message, "code": code}, status=status.HTTP_400_BAD_REQUEST)


def error_status(exc: ReconciliationError) -> int:
    if isinstance(exc, ConcurrentModification):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


class BusinessScopedAPIView(APIView):
    """
    Base view for /api/businesses/<business_id>/... endpoints.

    Resolves self.business from the URL (owner only) and turns domain errors
    into {"detail", "code"} responses.
    """

    permission_classes = [permissions.IsAuthenticated]

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.business = get_business_for_user(request.user, kwargs.get("business_id"))
        if self.business is None:
            raise NotFound("Business not found.")

    def handle_exception(self, exc):
        if isinstance(exc, ReconciliationError):
            logger.info("request rejected: %s (%s)", exc.reason, exc.code)
            return Response(exc.as_dict(), status=error_status(exc))
        return super().handle_exception(exc)


class BankTransactionListView(BusinessScopedAPIView):
    def get(self, request, business_id):
        try:
            reconciled = parse_optional_bool(request.query_params.get("reconciled"))
            start = parse_optional_date(request.query_params.get("start"))
            end = parse_optional_date(request.query_params.get("end"))
        except ValueError as exc:
            return _bad_request(str(exc))
        match_state = request.query_params.get("match_state") or None
        if match_state and match_state not in BankTransaction.MatchState.values:
            return _bad_request(f"Unknown match_state '{match_state}'.")
        qs = list_transactions(self.business, reconciled=reconciled, match_state=match_state, start=start, end=end)
        return Response({"results": BankTransactionSerializer(qs, many=True).data})


class BankTransactionImportView(BusinessScopedAPIView):
    def post(self, request, business_id):
        serializer = StatementImportRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        upload = data.get("file")
        if upload is not None:
            rows = read_statement_rows(upload, delimiter=data.get("delimiter") or None)
            file_name = data.get("file_name") or upload.name
        else:
            rows = data["rows"]
            file_name = data.get("file_name", "")

        result = import_transactions(
            self.business,
            request.user,
            rows,
            data["column_mapping"],
            file_name=file_name,
        )
        return Response(result.as_dict(), status=status.HTTP_201_CREATED)


class BankTransactionDetailView(BusinessScopedAPIView):
    def get(self, request, business_id, pk):
        bank_tx = BankTransaction.objects.filter(business=self.business, pk=pk, is_deleted=False).first()
        if bank_tx is None:
            raise NotFound("Bank transaction not found.")
        return Response(BankTransactionSerializer(bank_tx).data)

    def delete(self, request, business_id, pk):
        delete_transaction(self.business, request.user, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class BankTransactionSuggestionsView(BusinessScopedAPIView):
    def get(self, request, business_id, pk):
        suggestions = get_suggestions(self.business, pk)
        return Response({"transaction": pk, "suggestions": [s.as_dict() for s in suggestions]})


class BankTransactionMatchView(BusinessScopedAPIView):
    def post(self, request, business_id, pk):
        serializer = MatchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        bank_tx = match_transaction(
            self.business,
            request.user,
            pk,
            data["target_type"],
            data["target_id"],
            notes=data["notes"],
            auto_reconcile=data["auto_reconcile"],
            match_method=data["match_method"],
            expected_version=data["expected_version"],
        )
        return Response(BankTransactionSerializer(bank_tx).data)


class BankTransactionUnmatchView(BusinessScopedAPIView):
    def post(self, request, business_id, pk):
        serializer = UnmatchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        bank_tx = unmatch_transaction(self.business, request.user, pk, **serializer.validated_data)
        return Response(BankTransactionSerializer(bank_tx).data)


class BankTransactionReconcileView(BusinessScopedAPIView):
    def post(self, request, business_id, pk):
        serializer = ReconcileRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        bank_tx = reconcile_transaction(
            self.business,
            request.user,
            pk,
            data["reconciled"],
            notes=data["notes"],
            expected_version=data["expected_version"],
        )
        return Response(BankTransactionSerializer(bank_tx).data)


class BankTransactionCategorizeView(BusinessScopedAPIView):
    def post(self, request, business_id, pk):
        serializer = CategorizeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        bank_tx = categorize_transaction(
            self.business,
            request.user,
            pk,
            data["category_type"],
            data["category_id"],
            data["invoice_id"],
            expected_version=data["expected_version"],
        )
        return Response(BankTransactionSerializer(bank_tx).data)


class BankTransactionAutoMatchView(BusinessScopedAPIView):
    def post(self, request, business_id):
        serializer = AutoMatchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = auto_match_transactions(
            self.business,
            request.user,
            transaction_ids=data.get("transaction_ids"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
        )
        return Response(result.as_dict())


class ReconciliationHistoryView(BusinessScopedAPIView):
    def get(self, request, business_id):
        params = request.query_params
        try:
            start = parse_optional_date(params.get("start"))
            end = parse_optional_date(params.get("end"))
            bank_transaction_id = int(params["bank_transaction"]) if params.get("bank_transaction") else None
            limit = int(params.get("limit") or DEFAULT_HISTORY_LIMIT)
        except ValueError as exc:
            return _bad_request(str(exc))
        entries = get_reconciliation_history(
            self.business,
            bank_transaction_id=bank_transaction_id,
            action=params.get("action") or None,
            match_method=params.get("match_method") or None,
            start=start,
            end=end,
            limit=max(1, min(limit, 1000)),
        )
        return Response({"results": ReconciliationHistoryEntrySerializer(entries, many=True).data})


class MatchingRuleListView(BusinessScopedAPIView):
    def get(self, request, business_id):
        active_only = request.query_params.get("active") in {"1", "true", "yes"}
        rules = list_matching_rules(self.business, active_only=active_only)
        return Response({"results": BankMatchingRuleSerializer(rules, many=True).data})

    def post(self, request, business_id):
        serializer = MatchingRuleRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        rule = create_matching_rule(self.business, **serializer.validated_data)
        return Response(BankMatchingRuleSerializer(rule).data, status=status.HTTP_201_CREATED)
