import json

from rest_framework import serializers

from .models import (
    BankMatchingRule,
    BankStatementImport,
    BankTransaction,
    MatchMethod,
    MatchTargetType,
    Payment,
    PaymentAllocation,
    ReconciliationHistoryEntry,
)


class BankTransactionSerializer(serializers.ModelSerializer):
    match_state = serializers.CharField(read_only=True)
    matched_target_type = serializers.CharField(read_only=True, allow_null=True)
    matched_target_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = BankTransaction
        fields = [
            "id",
            "date",
            "description",
            "amount",
            "direction",
            "reference",
            "is_reconciled",
            "reconciled_at",
            "match_state",
            "matched_target_type",
            "matched_target_id",
            "match_method",
            "matched_at",
            "category_type",
            "customer",
            "supplier",
            "account",
            "category_invoice",
            "category_supplier_invoice",
            "settlement_payment",
            "statement_import",
            "version",
            "created_at",
        ]
        read_only_fields = fields


class BankStatementImportSerializer(serializers.ModelSerializer):
    class Meta:
        model = BankStatementImport
        fields = [
            "id",
            "file_name",
            "status",
            "imported_count",
            "duplicate_count",
            "skipped_count",
            "errors",
            "created_at",
        ]
        read_only_fields = fields


class PaymentAllocationSerializer(serializers.ModelSerializer):
    target_type = serializers.SerializerMethodField()
    target_id = serializers.SerializerMethodField()

    class Meta:
        model = PaymentAllocation
        fields = ["id", "target_type", "target_id", "amount"]
        read_only_fields = fields

    def get_target_type(self, obj):
        return MatchTargetType.INVOICE if obj.invoice_id else MatchTargetType.SUPPLIER_INVOICE

    def get_target_id(self, obj):
        return obj.invoice_id or obj.supplier_invoice_id


class PaymentSerializer(serializers.ModelSerializer):
    allocations = PaymentAllocationSerializer(many=True, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "kind",
            "customer",
            "supplier",
            "payment_date",
            "amount",
            "reference",
            "currency_code",
            "fx_rate",
            "bank_transaction",
            "allocations",
            "created_at",
        ]
        read_only_fields = fields


class ReconciliationHistoryEntrySerializer(serializers.ModelSerializer):
    actor_username = serializers.SerializerMethodField()

    class Meta:
        model = ReconciliationHistoryEntry
        fields = [
            "id",
            "bank_transaction",
            "action",
            "matched_to_type",
            "matched_to_id",
            "match_method",
            "rule",
            "score",
            "notes",
            "actor",
            "actor_username",
            "created_at",
        ]
        read_only_fields = fields

    def get_actor_username(self, obj):
        return obj.actor.get_username() if obj.actor_id else None


class BankMatchingRuleSerializer(serializers.ModelSerializer):
    target_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = BankMatchingRule
        fields = [
            "id",
            "name",
            "rule_type",
            "pattern",
            "pattern_case_sensitive",
            "amount_value",
            "amount_tolerance",
            "match_to_type",
            "target_id",
            "priority",
            "is_active",
            "auto_match",
            "auto_reconcile",
            "created_at",
        ]
        read_only_fields = fields


# Request payloads


class StatementImportRequestSerializer(serializers.Serializer):
    rows = serializers.ListField(child=serializers.DictField(), required=False)
    file = serializers.FileField(required=False)
    column_mapping = serializers.JSONField()
    delimiter = serializers.CharField(required=False, allow_blank=True, max_length=1)
    file_name = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_column_mapping(self, value):
        # Multipart uploads send the mapping as a JSON string.
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as exc:
                raise serializers.ValidationError("column_mapping must be a JSON object.") from exc
        if not isinstance(value, dict):
            raise serializers.ValidationError("column_mapping must be a JSON object.")
        return value

    def validate(self, attrs):
        if "rows" not in attrs and "file" not in attrs:
            raise serializers.ValidationError("Provide either rows or a statement file.")
        return attrs


class MatchRequestSerializer(serializers.Serializer):
    target_type = serializers.ChoiceField(choices=MatchTargetType.choices)
    target_id = serializers.IntegerField()
    match_method = serializers.ChoiceField(
        choices=[MatchMethod.MANUAL, MatchMethod.SUGGESTION],
        required=False,
        default=MatchMethod.MANUAL,
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    auto_reconcile = serializers.BooleanField(required=False, default=False)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class ReconcileRequestSerializer(serializers.Serializer):
    reconciled = serializers.BooleanField(required=False, default=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class UnmatchRequestSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class CategorizeRequestSerializer(serializers.Serializer):
    category_type = serializers.ChoiceField(choices=BankTransaction.CategoryType.choices)
    category_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    invoice_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    expected_version = serializers.IntegerField(required=False, allow_null=True, default=None)


class AutoMatchRequestSerializer(serializers.Serializer):
    transaction_ids = serializers.ListField(child=serializers.IntegerField(), required=False, allow_null=True)
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)


class AllocationInputSerializer(serializers.Serializer):
    target_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class PaymentRequestSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=Payment.Kind.choices)
    party_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    payment_date = serializers.DateField(required=False, allow_null=True, default=None)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    currency_code = serializers.CharField(required=False, allow_blank=True, default="", max_length=3)
    fx_rate = serializers.DecimalField(max_digits=12, decimal_places=6, required=False, allow_null=True, default=None)
    allocations = AllocationInputSerializer(many=True)


class AutoAllocateRequestSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=Payment.Kind.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    party_id = serializers.IntegerField(required=False, allow_null=True, default=None)


class MatchingRuleRequestSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    rule_type = serializers.ChoiceField(choices=BankMatchingRule.RuleType.choices)
    pattern = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)
    pattern_case_sensitive = serializers.BooleanField(required=False, default=False)
    amount_value = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True, default=None)
    amount_tolerance = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default="0.00")
    match_to_type = serializers.ChoiceField(choices=MatchTargetType.choices)
    target_id = serializers.IntegerField()
    priority = serializers.IntegerField(required=False, min_value=0, default=100)
    is_active = serializers.BooleanField(required=False, default=True)
    auto_match = serializers.BooleanField(required=False, default=True)
    auto_reconcile = serializers.BooleanField(required=False, default=False)
