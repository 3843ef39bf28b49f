from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response

from core.models import Invoice, Payment, SupplierInvoice
from core.serializers import AutoAllocateRequestSerializer, PaymentRequestSerializer, PaymentSerializer
from core.services import create_payment, list_document_payments, plan_auto_allocation
from core.views_banking import BusinessScopedAPIView


class PaymentListCreateView(BusinessScopedAPIView):
    def get(self, request, business_id):
        payments = Payment.objects.filter(business=self.business).prefetch_related("allocations")
        kind = request.query_params.get("kind")
        if kind:
            payments = payments.filter(kind=kind)
        return Response({"results": PaymentSerializer(payments.order_by("-payment_date", "-id"), many=True).data})

    def post(self, request, business_id):
        serializer = PaymentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment = create_payment(
            business=self.business,
            kind=data["kind"],
            amount=data["amount"],
            allocations=[dict(alloc) for alloc in data["allocations"]],
            payment_date=data["payment_date"],
            reference=data["reference"],
            party_id=data["party_id"],
            actor=request.user,
            currency_code=data["currency_code"],
            fx_rate=data["fx_rate"],
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class PaymentAutoAllocateView(BusinessScopedAPIView):
    """Preview an oldest-due-first allocation. Nothing is written."""

    def post(self, request, business_id):
        serializer = AutoAllocateRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        plan = plan_auto_allocation(
            business=self.business,
            kind=data["kind"],
            amount=data["amount"],
            party_id=data["party_id"],
        )
        return Response(plan.as_dict())


class DocumentPaymentsView(BusinessScopedAPIView):
    document_model = Invoice

    def get(self, request, business_id, pk):
        document = self.document_model.objects.filter(business=self.business, pk=pk).first()
        if document is None:
            raise NotFound("Document not found.")
        payments = list_document_payments(document)
        return Response(
            {
                "document": document.pk,
                "total": str(document.total),
                "amount_paid": str(document.amount_paid),
                "outstanding": str(document.outstanding),
                "status": document.status,
                "payments": [
                    {
                        **row,
                        "payment_date": row["payment_date"].isoformat(),
                        "amount": str(row["amount"]),
                        "fx_rate": str(row["fx_rate"]),
                        "allocated_amount": str(row["allocated_amount"]),
                    }
                    for row in payments
                ],
            }
        )


class SupplierInvoicePaymentsView(DocumentPaymentsView):
    document_model = SupplierInvoice
