from django.shortcuts import get_object_or_404
from rest_framework import mixins, status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import ShootPayment
from billing.serializers import MarkPaidSerializer, PaymentCreateSerializer, ShootPaymentSerializer
from billing.services import record_payment
from common.permissions import RoleCapabilityPermission
from shoots.models import Shoot
from shoots.normalization import normalize_payload
from shoots.views import scoped_shoots_for_user


class PaymentViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = ShootPayment.objects.select_related("shoot", "recorded_by")
    serializer_class = ShootPaymentSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "payments.view",
        "retrieve": "payments.view",
        "create": "payments.process",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("shoot_id"):
            qs = qs.filter(shoot_id=params["shoot_id"])
        if params.get("payment_type"):
            qs = qs.filter(payment_type=params["payment_type"])
        return qs

    def create(self, request, *args, **kwargs):
        serializer = PaymentCreateSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment, _ = record_payment(
            data["shoot_id"],
            payment_type=data["payment_type"],
            amount=data["amount"],
            reference=data.get("reference", ""),
            actor=request.user,
            request=request,
        )
        return Response(self.get_serializer(payment).data, status=status.HTTP_201_CREATED)


class MarkPaidView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "payments.mark_paid"}

    def post(self, request, shoot_id):
        shoot = get_object_or_404(scoped_shoots_for_user(Shoot.objects.all(), request.user), pk=shoot_id)
        serializer = MarkPaidSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment, shoot = record_payment(
            shoot,
            payment_type=data["payment_type"],
            amount=data.get("amount"),
            reference=data.get("reference", ""),
            actor=request.user,
            request=request,
        )
        return Response(
            {
                "payment": ShootPaymentSerializer(payment).data,
                "total_quote": str(shoot.total_quote),
                "total_paid": str(shoot.total_paid),
                "balance_due": str(shoot.balance_due),
                "is_paid": shoot.is_paid,
            },
            status=status.HTTP_201_CREATED,
        )
