# rm_core/patients/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response

from rm_core.common.api.pagination import paginate
from rm_core.common.permissions import get_request_caller
from rm_core.common.scope import require_scope
from rm_core.patients.api.serializers import PatientCreateSerializer, PatientSerializer, PatientUpdateSerializer
from rm_core.patients.models import Patient
from rm_core.patients.permissions import PatientPermission
from rm_core.patients.selectors import get_patient, search_patients
from rm_core.patients.services import PatientService


class PatientViewSet(viewsets.ViewSet):
    permission_classes = [PatientPermission]

    # spectacular + path param typing
    serializer_class = PatientSerializer
    queryset = Patient.objects.none()

    def list(self, request):
        scope = require_scope(request)
        q = request.query_params.get("q", "").strip()
        qs = search_patients(tenant_id=scope.tenant_id, facility_id=scope.facility_id, q=q)
        return paginate(request, qs, PatientSerializer)

    def retrieve(self, request, pk=None):
        scope = require_scope(request)
        try:
            patient = get_patient(tenant_id=scope.tenant_id, facility_id=scope.facility_id, patient_id=UUID(str(pk)))
        except (ValueError, Patient.DoesNotExist):
            raise NotFound("Patient not found.")
        return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

    @extend_schema(request=PatientCreateSerializer, responses={201: PatientSerializer})
    def create(self, request):
        require_scope(request)

        ser = PatientCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        try:
            patient = PatientService.create_patient(caller=get_request_caller(request), **ser.validated_data)
        except ValueError as e:
            raise ValidationError({"detail": str(e)})

        return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=PatientUpdateSerializer, responses={200: PatientSerializer})
    def partial_update(self, request, pk=None):
        require_scope(request)

        ser = PatientUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        try:
            patient = PatientService.update_patient(
                caller=get_request_caller(request),
                patient_id=UUID(str(pk)),
                data=ser.validated_data,
            )
        except Patient.DoesNotExist:
            raise NotFound("Patient not found.")
        except ValueError as e:
            raise ValidationError({"detail": str(e)})

        return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)
