# rm_core/patients/services.py
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction

from rm_core.audit.services import AuditService
from rm_core.common.permissions import Caller
from rm_core.patients.models import Patient

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "full_name",
    "mrn",
    "phone",
    "email",
    "gender",
    "date_of_birth",
    "national_id",
    "address",
    "emergency_contact_name",
    "emergency_contact_phone",
}


class PatientService:
    @staticmethod
    def create_patient(*, caller: Caller, full_name: str, mrn: str, **fields) -> Patient:
        try:
            with transaction.atomic():
                patient = Patient.objects.create(
                    tenant_id=caller.tenant_id,
                    facility_id=caller.facility_id,
                    full_name=full_name,
                    mrn=mrn,
                    **{k: v for k, v in fields.items() if k in UPDATABLE_FIELDS and v is not None},
                )
                AuditService.log(
                    caller=caller,
                    event_code="PATIENT_REGISTERED",
                    entity_type="PATIENT",
                    entity_id=patient.id,
                    metadata={"mrn": mrn},
                )
        except IntegrityError:
            # MRN uniqueness is enforced by constraint
            raise ValueError("MRN already exists for this tenant/facility.")

        logger.info("patient registered facility=%s mrn=%s", caller.facility_id, mrn)
        return patient

    @staticmethod
    def update_patient(*, caller: Caller, patient_id, data: dict) -> Patient:
        updates = {k: v for k, v in (data or {}).items() if k in UPDATABLE_FIELDS}
        try:
            with transaction.atomic():
                patient = Patient.objects.select_for_update().get(
                    id=patient_id,
                    tenant_id=caller.tenant_id,
                    facility_id=caller.facility_id,
                )
                for k, v in updates.items():
                    setattr(patient, k, v)
                patient.save()

                AuditService.log(
                    caller=caller,
                    event_code="PATIENT_UPDATED",
                    entity_type="PATIENT",
                    entity_id=patient.id,
                    metadata={"updated_fields": sorted(updates.keys())},
                )
        except IntegrityError:
            raise ValueError("MRN already exists for this tenant/facility.")
        return patient
