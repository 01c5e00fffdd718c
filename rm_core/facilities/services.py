# rm_core/facilities/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from rm_core.common.geo import coordinate_errors
from rm_core.facilities.models import Facility, FacilityType, Specialty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FacilityUpdate:
    name: Optional[str] = None
    facility_type: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    accepts_referrals: Optional[bool] = None
    emergency_capable: Optional[bool] = None
    specialty_ids: Optional[Sequence[UUID]] = None


def _specialties(tenant_id: UUID, specialty_ids: Sequence[UUID]) -> list[Specialty]:
    found = list(Specialty.objects.filter(tenant_id=tenant_id, id__in=list(specialty_ids), is_active=True))
    if len(found) != len(set(specialty_ids)):
        raise ValidationError({"specialty_ids": "One or more specialties were not found in this tenant."})
    return found


def _check_location(latitude, longitude) -> None:
    if latitude is None and longitude is None:
        return
    errors = coordinate_errors(latitude, longitude)
    if errors:
        raise ValidationError({"latitude" if "lat" in errors else "longitude": next(iter(errors.values()))})


class FacilityService:
    @staticmethod
    @transaction.atomic
    def create(
        *,
        tenant_id: UUID,
        name: str,
        code: str,
        facility_type: str = FacilityType.HOSPITAL,
        parent_facility_id: UUID | None = None,
        phone: str = "",
        email: str = "",
        address: str = "",
        city: str = "",
        latitude: Decimal | None = None,
        longitude: Decimal | None = None,
        accepts_referrals: bool = True,
        emergency_capable: bool = False,
        specialty_ids: Sequence[UUID] = (),
    ) -> Facility:
        if facility_type not in FacilityType.values:
            raise ValidationError({"facility_type": "Invalid facility_type."})
        _check_location(latitude, longitude)

        parent = None
        if parent_facility_id:
            parent = Facility.objects.filter(id=parent_facility_id, tenant_id=tenant_id).first()
            if not parent:
                raise ValidationError({"parent_facility_id": "Parent facility not found in this tenant."})

        if Facility.objects.filter(tenant_id=tenant_id, code=code).exists():
            raise ValidationError({"code": "A facility with this code already exists."})

        f = Facility.objects.create(
            tenant_id=tenant_id,
            name=name,
            code=code,
            facility_type=facility_type,
            parent_facility=parent,
            phone=phone or "",
            email=email or "",
            address=address or "",
            city=city or "",
            latitude=latitude,
            longitude=longitude,
            accepts_referrals=accepts_referrals,
            emergency_capable=emergency_capable,
            is_active=True,
        )
        if specialty_ids:
            f.specialties.set(_specialties(tenant_id, specialty_ids))

        logger.info("facility created tenant=%s code=%s", tenant_id, code)
        return f

    @staticmethod
    @transaction.atomic
    def update(*, tenant_id: UUID, facility_id: UUID, patch: FacilityUpdate) -> Facility:
        f = Facility.objects.select_for_update().get(id=facility_id, tenant_id=tenant_id)

        if patch.facility_type is not None and patch.facility_type not in FacilityType.values:
            raise ValidationError({"facility_type": "Invalid facility_type."})

        lat = patch.latitude if patch.latitude is not None else f.latitude
        lng = patch.longitude if patch.longitude is not None else f.longitude
        _check_location(lat, lng)

        mapping = {
            "name": patch.name,
            "facility_type": patch.facility_type,
            "phone": patch.phone,
            "email": patch.email,
            "address": patch.address,
            "city": patch.city,
            "latitude": patch.latitude,
            "longitude": patch.longitude,
            "accepts_referrals": patch.accepts_referrals,
            "emergency_capable": patch.emergency_capable,
        }
        for field, value in mapping.items():
            if value is not None:
                setattr(f, field, value)
        f.save()

        if patch.specialty_ids is not None:
            f.specialties.set(_specialties(tenant_id, patch.specialty_ids))
        return f

    @staticmethod
    @transaction.atomic
    def deactivate(*, tenant_id: UUID, facility_id: UUID, reason: str = "") -> Facility:
        f = Facility.objects.select_for_update().get(id=facility_id, tenant_id=tenant_id)
        if not f.is_active:
            return f
        f.is_active = False
        f.accepts_referrals = False
        f.deactivated_at = timezone.now()
        f.deactivation_reason = (reason or "").strip()
        f.save(update_fields=["is_active", "accepts_referrals", "deactivated_at", "deactivation_reason", "updated_at"])
        logger.info("facility deactivated tenant=%s facility=%s", tenant_id, facility_id)
        return f


class SpecialtyService:
    @staticmethod
    @transaction.atomic
    def create(*, tenant_id: UUID, code: str, name: str) -> Specialty:
        if Specialty.objects.filter(tenant_id=tenant_id, code=code).exists():
            raise ValidationError({"code": "A specialty with this code already exists."})
        return Specialty.objects.create(tenant_id=tenant_id, code=code, name=name)
