# rm_core/ambulances/services.py
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from django.db.models import Q
from django.utils import timezone

from rm_core.ambulances import permissions  # noqa: F401  (registers object rules)
from rm_core.ambulances.models import (
    ACTIVE_DISPATCH_STATUSES,
    DISPATCH_STAMP_FIELDS,
    Ambulance,
    AmbulanceDispatch,
    AmbulanceLocation,
    AmbulanceStatus,
    DispatchPriority,
    DispatchStatus,
    DispatchStatusUpdate,
    ambulance_status_for,
    previous_status,
)
from rm_core.ambulances.tracking import RouteProgressStore, default_store
from rm_core.audit.services import AuditService, record_denial
from rm_core.common.events import publish
from rm_core.common.geo import GeoPoint, coordinate_errors, heading_error, to_decimal
from rm_core.common.numbering import next_number
from rm_core.common.permissions import Caller, Role, can
from rm_core.common.results import Result, invalid, invalid_transition, not_found, run_atomic
from rm_core.common.routing import RouteEstimator, get_route_estimator, safe_estimate
from rm_core.iam.services.membership import user_has_role
from rm_core.referrals.models import Referral
from rm_core.referrals.services import ReferralService

logger = logging.getLogger(__name__)

ENTITY = "DISPATCH"
AMBULANCE = "AMBULANCE"

# Transitions that notify the dispatcher and crew.
NOTIFY_ON = frozenset({
    DispatchStatus.ACKNOWLEDGED,
    DispatchStatus.AT_PICKUP,
    DispatchStatus.PATIENT_DELIVERED,
    DispatchStatus.COMPLETED,
})

# Dispatch statuses that move the linked referral.
REFERRAL_COUPLED = frozenset({DispatchStatus.PATIENT_LOADED, DispatchStatus.AT_DESTINATION})

# Manual ambulance statuses (the others are derived from dispatches).
MANUAL_AMBULANCE_STATUSES = frozenset({
    AmbulanceStatus.AVAILABLE,
    AmbulanceStatus.MAINTENANCE,
    AmbulanceStatus.OUT_OF_SERVICE,
})


def _locked_ambulance(*, tenant_id, facility_id, ambulance_id) -> Optional[Ambulance]:
    return Ambulance.objects.select_for_update().filter(id=ambulance_id, tenant_id=tenant_id, facility_id=facility_id).first()


def _locked_dispatch(caller: Caller, dispatch_id) -> Optional[AmbulanceDispatch]:
    return (
        AmbulanceDispatch.objects.select_for_update()
        .filter(id=dispatch_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id)
        .first()
    )


def _coordinate_problems(prefix: str, lat, lng) -> dict[str, str]:
    return {f"{prefix}_{'latitude' if k == 'lat' else 'longitude'}": v for k, v in coordinate_errors(lat, lng).items()}


def _non_negative(**values) -> dict[str, str]:
    return {k: "Must be zero or greater." for k, v in values.items() if v is not None and Decimal(str(v)) < 0}


def _event_payload(dispatch: AmbulanceDispatch, caller: Optional[Caller], **extra) -> dict[str, Any]:
    return {
        "dispatch_id": dispatch.id,
        "dispatch_number": dispatch.dispatch_number,
        "tenant_id": dispatch.tenant_id,
        "facility_id": dispatch.facility_id,
        "ambulance_id": dispatch.ambulance_id,
        "referral_id": dispatch.referral_id,
        "dispatcher_id": dispatch.dispatcher_user_id,
        "crew_ids": list(dispatch.crew_ids or []),
        "pickup_address": dispatch.pickup_address,
        "priority": dispatch.priority,
        "status": dispatch.status,
        "actor_user_id": getattr(caller, "user_id", None),
        **extra,
    }


def _set_ambulance_status(*, caller: Optional[Caller], ambulance: Ambulance, status: str, reason: str) -> None:
    if ambulance.status == status:
        return
    previous = ambulance.status
    ambulance.status = status
    ambulance.save(update_fields=["status", "updated_at"])
    AuditService.log(
        caller=caller,
        tenant_id=ambulance.tenant_id,
        facility_id=ambulance.facility_id,
        event_code="AMBULANCE_STATUS_CHANGED",
        entity_type=AMBULANCE,
        entity_id=ambulance.id,
        from_status=previous,
        to_status=status,
        metadata={"reason": reason},
    )


def _record_update(dispatch: AmbulanceDispatch, *, caller, from_status: str, latitude=None, longitude=None, notes="") -> None:
    DispatchStatusUpdate.objects.create(
        dispatch=dispatch,
        from_status=from_status or "",
        to_status=dispatch.status,
        actor_user_id=getattr(caller, "user_id", None),
        latitude=latitude,
        longitude=longitude,
        notes=notes or "",
    )


class DispatchService:
    """
    Ambulance dispatch lifecycle.

        dispatched -> acknowledged -> en_route_pickup -> at_pickup
          -> patient_loaded -> en_route_destination -> at_destination
          -> patient_delivered -> completed
        any non-terminal -> cancelled

    Each forward method accepts exactly one predecessor status. The ambulance
    status follows the dispatch (see ambulance_status_for) in the same
    transaction.
    """

    # -------------------------
    # Create
    # -------------------------
    @staticmethod
    def create_dispatch(
        *,
        caller: Caller,
        ambulance_id: UUID,
        pickup_latitude,
        pickup_longitude,
        destination_latitude,
        destination_longitude,
        pickup_address: str = "",
        destination_address: str = "",
        referral_id: Optional[UUID] = None,
        priority: str = DispatchPriority.NORMAL,
        crew_ids: Iterable[int] = (),
        special_instructions: str = "",
        estimator: Optional[RouteEstimator] = None,
    ) -> Result[AmbulanceDispatch]:
        if not can(caller, "dispatches.create"):
            return record_denial(caller=caller, action="dispatches.create", entity_type=ENTITY)

        problems = {
            **_coordinate_problems("pickup", pickup_latitude, pickup_longitude),
            **_coordinate_problems("destination", destination_latitude, destination_longitude),
        }
        if problems:
            return invalid("Invalid coordinates.", **problems)
        if priority not in DispatchPriority.values:
            return invalid("Invalid priority.", priority="Invalid choice.")

        crew = sorted({int(c) for c in crew_ids or ()})
        strangers = [
            c for c in crew
            if not user_has_role(user_id=c, tenant_id=caller.tenant_id, facility_id=caller.facility_id, role=Role.AMBULANCE_CREW)
        ]
        if strangers:
            return invalid("Crew must be ambulance crew at this facility.", crew_ids=f"Not crew here: {strangers}")

        referral = None
        if referral_id:
            referral = (
                Referral.objects.filter(id=referral_id, tenant_id=caller.tenant_id)
                .filter(Q(facility_id=caller.facility_id) | Q(receiving_facility_id=caller.facility_id))
                .first()
            )
            if referral is None:
                return invalid("Referral not found.", referral_id="Not found.")
            if referral.is_terminal:
                return invalid("The referral is closed.", referral_id=f"Referral is {referral.status}.")

        # Estimates are computed before taking any lock; a provider failure
        # only leaves the estimate empty.
        ambulance_preview = Ambulance.objects.filter(
            id=ambulance_id, tenant_id=caller.tenant_id, facility_id=caller.facility_id
        ).first()
        if ambulance_preview is None:
            return not_found("Ambulance")

        estimator = estimator or get_route_estimator()
        pickup = GeoPoint(float(pickup_latitude), float(pickup_longitude), pickup_address)
        destination = GeoPoint(float(destination_latitude), float(destination_longitude), destination_address)
        trip = safe_estimate(estimator, pickup, destination)
        approach = None
        if ambulance_preview.has_location:
            origin = GeoPoint(float(ambulance_preview.current_latitude), float(ambulance_preview.current_longitude))
            approach = safe_estimate(estimator, origin, pickup)

        def body() -> Result[AmbulanceDispatch]:
            ambulance = _locked_ambulance(
                tenant_id=caller.tenant_id, facility_id=caller.facility_id, ambulance_id=ambulance_id
            )
            if ambulance is None:
                return not_found("Ambulance")
            if not ambulance.is_active:
                return invalid("Ambulance is decommissioned.", ambulance_id=str(ambulance.id))
            if ambulance.status != AmbulanceStatus.AVAILABLE:
                return invalid_transition("ambulance", ambulance.status, "dispatch")
            if ambulance.dispatches.filter(status__in=ACTIVE_DISPATCH_STATUSES).exists():
                return invalid_transition("ambulance", AmbulanceStatus.DISPATCHED, "dispatch")

            now = timezone.now()
            number = next_number(
                AmbulanceDispatch.objects.filter(tenant_id=caller.tenant_id),
                field="dispatch_number",
                prefix=f"DISP-{now:%Y%m%d}-",
                width=4,
            )
            eta_pickup = now + timedelta(minutes=approach.duration_minutes) if approach else None
            eta_destination = None
            if trip:
                eta_destination = (eta_pickup or now) + timedelta(minutes=trip.duration_minutes)

            dispatch = AmbulanceDispatch.objects.create(
                tenant_id=caller.tenant_id,
                facility_id=caller.facility_id,
                dispatch_number=number,
                ambulance=ambulance,
                referral=referral,
                dispatcher_user_id=caller.user_id,
                crew_ids=crew,
                pickup_latitude=to_decimal(pickup_latitude),
                pickup_longitude=to_decimal(pickup_longitude),
                pickup_address=pickup_address or "",
                destination_latitude=to_decimal(destination_latitude),
                destination_longitude=to_decimal(destination_longitude),
                destination_address=destination_address or "",
                priority=priority,
                status=DispatchStatus.DISPATCHED,
                special_instructions=special_instructions or "",
                dispatched_at=now,
                eta_pickup=eta_pickup,
                eta_destination=eta_destination,
                estimated_distance_km=to_decimal(trip.distance_km, 2) if trip else None,
                estimated_duration_minutes=trip.duration_minutes if trip else None,
            )
            _record_update(dispatch, caller=caller, from_status="", notes="Dispatch created")
            _set_ambulance_status(
                caller=caller,
                ambulance=ambulance,
                status=AmbulanceStatus.DISPATCHED,
                reason=f"dispatch {number}",
            )

            AuditService.log(
                caller=caller,
                event_code="DISPATCH_CREATED",
                entity_type=ENTITY,
                entity_id=dispatch.id,
                to_status=DispatchStatus.DISPATCHED,
                metadata={
                    "dispatch_number": number,
                    "ambulance_id": str(ambulance.id),
                    "referral_id": str(referral.id) if referral else None,
                    "priority": priority,
                },
            )
            publish("dispatch.created", _event_payload(dispatch, caller))
            logger.info("dispatch %s created ambulance=%s priority=%s", number, ambulance.vehicle_number, priority)

            warnings = () if trip else ("Route estimate unavailable; dispatch created without ETA.",)
            return Result.success(dispatch, warnings=warnings)

        return run_atomic(body, label="dispatches.create")

    # -------------------------
    # Transitions
    # -------------------------
    @staticmethod
    def _transition(
        *,
        caller: Caller,
        dispatch_id,
        target: str,
        action: str,
        latitude=None,
        longitude=None,
        notes: str = "",
        apply: Optional[Callable[[AmbulanceDispatch], list[str]]] = None,
        store: Optional[RouteProgressStore] = None,
    ) -> Result[AmbulanceDispatch]:
        capability = "dispatches.cancel" if target == DispatchStatus.CANCELLED else "dispatches.transition"
        if not caller or not caller.has(capability):
            return record_denial(caller=caller, action=capability, entity_type=ENTITY, entity_id=dispatch_id)

        if latitude is not None or longitude is not None:
            problems = coordinate_errors(latitude, longitude)
            if problems:
                return invalid("Invalid coordinates.", **problems)

        def body() -> Result[AmbulanceDispatch]:
            dispatch = _locked_dispatch(caller, dispatch_id)
            if dispatch is None:
                return not_found("Dispatch")
            if not can(caller, capability, dispatch):
                return record_denial(
                    caller=caller,
                    action=capability,
                    entity_type=ENTITY,
                    entity_id=dispatch.id,
                    reason="not_assigned",
                )

            if target == DispatchStatus.CANCELLED:
                if dispatch.is_terminal:
                    return invalid_transition("dispatch", dispatch.status, action)
            elif dispatch.status != previous_status(target):
                return invalid_transition("dispatch", dispatch.status, action)

            previous = dispatch.status
            now = timezone.now()
            stamp = DISPATCH_STAMP_FIELDS[target]
            dispatch.status = target
            setattr(dispatch, stamp, now)
            fields = ["status", stamp, "updated_at"]
            if apply is not None:
                fields += apply(dispatch)
            dispatch.save(update_fields=fields)

            _record_update(
                dispatch,
                caller=caller,
                from_status=previous,
                latitude=to_decimal(latitude) if latitude is not None else None,
                longitude=to_decimal(longitude) if longitude is not None else None,
                notes=notes,
            )

            ambulance = _locked_ambulance(
                tenant_id=dispatch.tenant_id, facility_id=dispatch.facility_id, ambulance_id=dispatch.ambulance_id
            )
            _set_ambulance_status(
                caller=caller,
                ambulance=ambulance,
                status=ambulance_status_for(target),
                reason=f"dispatch {dispatch.dispatch_number} {target}",
            )

            AuditService.log(
                caller=caller,
                event_code=f"DISPATCH_{target.upper()}",
                entity_type=ENTITY,
                entity_id=dispatch.id,
                from_status=previous,
                to_status=target,
                metadata={"notes": notes} if notes else None,
            )

            if dispatch.referral_id and target in REFERRAL_COUPLED:
                followed = ReferralService.follow_dispatch(
                    caller=caller,
                    referral_id=dispatch.referral_id,
                    dispatch_status=target,
                    dispatch_id=dispatch.id,
                )
                if not followed.ok:
                    logger.info(
                        "dispatch %s %s: referral %s not moved (%s)",
                        dispatch.dispatch_number,
                        target,
                        dispatch.referral_id,
                        followed.error.message,
                    )

            publish(
                "dispatch.status_changed",
                _event_payload(
                    dispatch,
                    caller,
                    from_status=previous,
                    to_status=target,
                    notes=notes or "",
                    notify=target in NOTIFY_ON,
                ),
            )
            logger.info("dispatch %s %s -> %s", dispatch.dispatch_number, previous, target)
            return Result.success(dispatch)

        result = run_atomic(body, label=f"dispatches.{target}")
        if result.ok and result.value.is_terminal:
            (store or default_store()).clear(result.value.id)
        return result

    @staticmethod
    def acknowledge(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.ACKNOWLEDGED, action="acknowledge",
            notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def start_en_route_to_pickup(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.EN_ROUTE_PICKUP,
            action="start en route to pickup", notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def arrive_at_pickup(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.AT_PICKUP, action="arrive at pickup",
            notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def load_patient(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.PATIENT_LOADED, action="load patient on",
            notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def start_en_route_to_destination(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.EN_ROUTE_DESTINATION,
            action="start en route to destination", notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def arrive_at_destination(*, caller: Caller, dispatch_id, notes: str = "", latitude=None, longitude=None):
        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.AT_DESTINATION,
            action="arrive at destination", notes=notes, latitude=latitude, longitude=longitude,
        )

    @staticmethod
    def deliver_patient(
        *,
        caller: Caller,
        dispatch_id,
        handover_notes: str = "",
        receiving_staff: str = "",
        latitude=None,
        longitude=None,
    ):
        def apply(dispatch: AmbulanceDispatch) -> list[str]:
            dispatch.handover_notes = handover_notes or ""
            dispatch.receiving_staff = receiving_staff or ""
            return ["handover_notes", "receiving_staff"]

        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.PATIENT_DELIVERED,
            action="deliver patient on", notes=handover_notes, latitude=latitude, longitude=longitude, apply=apply,
        )

    @staticmethod
    def complete(*, caller: Caller, dispatch_id, distance_km=None, fuel_consumed=None, notes: str = ""):
        problems = _non_negative(distance_km=distance_km, fuel_consumed=fuel_consumed)
        if problems:
            return invalid("Distance and fuel must be non-negative.", **problems)

        def apply(dispatch: AmbulanceDispatch) -> list[str]:
            dispatch.distance_km = Decimal(str(distance_km)) if distance_km is not None else None
            dispatch.fuel_consumed = Decimal(str(fuel_consumed)) if fuel_consumed is not None else None
            dispatch.crew_notes = notes or ""
            return ["distance_km", "fuel_consumed", "crew_notes"]

        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.COMPLETED, action="complete",
            notes=notes, apply=apply,
        )

    @staticmethod
    def cancel(*, caller: Caller, dispatch_id, reason: str):
        reason = (reason or "").strip()
        if not reason:
            return invalid("A cancellation reason is required.", reason="This field may not be blank.")
        if len(reason) > 500:
            return invalid("Cancellation reason is too long.", reason="At most 500 characters.")

        def apply(dispatch: AmbulanceDispatch) -> list[str]:
            dispatch.cancellation_reason = reason
            return ["cancellation_reason"]

        return DispatchService._transition(
            caller=caller, dispatch_id=dispatch_id, target=DispatchStatus.CANCELLED, action="cancel",
            notes=reason, apply=apply,
        )

    @staticmethod
    def update_status(*, caller: Caller, dispatch_id, status: str, notes: str = "") -> Result[AmbulanceDispatch]:
        """Route a target status to its forward method (or cancel). `notes` goes where that method keeps it."""
        routes = {
            DispatchStatus.ACKNOWLEDGED: DispatchService.acknowledge,
            DispatchStatus.EN_ROUTE_PICKUP: DispatchService.start_en_route_to_pickup,
            DispatchStatus.AT_PICKUP: DispatchService.arrive_at_pickup,
            DispatchStatus.PATIENT_LOADED: DispatchService.load_patient,
            DispatchStatus.EN_ROUTE_DESTINATION: DispatchService.start_en_route_to_destination,
            DispatchStatus.AT_DESTINATION: DispatchService.arrive_at_destination,
            DispatchStatus.PATIENT_DELIVERED: DispatchService.deliver_patient,
            DispatchStatus.COMPLETED: DispatchService.complete,
            DispatchStatus.CANCELLED: DispatchService.cancel,
        }
        method = routes.get(status)
        if method is None:
            return invalid("Status cannot be set directly.", status=f"'{status}' is not a target status.")
        if status == DispatchStatus.CANCELLED:
            return method(caller=caller, dispatch_id=dispatch_id, reason=notes)
        if status == DispatchStatus.PATIENT_DELIVERED:
            return method(caller=caller, dispatch_id=dispatch_id, handover_notes=notes)
        return method(caller=caller, dispatch_id=dispatch_id, notes=notes)


class AmbulanceService:
    @staticmethod
    def update_location(
        *,
        caller: Caller,
        ambulance_id,
        latitude,
        longitude,
        speed=None,
        heading=None,
        accuracy=None,
        store: Optional[RouteProgressStore] = None,
    ) -> Result[AmbulanceLocation]:
        """
        Store a GPS ping, move the ambulance and refresh route progress of its
        active dispatch.
        """
        if not caller or not caller.has("ambulances.track"):
            return record_denial(caller=caller, action="ambulances.track", entity_type=AMBULANCE, entity_id=ambulance_id)

        problems = coordinate_errors(latitude, longitude)
        h = heading_error(heading)
        if h:
            problems["heading"] = h
        problems.update(_non_negative(speed=speed, accuracy=accuracy))
        if problems:
            return invalid("Invalid location.", **problems)

        def body() -> Result[AmbulanceLocation]:
            ambulance = _locked_ambulance(
                tenant_id=caller.tenant_id, facility_id=caller.facility_id, ambulance_id=ambulance_id
            )
            if ambulance is None:
                return not_found("Ambulance")
            if not can(caller, "ambulances.track", ambulance):
                return record_denial(caller=caller, action="ambulances.track", entity_type=AMBULANCE, entity_id=ambulance.id)

            now = timezone.now()
            ping = AmbulanceLocation.objects.create(
                ambulance=ambulance,
                dispatch=ambulance.current_dispatch(),
                latitude=to_decimal(latitude),
                longitude=to_decimal(longitude),
                speed_kmh=Decimal(str(speed)) if speed is not None else None,
                heading=Decimal(str(heading)) if heading is not None else None,
                accuracy_m=Decimal(str(accuracy)) if accuracy is not None else None,
                recorded_at=now,
            )
            ambulance.current_latitude = ping.latitude
            ambulance.current_longitude = ping.longitude
            ambulance.last_location_at = now
            ambulance.save(update_fields=["current_latitude", "current_longitude", "last_location_at", "updated_at"])
            return Result.success(ping)

        result = run_atomic(body, label="ambulances.update_location")
        if result.ok and result.value.dispatch_id:
            (store or default_store()).refresh(result.value.dispatch, latitude=latitude, longitude=longitude)
        return result

    @staticmethod
    def set_status(*, caller: Caller, ambulance_id, status: str, reason: str = "") -> Result[Ambulance]:
        """Manual availability changes. Refused while a dispatch is active."""
        if not can(caller, "ambulances.manage"):
            return record_denial(caller=caller, action="ambulances.manage", entity_type=AMBULANCE, entity_id=ambulance_id)
        if status not in MANUAL_AMBULANCE_STATUSES:
            return invalid("Status is managed by dispatches.", status="Expected available, maintenance or out_of_service.")

        def body() -> Result[Ambulance]:
            ambulance = _locked_ambulance(
                tenant_id=caller.tenant_id, facility_id=caller.facility_id, ambulance_id=ambulance_id
            )
            if ambulance is None:
                return not_found("Ambulance")
            if ambulance.current_dispatch() is not None:
                return invalid_transition("ambulance", ambulance.status, f"set {status} on")
            _set_ambulance_status(caller=caller, ambulance=ambulance, status=status, reason=reason or "manual")
            logger.info("ambulance %s set %s", ambulance.vehicle_number, status)
            return Result.success(ambulance)

        return run_atomic(body, label="ambulances.set_status")

    @staticmethod
    def check_decommission(ambulance: Ambulance) -> Result[Ambulance]:
        if ambulance.current_dispatch() is not None:
            return invalid_transition("ambulance", ambulance.status, "decommission")
        return Result.success(ambulance)
