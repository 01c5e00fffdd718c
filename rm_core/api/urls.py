# rm_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from rm_core.alerts.api.views import AlertViewSet, NotificationViewSet
from rm_core.ambulances.api.views import AmbulanceViewSet, DispatchViewSet
from rm_core.appointments.api.views import AppointmentViewSet
from rm_core.audit.api.views import AuditEventViewSet
from rm_core.beds.api.views import BedReservationViewSet, BedViewSet
from rm_core.equipment.api.views import EquipmentViewSet, MaintenanceViewSet
from rm_core.facilities.api.views import FacilityViewSet, SpecialtyViewSet
from rm_core.iam.api.auth import LoginView, LogoutView, RefreshView
from rm_core.iam.api.me import MeView
from rm_core.patients.api.views import PatientViewSet
from rm_core.referrals.api.views import ReferralViewSet

router = DefaultRouter()

# Registry
router.register(r"facilities", FacilityViewSet, basename="facilities")
router.register(r"specialties", SpecialtyViewSet, basename="specialties")
router.register(r"patients", PatientViewSet, basename="patients")

# Lifecycles
router.register(r"referrals", ReferralViewSet, basename="referrals")
router.register(r"ambulances", AmbulanceViewSet, basename="ambulances")
router.register(r"dispatches", DispatchViewSet, basename="dispatches")
router.register(r"appointments", AppointmentViewSet, basename="appointments")
router.register(r"beds", BedViewSet, basename="beds")
router.register(r"bed-reservations", BedReservationViewSet, basename="bed-reservations")
router.register(r"equipment", EquipmentViewSet, basename="equipment")
router.register(r"maintenance", MaintenanceViewSet, basename="maintenance")

# Audit + Alerts + Notifications
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")
router.register(r"alerts", AlertViewSet, basename="alerts")
router.register(r"notifications", NotificationViewSet, basename="notifications")

urlpatterns = [
    # Auth + /me
    path("auth/login/", LoginView.as_view(), name="login"),
    path("auth/refresh/", RefreshView.as_view(), name="refresh"),
    path("auth/logout/", LogoutView.as_view(), name="logout"),
    path("me/", MeView.as_view(), name="me"),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
