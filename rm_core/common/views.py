# rm_core/common/views.py
from django.db import transaction
from rest_framework import viewsets

from rm_core.common.api.exceptions import unwrap
from rm_core.common.permissions import get_request_caller
from rm_core.common.results import Result

UUID_LOOKUP = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"


class ScopedViewSet(viewsets.ModelViewSet):
    """
    CRUD for facility-owned resources (ambulances, beds, equipment).
    Assumes the model inherits from ScopedModel.

    Lifecycle fields (status, current patient, ...) are read-only in the
    serializers; they change only through the owning app's services.
    """

    audit_entity_type = ""
    lookup_value_regex = UUID_LOOKUP

    def get_queryset(self):
        tenant_id = getattr(self.request, "tenant_id", None)
        facility_id = getattr(self.request, "facility_id", None)
        if not tenant_id or not facility_id:
            return self.queryset.none()
        return self.queryset.filter(tenant_id=tenant_id, facility_id=facility_id)

    def _audit(self, event_code: str, instance, **metadata) -> None:
        from rm_core.audit.services import AuditService

        AuditService.log(
            caller=get_request_caller(self.request),
            event_code=event_code,
            entity_type=self.audit_entity_type or instance.__class__.__name__.upper(),
            entity_id=instance.id,
            metadata=metadata,
        )

    def perform_create(self, serializer):
        instance = serializer.save(tenant_id=self.request.tenant_id, facility_id=self.request.facility_id)
        self._audit(f"{self.audit_entity_type}_REGISTERED", instance)

    def perform_update(self, serializer):
        instance = serializer.save()
        self._audit(f"{self.audit_entity_type}_UPDATED", instance, fields=sorted(serializer.validated_data.keys()))

    def check_destroy(self, instance) -> Result:
        """Override to refuse decommissioning a resource that is still in use."""
        return Result.success(instance)

    def perform_destroy(self, instance):
        """
        DELETE decommissions: history (dispatches, reservations, maintenance)
        keeps pointing at the row.

        The row is locked before the in-use check; services lock the same row
        and refuse inactive resources, so a concurrent dispatch or reservation
        either lands first (and the check sees it) or is refused.
        """
        with transaction.atomic():
            locked = type(instance).objects.select_for_update().get(pk=instance.pk)
            unwrap(self.check_destroy(locked))
            locked.is_active = False
            locked.save(update_fields=["is_active", "updated_at"])
            self._audit(f"{self.audit_entity_type}_DECOMMISSIONED", locked)
