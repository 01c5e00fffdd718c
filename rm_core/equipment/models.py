# rm_core/equipment/models.py
from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from rm_core.common.models import ScopedModel


class EquipmentStatus(models.TextChoices):
    AVAILABLE = "available", "Available"
    IN_USE = "in_use", "In use"
    UNDER_MAINTENANCE = "under_maintenance", "Under maintenance"
    OUT_OF_ORDER = "out_of_order", "Out of order"


class EquipmentCondition(models.TextChoices):
    EXCELLENT = "excellent", "Excellent"
    GOOD = "good", "Good"
    FAIR = "fair", "Fair"
    POOR = "poor", "Poor"


class MaintenanceType(models.TextChoices):
    PREVENTIVE = "preventive", "Preventive"
    CORRECTIVE = "corrective", "Corrective"
    EMERGENCY = "emergency", "Emergency"
    CALIBRATION = "calibration", "Calibration"
    INSPECTION = "inspection", "Inspection"


class MaintenanceStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class MaintenancePriority(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class Equipment(ScopedModel):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=64)
    category = models.CharField(max_length=64, blank=True, default="")
    serial_number = models.CharField(max_length=128, blank=True, default="")
    manufacturer = models.CharField(max_length=128, blank=True, default="")
    location = models.CharField(max_length=128, blank=True, default="")

    status = models.CharField(
        max_length=24,
        choices=EquipmentStatus.choices,
        default=EquipmentStatus.AVAILABLE,
        db_index=True,
    )
    condition = models.CharField(max_length=16, choices=EquipmentCondition.choices, default=EquipmentCondition.GOOD)

    last_maintenance = models.DateTimeField(null=True, blank=True)
    next_maintenance_due = models.DateField(null=True, blank=True, db_index=True)

    notes = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        verbose_name_plural = "equipment"
        constraints = [
            models.UniqueConstraint(fields=["tenant_id", "facility_id", "code"], name="uq_equipment_scope_code"),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "status"]),
        ]
        ordering = ["name"]

    def __str__(self) -> str:
        return f"{self.name} [{self.code}]"


class MaintenanceRecord(ScopedModel):
    equipment = models.ForeignKey(Equipment, on_delete=models.PROTECT, related_name="maintenance_records")

    maintenance_type = models.CharField(max_length=16, choices=MaintenanceType.choices)
    status = models.CharField(
        max_length=16,
        choices=MaintenanceStatus.choices,
        default=MaintenanceStatus.SCHEDULED,
        db_index=True,
    )
    priority = models.CharField(max_length=16, choices=MaintenancePriority.choices, default=MaintenancePriority.NORMAL)

    scheduled_date = models.DateTimeField(db_index=True)
    description = models.CharField(max_length=1000)
    estimated_duration_hours = models.DecimalField(max_digits=5, decimal_places=1)

    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="maintenance_assignments",
    )
    scheduled_by_user_id = models.BigIntegerField(null=True, blank=True)
    performed_by_user_id = models.BigIntegerField(null=True, blank=True)

    required_parts = models.JSONField(default=list, blank=True)
    required_tools = models.JSONField(default=list, blank=True)
    safety_requirements = models.JSONField(default=list, blank=True)

    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, blank=True, default="")

    completion_notes = models.TextField(blank=True, default="")
    work_performed = models.JSONField(default=list, blank=True)
    parts_used = models.JSONField(default=list, blank=True)
    cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    issues_found = models.TextField(blank=True, default="")
    recommendations = models.TextField(blank=True, default="")
    condition_after = models.CharField(max_length=16, choices=EquipmentCondition.choices, blank=True, default="")
    returned_to_service = models.BooleanField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["equipment"],
                condition=Q(status="in_progress"),
                name="uq_equipment_one_maintenance_in_progress",
            ),
        ]
        indexes = [
            models.Index(fields=["equipment", "scheduled_date"]),
        ]
        ordering = ["-scheduled_date"]

    def __str__(self) -> str:
        return f"{self.maintenance_type} on {self.equipment_id} ({self.status})"

    @property
    def is_open(self) -> bool:
        return self.status in (MaintenanceStatus.SCHEDULED, MaintenanceStatus.IN_PROGRESS)
