"""
Database models for the OPD queue.

``QueueEntry`` is the authoritative store behind the live board: the
REST endpoints write to it, every write is fanned out on the
``opd_queue`` channel group, and the board reconciles its own view
against snapshots of this table. ``Profile`` carries the role that the
feature-access gate is keyed on.
"""
from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


def _entry_id() -> str:
    return uuid.uuid4().hex


class Profile(models.Model):
    """Role and contact details for an authenticated user."""
    ROLE_CHOICES = [
        ('admin', 'Administrator'),
        ('doctor', 'Doctor'),
        ('nurse', 'Nurse'),
        ('staff', 'Staff'),
        ('patient', 'Patient'),
    ]
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='profile')
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='patient', db_index=True)
    full_name = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.user} ({self.role})"


class QueueEntry(models.Model):
    """A patient waiting for, or seen in, an outpatient consultation.

    Status only moves forward: waiting → assigned → completed (a patient
    may also be completed straight from waiting). Each move is recorded
    as a :class:`QueueEntryTransition`.
    """
    STATUS_WAITING = 'waiting'
    STATUS_ASSIGNED = 'assigned'
    STATUS_COMPLETED = 'completed'
    STATUS_CHOICES = [
        (STATUS_WAITING, 'Waiting'),
        (STATUS_ASSIGNED, 'With Doctor'),
        (STATUS_COMPLETED, 'Completed'),
    ]
    DEPARTMENT_CHOICES = [
        ('ENT', 'ENT'),
        ('Ortho', 'Orthopaedics'),
        ('Cardio', 'Cardiology'),
        ('Neuro', 'Neurology'),
        ('General', 'General Medicine'),
        ('Pediatric', 'Paediatrics'),
        ('Gynecology', 'Gynaecology'),
    ]
    id = models.CharField(max_length=64, primary_key=True, default=_entry_id, editable=False)
    name = models.CharField(max_length=255)
    department = models.CharField(max_length=20, choices=DEPARTMENT_CHOICES, db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_WAITING, db_index=True)
    assigned_doctor = models.CharField(max_length=255, blank=True)
    # Resets every day; unique per token_date
    token_number = models.PositiveIntegerField(null=True, blank=True)
    token_date = models.DateField(null=True, blank=True)
    symptoms = models.TextField(blank=True)
    joined_at = models.DateTimeField(default=timezone.now, db_index=True)
    registration_time = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'opd_queue'
        indexes = [
            models.Index(fields=['status', 'joined_at'], name='opd_queue_status_joined_idx'),
        ]
        constraints = [
            models.UniqueConstraint(fields=['token_date', 'token_number'], name='opd_queue_token_per_day'),
        ]

    def __str__(self) -> str:
        return f"#{self.token_number} {self.name} ({self.department}, {self.status})"


class QueueEntryTransition(models.Model):
    """Records a status transition for a queue entry."""
    entry = models.ForeignKey(QueueEntry, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_transitions'
    )
    timestamp = models.DateTimeField(auto_now_add=True)
    reason = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.from_status} → {self.to_status}"
