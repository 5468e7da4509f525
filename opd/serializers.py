import math

import bleach
from django.utils import timezone
from rest_framework import serializers

from .models import QueueEntry


class QueueEntryRecordSerializer(serializers.ModelSerializer):
    """The ``opd_queue`` row as sent in snapshots and push payloads.

    ``wait_time`` is derived at serialization time (``context['now']``
    when given) and is informational only; consumers order by the
    timestamps.
    """
    wait_time = serializers.SerializerMethodField()

    class Meta:
        model = QueueEntry
        fields = [
            'id', 'name', 'department', 'status', 'assigned_doctor', 'token_number',
            'symptoms', 'joined_at', 'registration_time', 'completed_at', 'wait_time',
        ]

    def get_wait_time(self, obj: QueueEntry) -> int:
        now = self.context.get('now') or timezone.now()
        started = obj.registration_time or obj.joined_at
        return max(0, math.floor((now - started).total_seconds() / 60))


def _clean(value: str) -> str:
    return bleach.clean((value or '').strip(), strip=True)


class QueueJoinSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    department = serializers.ChoiceField(choices=[c for c, _ in QueueEntry.DEPARTMENT_CHOICES])
    symptoms = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_name(self, v):
        v = _clean(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters')
        return v

    def validate_symptoms(self, v):
        return _clean(v)


class EntryIdSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=64)


class AssignDoctorSerializer(EntryIdSerializer):
    doctor = serializers.CharField(max_length=255)

    def validate_doctor(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Doctor name is required')
        return v
