"""Admin registrations for the OPD queue models."""

from django.contrib import admin

from .models import Profile, QueueEntry, QueueEntryTransition


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'role', 'full_name', 'phone', 'created_at')
    list_filter = ('role',)
    search_fields = ('user__username', 'full_name', 'phone')


class QueueEntryTransitionInline(admin.TabularInline):
    model = QueueEntryTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'operator', 'timestamp', 'reason')


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ('token_number', 'name', 'department', 'status', 'assigned_doctor', 'joined_at')
    list_filter = ('status', 'department')
    search_fields = ('id', 'name', 'assigned_doctor')
    inlines = [QueueEntryTransitionInline]


@admin.register(QueueEntryTransition)
class QueueEntryTransitionAdmin(admin.ModelAdmin):
    list_display = ('entry', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('entry__id', 'operator__username')
