"""
OPD queue endpoints.

Reads return the ``opd_queue`` records (``/queue``) or the ordered,
display-ready board (``/queue/board``). Writes go through
:mod:`opd.services.queue`, which records a transition and publishes the
change to every live board.
"""
from __future__ import annotations

import structlog
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import CanRegisterVisit, CanUseOpdQueue
from ..reconcile import MalformedRecord, entry_from_record, mark_new
from ..serializers import AssignDoctorSerializer, EntryIdSerializer, QueueJoinSerializer
from ..services import queue as queue_service

log = structlog.get_logger(__name__)


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_snapshot(request):
    """Return every queue record, newest arrival first."""
    return Response(queue_service.load_snapshot())


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_board(request):
    """Return the queue in board order.

    ``known`` is an optional comma separated list of ids the caller is
    already showing; entries outside it come back with ``isNew: true``.
    """
    now = timezone.now()
    known = {i for i in request.query_params.get('known', '').split(',') if i}
    entries = []
    for record in queue_service.load_snapshot(now):
        try:
            entries.append(entry_from_record(record))
        except MalformedRecord as exc:
            log.warning('queue_snapshot_row_dropped', reason=str(exc))
    return Response({
        'entries': queue_service.board_payload(mark_new(known, entries), now),
        'generatedAt': now.isoformat(),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanRegisterVisit])
def queue_join(request):
    """Register a visit and put the patient at the back of the queue."""
    ser = QueueJoinSerializer(data=request.data)
    ser.is_valid(raise_exception=True)
    entry = queue_service.join_queue(operator=request.user, **ser.validated_data)
    return Response(queue_service.serialize_record(entry), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_assign(request):
    ser = AssignDoctorSerializer(data=request.data)
    ser.is_valid(raise_exception=True)
    entry = queue_service.assign_doctor(
        ser.validated_data['id'], ser.validated_data['doctor'], operator=request.user,
    )
    return Response(queue_service.serialize_record(entry))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_complete(request):
    ser = EntryIdSerializer(data=request.data)
    ser.is_valid(raise_exception=True)
    entry = queue_service.complete_visit(ser.validated_data['id'], operator=request.user)
    return Response(queue_service.serialize_record(entry))


@api_view(['POST'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_remove(request):
    """Delete an entry. Removing an unknown id is reported, not an error."""
    ser = EntryIdSerializer(data=request.data)
    ser.is_valid(raise_exception=True)
    removed = queue_service.remove_entry(ser.validated_data['id'], operator=request.user)
    return Response({'ok': True, 'removed': removed})


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanUseOpdQueue])
def queue_stats(request):
    return Response(queue_service.queue_stats())
