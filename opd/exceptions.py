import structlog
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .services.queue import InvalidTransition, QueueEntryNotFound, QueueError

log = structlog.get_logger(__name__)

QUEUE_ERROR_STATUS = {
    QueueEntryNotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_400_BAD_REQUEST,
}


def api_exception_handler(exc, context):
    if isinstance(exc, QueueError):
        code = QUEUE_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        return Response({'ok': False, 'error': {'code': exc.code, 'message': str(exc)}}, status=code)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        log.error('api_unhandled_error', view=type(context.get('view')).__name__, exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'internal error'}}, status=500)
    # normalize response
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
