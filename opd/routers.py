"""
URL mappings for the OPD queue API.

Paths carry no trailing slash, matching the dashboard client.
"""
from django.urls import include, path
from rest_framework.authtoken.views import obtain_auth_token

from .views import access, health
from .views import queue

urlpatterns = [
    path('healthz', health.healthz),
    path('', include('django_prometheus.urls')),
    path('api/auth/token', obtain_auth_token),
    path('api/access/features', access.access_features),
    path('api/opd/queue', queue.queue_snapshot),
    path('api/opd/queue/board', queue.queue_board),
    path('api/opd/queue/join', queue.queue_join),
    path('api/opd/queue/assign', queue.queue_assign),
    path('api/opd/queue/complete', queue.queue_complete),
    path('api/opd/queue/remove', queue.queue_remove),
    path('api/opd/queue/stats', queue.queue_stats),
]
