from django.urls import path

from .consumers import QueueBoardConsumer

websocket_urlpatterns = [
    path("ws/opd-queue/", QueueBoardConsumer.as_asgi()),
]
