"""
ASGI entry point: Django for HTTP, Channels for the queue board socket.

Settings must be configured and apps loaded before the routing module is
imported, because the consumer pulls in models.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "sanjeevani.settings")

from django.core.asgi import get_asgi_application  # noqa: E402

django_asgi_app = get_asgi_application()

from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from opd.realtime.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    # session auth fills scope["user"]; the consumer gates on its role
    "websocket": AllowedHostsOriginValidator(
        AuthMiddlewareStack(URLRouter(websocket_urlpatterns))
    ),
})
