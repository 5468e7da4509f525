"""
WSGI config for the sanjeevani project.

Serves the REST surface only; the queue board WebSocket needs the ASGI
application in :mod:`sanjeevani.asgi`.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'sanjeevani.settings')

application = get_wsgi_application()
