"""
WSGI config for the HMS project.

It exposes the WSGI callable as a module-level variable named
``application``.  Live session monitoring needs the ASGI entrypoint in
``hms.asgi``; plain WSGI serves the HTTP pages and API only.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hms.settings')

application = get_wsgi_application()
