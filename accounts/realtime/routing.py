from django.urls import path

from .consumers import SessionGuardConsumer

websocket_urlpatterns = [
    path("ws/session/", SessionGuardConsumer.as_asgi()),
]
