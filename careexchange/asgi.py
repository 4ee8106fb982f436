"""
ASGI config for the CareExchange project.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'careexchange.settings')

application = get_asgi_application()
