"""
WSGI config for the containers backend.

Exposes the WSGI callable as a module-level variable named ``application``.
"""
import os
from pathlib import Path

from dotenv import load_dotenv
from django.core.wsgi import get_wsgi_application


env_path = Path(__file__).resolve().parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "server.settings")

application = get_wsgi_application()
