"""WSGI entry point; application servers get the production settings unless told otherwise."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "school_attendance.settings.production")

application = get_wsgi_application()
