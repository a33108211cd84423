"""
Start the development server on ``$PORT`` (default 5000) instead of Django's 8000.

Usage: python manage.py runserver [addrport]
"""
from django.conf import settings
from django.core.management.commands.runserver import Command as BaseRunserverCommand


class Command(BaseRunserverCommand):
    default_addr = '0.0.0.0'

    @property
    def default_port(self):
        return str(settings.PORT)

    def inner_run(self, *args, **options):
        self.stdout.write(f"Server running on port {self.port}")
        super().inner_run(*args, **options)
