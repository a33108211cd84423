"""Vercel entry point.

The Python builder imports this module and serves the WSGI callable named
``app``. The MongoDB connection is opened by the first article request and
reused while the function instance stays warm.
"""
import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'core.settings')

from core.wsgi import application as app  # noqa: E402,F401
