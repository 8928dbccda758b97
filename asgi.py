"""
asgi.py -- ASGI entry point for LeadBridge.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 3001

Importing api.main loads Settings; the process refuses to start when
SECRET_KEY is missing or shorter than 32 characters.
"""

from api.main import app

__all__ = ["app"]
