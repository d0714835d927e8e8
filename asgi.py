"""
asgi.py -- ASGI entry point for TenantAuth.

api/main.py owns the app, its middleware and its routers; servers only need
the module-level `app`.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
