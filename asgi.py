"""
asgi.py -- ASGI entry point for storekeep.

The store routers of the wider application (products, categories, orders)
are included on this app and guard themselves with
Depends(auth.dependencies.get_current_user).

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
