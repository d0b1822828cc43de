"""
asgi.py -- ASGI entry point for Cryptify.

Process managers and uvicorn import the application from here so the import
path stays stable if api/ is ever split further.

Run with:  uvicorn asgi:app --host 0.0.0.0 --port 3450
           python main.py
"""

from api.main import app

__all__ = ["app"]
