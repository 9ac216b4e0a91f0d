"""
ASGI entry point

    uvicorn api.main:app --host 0.0.0.0 --port 8000

The default wiring uses the in-memory directory and assignment store; a
deployment passes its own collaborators to create_app().
"""
from api.app import create_app

app = create_app()
