"""
ASGI entry point.

Used by uvicorn (`uvicorn server.asgi:app`) and server.main.
Environment is read from .env before the app (and its config) is built.
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
