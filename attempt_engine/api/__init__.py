"""API route package — imports all routers for main.py."""

from attempt_engine.api.health import router as health_router  # noqa: F401
from attempt_engine.api.attempts import router as attempts_router  # noqa: F401
