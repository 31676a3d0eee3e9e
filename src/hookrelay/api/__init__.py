"""FastAPI REST API for Hookrelay.

Admin endpoints for subscriptions and the dead-letter queue, plus an
ingestion endpoint for domain events.

Example:
    ```python
    import uvicorn
    from hookrelay.api import create_app

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
    ```
"""

from .app import create_app
from .router import router

__all__ = [
    "create_app",
    "router",
]
