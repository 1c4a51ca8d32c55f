from __future__ import annotations

import uvicorn

from .config import Settings
from .server import create_app


if __name__ == "__main__":
    settings = Settings.from_env()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level)
