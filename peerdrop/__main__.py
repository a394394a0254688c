"""Entry point for running a node from environment settings."""
import uvicorn

from .app import create_app
from .config import Settings, setup_logging

if __name__ == "__main__":
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.control_port)
