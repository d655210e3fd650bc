"""Main entry point for ICalSync."""
import sys
import uvicorn
from pathlib import Path
from .app import create_app
from .config import ConfigManager
from .logging_config import setup_logging


def main():
    """Run the application."""
    data_dir = Path.home() / ".icalsync"

    # Allow override via command line
    if len(sys.argv) > 1:
        data_dir = Path(sys.argv[1])

    config = ConfigManager(data_dir / "config.toml").load()
    logger = setup_logging(config.log_level, data_dir / "debug.log")

    app = create_app(data_dir)

    logger.info(f"Data directory: {data_dir}")
    logger.info(f"Events API: http://localhost:{config.api_port}/api/events")

    uvicorn.run(app, host="127.0.0.1", port=config.api_port)


if __name__ == "__main__":
    main()
