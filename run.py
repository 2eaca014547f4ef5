#!/usr/bin/env python3
"""
Environment Administration Entry Point

Starts the FastAPI server on the configured admin port (7000 by default).
"""

import sys

from env_admin.api import run_server
from env_admin.config import get_config
from env_admin.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Base path: {config.base_path}")
    logger.info(f"Template tree: {config.template_directory}")
    logger.info(f"API available at: http://{config.api_host}:{config.api_port}")
    
    try:
        run_server(host=config.api_host, port=config.api_port, log_level=config.log_level)
    except KeyboardInterrupt:
        logger.info("Shutting down environment administration server")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
