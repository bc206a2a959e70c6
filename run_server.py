#!/usr/bin/env python
"""
Flask API server launcher
"""

import logging
import os
import sys

from config import Config
from logging_setup import setup_logging

logger = logging.getLogger('run_server')


def main():
    setup_logging(Config.LOG_LEVEL)

    from flask_api import create_app
    app = create_app()

    port = int(os.getenv('PORT', '5000'))
    logger.info("Starting Flask API server on port %s (Ctrl+C to stop)", port)

    try:
        app.run(
            debug=False,
            port=port,
            host='0.0.0.0',
            use_reloader=False,
            threaded=True
        )
    except KeyboardInterrupt:
        logger.info("Server stopped.")
        sys.exit(0)


if __name__ == '__main__':
    main()
