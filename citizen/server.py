"""
Citizen control plane entry point.

    python -m citizen.server
    gunicorn "citizen.server:app"
"""

import logging
import os

from citizen.app import create_app
from citizen.lifecycle import register_shutdown_handlers

app = create_app()

if __name__ == '__main__':
    logger = logging.getLogger('citizen')

    # Register graceful shutdown handlers
    register_shutdown_handlers(app)

    host = os.getenv('HOST', '0.0.0.0')  # nosec B104
    port = int(os.getenv('PORT', '8080'))
    logger.info(f"Starting Citizen control plane on {host}:{port}...")
    app.run(host=host, port=port, debug=False, use_reloader=False)
