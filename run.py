#!/usr/bin/env python3
"""
Entry point for the GameOn sync service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    LOG_LEVEL: Logging level (default: INFO)
    SWEEP_ENABLED: Run the idle connection sweeper (default: true)
"""
import os
import logging


def run_sync_service():
    """Run the sync service with its Socket.IO server."""
    from gameon_sync.app import create_app

    app = create_app()
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if app.config['SWEEP_ENABLED']:
        app.sweeper.start()

    port = int(os.getenv('PORT', 5000))
    debug = app.config.get('DEBUG', False)

    logging.getLogger(__name__).info(f"Starting GameOn sync service on port {port}...")
    app.socketio.run(app, host='0.0.0.0', port=port, debug=debug, use_reloader=False,
                     allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    run_sync_service()
