"""
Application Entry Point

Run the Flask application.
"""

import os
import sys

# Allow running from a source checkout without installing the package
backend_dir = os.path.dirname(os.path.abspath(__file__))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

parent_dir = os.path.dirname(backend_dir)
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from app import create_app

# Create application
app = create_app()

if __name__ == '__main__':
    host = os.environ.get('FLASK_HOST', '0.0.0.0')
    port = int(os.environ.get('FLASK_PORT', 5000))
    debug = os.environ.get('FLASK_ENV', 'development') == 'development'

    app.logger.info(f"Plate scanning service at http://{host}:{port} (debug: {debug})")

    app.run(
        host=host,
        port=port,
        debug=debug,
        threaded=True
    )
