#!/usr/bin/env python3
"""
posprint - Flask service for receipt, label and cash drawer printing
"""

import os

from posprint import create_app

app = create_app()

if __name__ == "__main__":
    host = os.environ.get("POSPRINT_HOST", "0.0.0.0")
    port = int(os.environ.get("POSPRINT_PORT", "5000"))
    app.logger.info("Starting posprint on http://%s:%d", host, port)
    app.logger.info("Press Ctrl+C to stop the server")
    app.run(host=host, port=port, debug=False)
