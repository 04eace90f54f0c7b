"""Application entrypoint.

Builds the Flask app, wires CORS and JSON error handlers, and registers the
relay blueprints under the API prefix and the legacy function prefix.
"""

from __future__ import annotations

import re

from flask import Flask
from flask_cors import CORS

from genrelay.config import config
from genrelay.utils.error_handlers import register_error_handlers


def create_app() -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_CONTENT_LENGTH

    # Browser clients on any origin; provider callbacks are server-to-server.
    prefixes = [config.API_PREFIX] + ([config.LEGACY_PREFIX] if config.LEGACY_PREFIX else [])
    CORS(
        app,
        resources={f"{re.escape(p)}/*": {"origins": "*"} for p in prefixes},
        allow_headers=["Content-Type", "Authorization", "X-USER-ID"],
        expose_headers=["Content-Type", "Content-Disposition"],
        methods=["GET", "POST", "OPTIONS"],
    )

    register_error_handlers(app)

    from genrelay.routes import register_blueprints

    register_blueprints(app)

    if config.IS_DEV:
        config.log_summary()
    for warning in config.validate():
        print(f"[CONFIG] Warning: {warning}")

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host=config.HOST, port=config.PORT, debug=config.IS_DEV)
