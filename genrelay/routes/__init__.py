"""
Routes package for the generation relay.
Contains Flask Blueprints; each is mounted under config.API_PREFIX and again
under config.LEGACY_PREFIX for clients still calling the old function paths.
"""

__all__ = [
    "register_blueprints",
]


def _print_route_map(app):
    """Print all registered API routes at startup for debugging."""
    from genrelay.config import config

    api_routes = []
    for rule in app.url_map.iter_rules():
        if rule.rule.startswith(config.API_PREFIX):
            methods = ",".join(sorted(m for m in rule.methods if m not in ("HEAD", "OPTIONS")))
            api_routes.append(f"  {methods:8s} {rule.rule}")

    api_routes.sort(key=lambda x: x.split()[-1])  # Sort by path

    print("[ROUTES] Registered API endpoints:")
    for route in api_routes:
        print(route)
    print(f"[ROUTES] Total: {len(api_routes)} endpoints (mirrored under {config.LEGACY_PREFIX})")


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    from genrelay.config import config
    from genrelay.routes.download import bp as download_bp
    from genrelay.routes.health import bp as health_bp
    from genrelay.routes.poll import bp as poll_bp
    from genrelay.routes.submit import bp as submit_bp
    from genrelay.routes.uploads import bp as uploads_bp
    from genrelay.routes.webhooks import bp as webhooks_bp

    blueprints = [
        (health_bp, "health"),
        (submit_bp, "submit"),
        (poll_bp, "poll"),
        (webhooks_bp, "webhooks"),
        (uploads_bp, "uploads"),
        (download_bp, "download"),
    ]

    for blueprint, _name in blueprints:
        app.register_blueprint(blueprint, url_prefix=config.API_PREFIX)

    # Same handlers under the old serverless paths (cached frontends, provider callbacks in flight)
    if config.LEGACY_PREFIX:
        for blueprint, name in blueprints:
            app.register_blueprint(blueprint, url_prefix=config.LEGACY_PREFIX, name=f"{name}_compat")

    if config.IS_DEV or config.LOG_ROUTES:
        _print_route_map(app)
