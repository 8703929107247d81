"""
posprint package

This module provides an application factory with minimal wiring:
- Configures logging via posprint.core.logging
- Creates a Flask app with templates from the package
- Initializes CSRF protection and sets a CSRF cookie after each request
- Builds one PrintService per app and stores it in app.extensions["posprint"]
- Registers blueprints (non-failing optional imports)
- Optionally starts the dispatcher loop and attaches an MCP server
"""

from __future__ import annotations

import importlib
import os
import uuid
from collections.abc import Sequence
from typing import Optional

from flask import Flask, g, request
from flask_wtf import CSRFProtect
from flask_wtf.csrf import generate_csrf
from jinja2 import StrictUndefined

csrf = CSRFProtect()


def _default_secret_key() -> str:
    return os.environ.get("POSPRINT_SECRET_KEY", "posprint_dev_secret_key")


def _maybe_register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    """
    Try to import a blueprint from import_path and register it if found.
    Missing modules are logged at debug level and skipped.
    """
    try:
        mod = importlib.import_module(import_path)
    except ImportError as e:
        app.logger.debug("Blueprint not registered (%s.%s): %s", import_path, attr, e)
        return
    bp = getattr(mod, attr, None)
    if bp is not None:
        app.register_blueprint(bp)
        app.logger.info("Registered blueprint: %s.%s", import_path, attr)


def _set_request_id() -> None:
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex


def _set_csrf_cookie(response):
    """
    Ensure a CSRF cookie is present for client-side requests that use AJAX.
    """
    token = generate_csrf()
    response.set_cookie("csrf_token", token, secure=False, httponly=False, samesite="Lax")
    return response


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    service=None,
    register_worker: bool = True,
    enable_mcp: bool = False,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - blueprints: optional list of (import_path, attribute) tuples to register
      If None, the default set is registered.
    - service: a PrintService to use; a default one (real device sources and
      transports) is built when omitted
    - register_worker: if True, starts the dispatcher event loop thread up front
    - enable_mcp: if True, creates and attaches an MCP server instance to the app

    Returns:
    - Flask app instance
    """
    from posprint.core.logging import configure_logging
    from posprint.printing.service import PrintService

    app = Flask("posprint")
    # Fail fast on missing variables in templates
    app.jinja_env.undefined = StrictUndefined

    app.secret_key = _default_secret_key()
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("POSPRINT_MAX_CONTENT_LENGTH", 1024 * 1024))  # 1 MiB

    csrf.init_app(app)

    configure_logging()
    app.logger.info("posprint app created")

    app.url_map.strict_slashes = False

    if service is None:
        service = PrintService()
    app.extensions["posprint"] = service

    @app.before_request
    def _before_request():
        _set_request_id()

    @app.after_request
    def _after_request(response):
        # Always set CSRF cookie on safe methods and redirects so forms keep working after POST→redirect.
        if request.method in ("GET", "HEAD", "OPTIONS") or (300 <= response.status_code < 400):
            return _set_csrf_cookie(response)
        return response

    default_blueprints = [
        ("posprint.web.health", "health_bp"),  # health endpoint
        ("posprint.web.settings", "settings_bp"),  # settings + diagnostics pages
        ("posprint.web.api", "api_bp"),  # versioned JSON API
    ]
    for import_path, attr in blueprints or default_blueprints:
        _maybe_register_blueprint(app, import_path, attr)

    if register_worker:
        service.ensure_worker()
        app.logger.info("Dispatcher loop ensured")

    if enable_mcp:
        from .mcp import create_mcp_server_if_available

        mcp_server = create_mcp_server_if_available(service)
        if mcp_server:
            app.extensions["posprint_mcp"] = mcp_server
            app.logger.info("MCP server created and attached to app")
        else:
            app.logger.warning("MCP server unavailable (install the 'mcp' extra)")

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["create_app", "csrf"]
