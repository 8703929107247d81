"""
Web module for posprint.

Exposes blueprints for:
- JSON API (v1): api_bp
- Health endpoint: health_bp
- Settings and diagnostics pages: settings_bp
"""

from .api import api_bp
from .health import health_bp
from .settings import settings_bp

__all__ = ["api_bp", "health_bp", "settings_bp"]
