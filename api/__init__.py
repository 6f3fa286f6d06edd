"""
API Module for the lead qualification service.

FastAPI application with routes for:
- Chat turns and qualification state
- Conversation mode (human takeover)
- Per-agent scoring configs
- Token usage analytics
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
