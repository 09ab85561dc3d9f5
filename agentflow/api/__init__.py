"""
API package - FastAPI routes and schemas.
"""

from agentflow.api.routes import flow, websocket

__all__ = ["flow", "websocket"]
