"""
SSE Relay - pub/sub bus to Server-Sent Events bridge.
"""

__version__ = "0.1.0"


def get_app():
    """Get the FastAPI application instance (lazy import to avoid loading settings early)."""
    from .main import app
    return app


__all__ = ["get_app", "__version__"]
