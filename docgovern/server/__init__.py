"""
DocGovern Server - HTTP surface for the document lifecycle engine.

Run with:
    docgovern-server            # CLI entry point
    python -m docgovern.server  # Module entry point

Or programmatically:
    from docgovern.server import DocGovernServer
    server = DocGovernServer(port=8000)
    server.run()
"""

from .app import DocGovernServer, create_app
from .config import ServerConfig

__all__ = [
    "create_app",
    "DocGovernServer",
    "ServerConfig",
]
