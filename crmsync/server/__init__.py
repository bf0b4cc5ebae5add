"""
crmsync.server - HTTP surface

FastAPI app exposing job control and worker ticks.
"""

from crmsync.server.app import create_app, router

__all__ = ["create_app", "router"]
