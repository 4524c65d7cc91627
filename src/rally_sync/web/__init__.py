"""
Web module for rally-sync.

Provides HTTP server with:
- Health, status and Prometheus metrics endpoints
- JSON API for roster, timeline, leader views and notes
- start / cancel commands
- Server-Sent Events broadcast channel
"""

from .web_server import WebServer

__all__ = ['WebServer']
