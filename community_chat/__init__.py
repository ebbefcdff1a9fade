"""
Community Chat
==============

Streaming chat backend and client for discovering community activities.

This package provides:
- SSE streaming-event protocol shared by producer and consumer
- FastAPI stream producer with duplicate-request suppression
- Async stream consumer that folds events into chat state
- Connection lifecycle guards against auto-reconnect storms
"""

__version__ = "1.0.0"
__author__ = "Community Chat Team"
