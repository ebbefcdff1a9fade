"""
API Routes
==========

- chat: SSE chat stream
- health: Health checks
"""
