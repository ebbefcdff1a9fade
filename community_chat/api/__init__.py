"""
HTTP API
========

FastAPI application exposing the chat stream and health endpoints.
"""
