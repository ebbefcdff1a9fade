"""
Data Models
===========

Pydantic models for activities, chat messages and API responses.
"""
