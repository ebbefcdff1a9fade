"""
Core Collaborators
==================

Boundaries to the services that feed the chat stream.

Modules:
- generation: Response text producers
- lookup: Activity and image search
"""
