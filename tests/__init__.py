"""
Test Suite
==========

Test suite matching the community_chat/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: HTTP endpoint and client session tests
- sse: Tests exercising the streaming event protocol
"""
