"""
Service Tests

Tests for the FastAPI service:
- test_api.py: HTTP endpoints against an in-process TestClient
- test_logger.py: Structured JSON logging
"""
