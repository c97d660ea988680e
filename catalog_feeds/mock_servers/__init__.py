"""Mock commerce platform and store servers for testing."""

from .app import MockPlatformState, create_mock_commerce_api, create_mock_store

__all__ = ["MockPlatformState", "create_mock_commerce_api", "create_mock_store"]
