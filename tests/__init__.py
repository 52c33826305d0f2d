"""Test package for the chat engine.

Provides test coverage for all components with unit tests for isolated
logic and integration tests for whole turns against a fake backend.

Structure:
    - unit/: Individual function and class tests
    - integration/: Streaming, submission and API workflows

The agent backend is replaced by httpx.MockTransport; everything else runs
for real. Leverages pytest with pytest-check for soft assertions.
"""
