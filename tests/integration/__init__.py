"""Integration tests for components working together as a system.

Coverage:
    - Event streaming over HTTP with chunked bodies
    - Full turns through the coordinator: success, server error, timeout
    - Validation refusals that never reach the network
    - API endpoints with real HTTP requests

Only the agent backend is faked, with httpx.MockTransport.
"""
