"""Unit tests for individual components in isolation.

Ensures fast execution with minimal dependencies.

Coverage:
    - uploads/: Attachment validation
    - streaming/: Record decoding and event parsing
    - chat/: Message store, state machine, watchdog, config
    - storage/: Areas and the budget manager
    - ui/: Safe HTML rendering

Follows single responsibility per test function. Leverages pytest-check
for multiple assertions per test.
"""
