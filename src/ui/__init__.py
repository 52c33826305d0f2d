"""NiceGUI interface - thin visualization layer for chat interactions.

Responsibilities:
    - Chat message display with streaming progress
    - Attachment picking with immediate validation feedback
    - Storage usage indicator and new-chat reset

Contains minimal business logic. Delegates all operations to the
coordinator and renders message text through render_safe_html.
"""
