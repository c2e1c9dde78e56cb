"""Console services.

Imports are intentionally NOT eagerly loaded here to avoid pulling in
httpx and python-socketio when only the sync engine is needed.
Use explicit imports:
    from agentdesk.services.sync.message_store import MessageStore
"""
