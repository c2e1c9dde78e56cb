"""agentdesk: session and message synchronization engine for the agent console.

Submodules are not eagerly imported here so that importing ``agentdesk``
does not pull in httpx or python-socketio. Use explicit imports:
    from agentdesk.services.sync.views import chat_view, queue_view
"""

__version__ = "1.0.0"
