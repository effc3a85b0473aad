"""
Obelisk

Memory-augmented conversational backend: stores memories, retrieves them by
semantic similarity and feeds them, with bounded history, to a pluggable LLM.

Philosophy:
- Conversation state is durable: the user turn is stored before anything can fail
- Memories are chunked and embedded independently
- Embedding requests are batched and deduplicated
- Errors cross component boundaries as tagged results, not exceptions

Usage:
    from obelisk.app import create_app
    app = create_app()
    result = await app.chat.send_message("What is Elixir?", "my-session")
"""

__version__ = "0.1.0"
