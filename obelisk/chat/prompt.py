"""
RAG prompt assembly

The prompt is one user-role message: a fixed preamble, an optional block of
retrieved context, an optional block of recent history, and the new turn.
"""

from typing import Sequence

SYSTEM_PREAMBLE = """You are an intelligent assistant with access to relevant context from previous conversations and stored knowledge. Use this context to provide accurate, helpful responses.

When answering:
- Draw upon the provided context when relevant
- Reference specific information from context when appropriate
- If context doesn't contain relevant information, use your general knowledge
- Be conversational and helpful
- Maintain context from the conversation history
"""


def format_context(context: Sequence) -> str:
    if not context:
        return ""
    lines = "\n".join(f"- {chunk.text}" for chunk in context)
    return f"\n\nRelevant context from memory:\n{lines}\n"


def format_history(history: Sequence) -> str:
    if not history:
        return ""
    lines = "\n".join(
        f"{str(entry.role).capitalize()}: {entry.content or 'No content'}" for entry in history
    )
    return f"\n\nConversation history:\n{lines}\n"


def build_rag_prompt(user_message: str, context: Sequence, history: Sequence) -> str:
    """
    Build the single-message RAG prompt.

    Args:
        user_message: The new user turn
        context: Retrieved chunks (anything with .text)
        history: Recent messages, oldest first (anything with .role and .content)
    """
    return (
        SYSTEM_PREAMBLE
        + format_context(context)
        + format_history(history)
        + f"\n\nUser: {user_message}\nAssistant:"
    )
