"""Streaming chat-completion proxy for the WebiScriptura web chat.

Trims the conversation to a character budget, forwards it to an OpenAI or
Azure OpenAI chat-completion endpoint and relays the streamed reply as raw
text.
"""

__all__ = []
