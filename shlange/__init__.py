"""
shlange — persona chat client.
Talks to a chat-completion proxy under one of several personas and keeps
conversation history and persona settings in a local key-value store.
"""

__version__ = "0.4.0"
