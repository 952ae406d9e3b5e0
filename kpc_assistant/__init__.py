"""
KPC component library assistant.

Routes questions about KPC components to the kpc-mcp-server capabilities
and an Ollama model. Start from kpc_assistant.core.session.AssistantSession.
"""

__version__ = "1.0.0"
