"""
Core configuration and shared primitives.

Modules:
- config: settings, model name, capability server command, timeouts.
- errors: error taxonomy.
- observability: logging setup and execution ids.
- capability: data model shared by the router, transport and composer.
- capability_registry: the static capability catalog.
- session: AssistantSession, the facade used by the CLI and the HTTP API.
"""
