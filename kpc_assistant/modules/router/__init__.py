"""
Router module for intent classification and request routing.

- rules: deterministic keyword routing
- call_parser: capability call extraction from backend text
- classifier: backend-first classification with rule fallback
- api_router: HTTP routes
"""
