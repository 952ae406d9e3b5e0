"""
Ollama backend client: liveness probe, buffered and streaming generation.
"""
