"""
Feature modules: transport, llm, router, chat, common.
"""
