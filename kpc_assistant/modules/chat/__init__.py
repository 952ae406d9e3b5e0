"""
Answer composition (buffered and streaming) and prompt templates.
"""
