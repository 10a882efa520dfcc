"""
Prompt-to-image generator: a backend proxy for the OpenAI Images API and the
client-side request lifecycle that drives it.
"""
__version__ = "1.0.0"
