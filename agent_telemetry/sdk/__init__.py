"""
SDK for agent telemetry.

Provides tracked wrappers around model provider clients.
"""

from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
