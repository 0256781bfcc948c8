"""
Text-generation capabilities for the AI gateway.
"""

from .base import EchoGenerator, Generation, TextGenerator
from .openai_client import OpenAIGenerator

__all__ = ["EchoGenerator", "Generation", "OpenAIGenerator", "TextGenerator"]
