# LLM integration module for the RoboDoc chat assistant
from .chat_client import ChatClient
from .prompt_builder import PromptBuilder, detect_language

__all__ = ["ChatClient", "PromptBuilder", "detect_language"]
