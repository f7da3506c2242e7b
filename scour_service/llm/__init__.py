from .clients import OpenAICompatibleClient, LLMChatMessage, client_from_settings, LLMError
from .decoding import Decoded, MalformedJSON, SchemaViolation, LowConfidence, decode_json

__all__ = [
    "OpenAICompatibleClient",
    "LLMChatMessage",
    "client_from_settings",
    "LLMError",
    "Decoded",
    "MalformedJSON",
    "SchemaViolation",
    "LowConfidence",
    "decode_json",
]
