from .openai_client import call_openai_chat_async, call_openai_text_async, sanitize_json

__all__ = [
    "call_openai_chat_async",
    "call_openai_text_async",
    "sanitize_json",
]
