from __future__ import annotations

from typing import Any

DEFAULT_HISTORY_LIMIT = 5
GENERIC_RESPONSE_FIELDS = ["response", "message", "result"]
CHAT_COMPLETIONS_RESPONSE_FIELDS = ["choices.0.message.content"]
GEMINI_RESPONSE_FIELDS = ["candidates.0.content.parts.0.text"]
IMAGE_RESPONSE_FIELDS = ["url", "image"]

DEFAULT_UPSTREAMS: dict[str, Any] = {
    "default_model": "chatgpt",
    "models": {
        "chatgpt": {
            "aliases": ["gpt", "gpt4"],
            "targets": [
                {
                    "name": "kastg-chatgpt",
                    "url": "https://api.kastg.xyz/api/ai/chatgptv2",
                    "request_shape": "prompt_history",
                    "history_limit": DEFAULT_HISTORY_LIMIT,
                    "response_fields": GENERIC_RESPONSE_FIELDS,
                },
                {
                    "name": "deepenglish-chat",
                    "url": "https://deepenglish.com/wp-json/ai-chatbot/v1/chat",
                    "request_shape": "messages",
                    "history_limit": DEFAULT_HISTORY_LIMIT,
                    "response_fields": ["response", "message"],
                },
            ],
        },
        "claude": {
            "targets": [
                {
                    "name": "kastg-claude",
                    "url": "https://api.kastg.xyz/api/ai/claude",
                    "request_shape": "prompt_history",
                    "history_limit": DEFAULT_HISTORY_LIMIT,
                    "response_fields": GENERIC_RESPONSE_FIELDS,
                },
                {
                    "name": "cocos-claude",
                    "url": "https://api.cocos.si/chat/completions",
                    "request_shape": "chat_completions",
                    "upstream_model": "claude-3-5-sonnet",
                    "history_limit": DEFAULT_HISTORY_LIMIT,
                    "response_fields": CHAT_COMPLETIONS_RESPONSE_FIELDS,
                },
            ],
        },
        "perplexity": {
            "aliases": ["search"],
            "targets": [
                {
                    "name": "kastg-perplexity",
                    "url": "https://api.kastg.xyz/api/ai/perplexity",
                    "request_shape": "prompt",
                    "response_fields": GENERIC_RESPONSE_FIELDS,
                },
            ],
        },
        "gemini": {
            "fallback_model": "chatgpt",
            "targets": [
                {
                    "name": "google-gemini",
                    "url": (
                        "https://generativelanguage.googleapis.com/v1beta/models/"
                        "gemini-pro:generateContent"
                    ),
                    "request_shape": "gemini_contents",
                    "requires_api_key": True,
                    "response_fields": GEMINI_RESPONSE_FIELDS,
                },
            ],
        },
    },
    "image": {
        "direct_url": "https://image.pollinations.ai/prompt/",
        "width": 1024,
        "height": 1024,
        "flags": {"nologo": "true", "enhance": "true"},
        "fallback": {
            "name": "kastg-stablediffusion",
            "url": "https://api.kastg.xyz/api/ai/stablediffusion",
            "request_shape": "prompt",
            "response_fields": IMAGE_RESPONSE_FIELDS,
        },
    },
}
