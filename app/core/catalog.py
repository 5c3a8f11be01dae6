"""Model catalog: allowed provider models and the shared default bots.

Single source of truth for which model identifiers a bot may use and for the
bots seeded at deployment (``app.seed``). Exposed via GET /v1/bots/models.
"""

ALLOWED_MODELS: tuple[str, ...] = (
    "google/gemini-3-pro",
    "openai/gpt-5.1",
    "openai/gpt-5.1-chat",
    "xai/grok-4.1-fast",
)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

DEFAULT_BOTS: list[dict] = [
    {
        "name": "Gemini 3 Pro",
        "model_name": "google/gemini-3-pro",
        "system_prompt": (
            "You are Gemini 3 Pro, a multimodal, long-context AI assistant. "
            "You excel at complex reasoning, creative tasks, and detailed analysis. "
            "Be helpful, accurate, and engaging in your responses."
        ),
        "temperature": 0.7,
        "max_tokens": 4096,
    },
    {
        "name": "GPT-5.1",
        "model_name": "openai/gpt-5.1",
        "system_prompt": (
            "You are OpenAI GPT-5.1, a high-reasoning adaptive model. "
            "You provide thoughtful, well-reasoned responses across a wide range of topics."
        ),
        "temperature": 0.7,
        "max_tokens": 4096,
    },
    {
        "name": "GPT-5.1 Chat",
        "model_name": "openai/gpt-5.1-chat",
        "system_prompt": (
            "Optimized for dialogue and conversational tasks. You're friendly and "
            "engaging, and keep responses conversational but substantive."
        ),
        "temperature": 0.8,
        "max_tokens": 4096,
    },
    {
        "name": "Grok 4.1 Fast",
        "model_name": "xai/grok-4.1-fast",
        "system_prompt": (
            "High-speed agentic reasoning from xAI. You provide quick, accurate "
            "responses with a slightly witty tone while being genuinely helpful."
        ),
        "temperature": 0.6,
        "max_tokens": 4096,
    },
]


def is_allowed_model(model_name: str) -> bool:
    return model_name in ALLOWED_MODELS
