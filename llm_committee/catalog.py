"""Display labels for well-known backends.

Only used for prompt text and reasoning summaries; an unknown identifier is
shown as-is.
"""

from typing import Callable, Mapping, Optional, Union

KNOWN_MODELS = [
    {"id": "anthropic/claude-sonnet-4", "display_name": "Claude Sonnet 4"},
    {"id": "openai/gpt-4o", "display_name": "GPT-4o"},
    {"id": "google/gemini-2.0-flash-001", "display_name": "Gemini 2.0 Flash"},
    {"id": "anthropic/claude-3.5-haiku", "display_name": "Claude 3.5 Haiku"},
    {"id": "openai/gpt-4o-mini", "display_name": "GPT-4o Mini"},
    {"id": "meta-llama/llama-3.3-70b-instruct", "display_name": "Llama 3.3 70B"},
    {"id": "mistralai/mistral-large-2411", "display_name": "Mistral Large"},
    {"id": "deepseek/deepseek-chat", "display_name": "DeepSeek Chat"},
]

DEFAULT_COMMITTEE_IDS = [
    "anthropic/claude-sonnet-4",
    "openai/gpt-4o",
    "google/gemini-2.0-flash-001",
]
DEFAULT_JUDGE_ID = "anthropic/claude-sonnet-4"

_PROVIDER_NAMES = {
    "anthropic": "Anthropic",
    "openai": "OpenAI",
    "google": "Google",
    "meta-llama": "Meta",
    "mistralai": "Mistral",
    "cohere": "Cohere",
    "deepseek": "DeepSeek",
    "qwen": "Qwen",
    "nvidia": "NVIDIA",
    "perplexity": "Perplexity",
    "x-ai": "xAI",
    "amazon": "Amazon",
    "ai21": "AI21",
}

_DISPLAY_NAMES = {m["id"]: m["display_name"] for m in KNOWN_MODELS}

LabelLookup = Union[Mapping[str, str], Callable[[str], Optional[str]], None]


def display_name(backend_id: str, labels: LabelLookup = None) -> str:
    """Human-readable name for a backend; falls back to the identifier itself."""
    name = None
    if callable(labels):
        name = labels(backend_id)
    elif labels is not None:
        name = labels.get(backend_id)
    if not name:
        name = _DISPLAY_NAMES.get(backend_id)
    return name or backend_id


def provider_name(backend_id: str) -> str:
    """Provider name derived from the id prefix, e.g. "meta-llama/..." -> "Meta"."""
    slug = backend_id.split("/", 1)[0] if "/" in backend_id else backend_id
    if not slug:
        return backend_id
    return _PROVIDER_NAMES.get(slug, slug[:1].upper() + slug[1:])
