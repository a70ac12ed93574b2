"""Judging rubrics: built-in presets, custom sets, and model-generated sets."""

from __future__ import annotations

from typing import Iterable, Union

from loguru import logger

from .errors import BackendError, ParsingError, PreconditionError
from .parsing import parse_generated_criteria
from .prompts import build_criteria_generation_prompt
from .schemas import Criteria, CriterionItem

DEFAULT_CRITERIA_ID = "general"
MAX_DESCRIPTION_CHARS = 1000


def _items(*rows: tuple[str, int, str]) -> tuple[CriterionItem, ...]:
    return tuple(CriterionItem(name=n, weight=w, description=d) for n, w, d in rows)


PRESETS: tuple[Criteria, ...] = (
    Criteria(
        id="general",
        label="General Purpose",
        description="Balanced evaluation for most prompts",
        items=_items(
            ("Accuracy", 5, "Correctness and factual accuracy of the response"),
            ("Completeness", 4, "Thoroughness in addressing all aspects of the prompt"),
            ("Clarity", 4, "Clear, well-organized, and easy to understand"),
            ("Relevance", 5, "Directly addresses the prompt without tangents"),
            ("Helpfulness", 4, "Practical and actionable for the user"),
        ),
    ),
    Criteria(
        id="code",
        label="Code Quality",
        description="Evaluates programming and technical responses",
        items=_items(
            ("Correctness", 5, "Code works correctly and handles edge cases"),
            ("Best Practices", 4, "Follows language idioms and coding standards"),
            ("Readability", 4, "Clean, well-structured, properly named"),
            ("Efficiency", 3, "Appropriate time/space complexity"),
            ("Explanation", 4, "Clear explanation of the approach and code"),
            ("Error Handling", 3, "Handles errors and edge cases appropriately"),
        ),
    ),
    Criteria(
        id="creative",
        label="Creative Writing",
        description="Evaluates stories, poetry, and creative content",
        items=_items(
            ("Creativity", 5, "Original ideas, unique perspectives, imaginative"),
            ("Engagement", 5, "Captivating, holds attention, emotionally resonant"),
            ("Style", 4, "Distinctive voice, appropriate tone, literary quality"),
            ("Structure", 3, "Well-paced, coherent narrative or logical flow"),
            ("Language", 4, "Rich vocabulary, vivid imagery, polished prose"),
        ),
    ),
    Criteria(
        id="factual",
        label="Factual Accuracy",
        description="Prioritizes correctness for research and factual queries",
        items=_items(
            ("Accuracy", 5, "Factually correct, verifiable information"),
            ("Sources", 4, "References authoritative sources when appropriate"),
            ("Nuance", 4, "Acknowledges complexity, avoids oversimplification"),
            ("Objectivity", 4, "Balanced, presents multiple perspectives if relevant"),
            ("Completeness", 3, "Covers key aspects without unnecessary detail"),
        ),
    ),
    Criteria(
        id="concise",
        label="Concise & Direct",
        description="Rewards brevity and directness",
        items=_items(
            ("Brevity", 5, "Gets to the point quickly, no unnecessary words"),
            ("Directness", 5, "Answers the question immediately and clearly"),
            ("Accuracy", 4, "Correct despite being brief"),
            ("Completeness", 3, "Covers essentials without over-explaining"),
        ),
    ),
    Criteria(
        id="educational",
        label="Educational",
        description="Evaluates explanations and teaching quality",
        items=_items(
            ("Clarity", 5, "Easy to understand, appropriate for audience"),
            ("Accuracy", 5, "Factually correct information"),
            ("Examples", 4, "Uses helpful examples and analogies"),
            ("Structure", 4, "Logical progression, builds understanding"),
            ("Depth", 3, "Appropriate level of detail"),
        ),
    ),
    Criteria(
        id="persuasive",
        label="Persuasive",
        description="Evaluates arguments and persuasive writing",
        items=_items(
            ("Argument Strength", 5, "Logical, well-reasoned arguments"),
            ("Evidence", 4, "Supports claims with evidence or examples"),
            ("Rhetoric", 4, "Effective persuasive techniques"),
            ("Counterarguments", 3, "Addresses potential objections"),
            ("Conclusion", 4, "Strong, memorable conclusion"),
        ),
    ),
)

_BY_ID = {c.id: c for c in PRESETS}


def get_criteria(criteria_id: str = DEFAULT_CRITERIA_ID) -> Criteria:
    """Look up a preset by id; unknown ids fall back to the general preset."""
    found = _BY_ID.get(criteria_id)
    if found is None:
        logger.warning("Unknown criteria id '{}', using '{}'", criteria_id, DEFAULT_CRITERIA_ID)
        return _BY_ID[DEFAULT_CRITERIA_ID]
    return found


def create_custom_criteria(
    name: str,
    description: str,
    items: Iterable[Union[CriterionItem, dict]],
) -> Criteria:
    return Criteria(
        id="custom",
        label=name,
        description=description,
        items=tuple(i if isinstance(i, CriterionItem) else CriterionItem(**i) for i in items),
        is_custom=True,
    )


async def generate_criteria(client, description: str, model_id: str) -> Criteria:
    """
    Ask a model to design a rubric for the evaluation focus in ``description``.

    Raises:
        PreconditionError: blank or over-long description, or missing model id.
        BackendError: the model call failed.
        ParsingError: the model output held no usable criteria.
    """
    if not description or not description.strip():
        raise PreconditionError("Description is required")
    if len(description) > MAX_DESCRIPTION_CHARS:
        raise PreconditionError(f"Description must be {MAX_DESCRIPTION_CHARS} characters or fewer")
    if not model_id or not model_id.strip():
        raise PreconditionError("Model ID is required")

    messages = [{"role": "user", "content": build_criteria_generation_prompt(description.strip())}]
    result = await client.complete(model_id, messages, json_mode=True)
    if result["status"] != "ok":
        raise BackendError(
            result["error_message"] or "Model request failed",
            backend_id=model_id,
            http_status=result["http_status"],
        )

    criteria = parse_generated_criteria(result["text"])
    if criteria is None:
        raise ParsingError("No valid criteria generated")
    logger.info("Generated criteria '{}' with {} items via {}", criteria.label, len(criteria.items), model_id)
    return criteria
