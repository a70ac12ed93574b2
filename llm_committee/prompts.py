from typing import Optional, Sequence

from .catalog import LabelLookup, display_name
from .schemas import AssembledResponse, Criteria

JUDGE_DEFAULT = """You are an expert judge evaluating AI model responses. Your task is to analyze the responses to a user prompt and determine which is best.

Evaluate every response against the criteria below, giving more weight to criteria with higher importance. Be specific in your reasoning: reference actual content from the responses.

Respond with a single JSON object and nothing else, using this exact structure:
{
  "winnerModelId": "the model ID of the best response",
  "winnerModelName": "the display name of the winner",
  "reasoning": "A 2-3 sentence explanation of why this response won, referencing specific strengths and comparing to other responses",
  "scores": [
    {
      "modelId": "model ID",
      "score": 85,
      "strengths": ["strength 1", "strength 2"],
      "weaknesses": ["weakness 1"]
    }
  ]
}

Include one entry in "scores" for every response. Scores range from 0 to 100. "winnerModelId" must be one of the model IDs listed above."""

CONSENSUS_DEFAULT = """You are an expert editor. Several AI models answered the same user prompt. Synthesize the single best answer by combining their strongest, most accurate points and resolving any disagreements.

Respond with a single JSON object and nothing else, using this exact structure:
{
  "synthesizedResponse": "the complete merged answer, in markdown",
  "attributions": [
    {
      "modelId": "model ID",
      "modelName": "display name",
      "contribution": "one sentence on what this response contributed"
    }
  ],
  "keyPoints": [
    {
      "point": "a key point in the merged answer",
      "sourceModelIds": ["model IDs that made this point"]
    }
  ]
}

Include one attribution for every response, even if it contributed little."""

CRITERIA_GENERATOR_DEFAULT = """You are an expert at designing evaluation criteria for comparing AI model responses.

Analyze the evaluation focus and generate a set of 3-7 evaluation criteria. Each criterion should have:
- A short, clear name (e.g., "Accuracy", "Code Quality")
- A weight from 1-5 indicating importance (5 = most important)
- A brief description of what to evaluate

Also provide a short name and description for this criteria set as a whole.

Return your response as a JSON object with this exact structure:
{
  "name": "Short name for this criteria set",
  "description": "One-sentence description of what this criteria set evaluates",
  "criteria": [
    {
      "name": "Criterion Name",
      "weight": 4,
      "description": "What this criterion evaluates"
    }
  ]
}

Guidelines:
- Generate criteria that specifically address what the user described
- Assign higher weights to criteria that are most relevant to the user's description
- Keep criterion names concise (1-3 words)
- Keep criterion descriptions under 100 characters
- Ensure criteria are distinct and don't overlap significantly"""


def format_criteria(criteria: Optional[Criteria]) -> str:
    """Render a weighted rubric as markdown bullet lines."""
    if criteria is None or not criteria.items:
        return ""
    return "\n".join(
        f"- **{item.name}** (importance: {item.weight}/5): {item.description}"
        for item in criteria.items
    )


def format_responses(responses: Sequence[AssembledResponse], labels: LabelLookup = None) -> str:
    """Number and label every response; the model ID is what judges must echo back."""
    blocks = []
    for i, r in enumerate(responses, start=1):
        label = r.label or display_name(r.backend_id, labels)
        blocks.append(f"### Response {i}: {label} ({r.backend_id})\n{r.content.strip()}")
    return "\n\n---\n\n".join(blocks)


def build_judge_prompt(
    prompt: str,
    responses: Sequence[AssembledResponse],
    criteria: Optional[Criteria] = None,
    labels: LabelLookup = None,
    instructions: str = JUDGE_DEFAULT,
) -> str:
    # First paragraph introduces the role; the rest is the output contract
    intro, _, task = instructions.partition("\n\n")
    parts = [
        intro,
        f"## Original User Prompt\n{prompt}",
        f"## Responses to Evaluate\n{format_responses(responses, labels)}",
    ]
    rubric = format_criteria(criteria)
    if rubric:
        parts.append(f"## Evaluation Criteria ({criteria.label})\n{rubric}")
    parts.append(f"## Your Task\n{task}")
    return "\n\n".join(parts)


def build_consensus_prompt(
    prompt: str,
    responses: Sequence[AssembledResponse],
    criteria: Optional[Criteria] = None,
    labels: LabelLookup = None,
) -> str:
    return build_judge_prompt(prompt, responses, criteria, labels, instructions=CONSENSUS_DEFAULT)


def build_criteria_generation_prompt(description: str) -> str:
    intro, _, rest = CRITERIA_GENERATOR_DEFAULT.partition("\n\n")
    return f'{intro}\n\nThe user wants to evaluate AI responses with the following focus:\n"{description}"\n\n{rest}'
