"""
Parsing of judge, synthesizer and criteria-generator output.

Models are asked for a single JSON object but often wrap it in prose or
markdown fences. Every parser here tries, in order:

1. the whole text as JSON
2. each fenced code block (```json or bare ```)
3. the outermost {...} span in the text

The extracted object is then validated against a strict pydantic schema.
The verdict and consensus parsers never raise: on any failure they return a
deterministic fallback flagged with ``ok=False``.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .catalog import LabelLookup, display_name
from .schemas import (
    AssembledResponse,
    ConsensusAttribution,
    Criteria,
    CriterionItem,
    KeyPoint,
    ScoreEntry,
)

FALLBACK_REASONING = "Unable to parse judge response. Defaulting to first response."
FALLBACK_SYNTHESIS = "Unable to parse synthesizer response."
NEUTRAL_SCORE = 50

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


def extract_json(text: Optional[str]) -> Optional[dict]:
    """Return the first JSON object found in ``text``, or None."""
    if not text or not text.strip():
        return None

    candidates = [text.strip()]
    candidates.extend(m.group(1).strip() for m in _FENCE_RE.finditer(text))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class _RawVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    winner_backend_id: str = Field(alias="winnerModelId", min_length=1)
    winner_label: Optional[str] = Field(default=None, alias="winnerModelName")
    reasoning: str = Field(min_length=1)
    scores: list[ScoreEntry]


class _RawAttribution(BaseModel):
    model_config = ConfigDict(extra="ignore")

    modelId: str = Field(min_length=1)
    modelName: Optional[str] = None
    contribution: str = ""


class _RawKeyPoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    point: str = Field(min_length=1)
    sourceModelIds: list[str] = Field(default_factory=list)


class _RawConsensus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    synthesizedResponse: str = Field(min_length=1)
    attributions: list[_RawAttribution] = Field(default_factory=list)
    keyPoints: list[_RawKeyPoint] = Field(default_factory=list)
    scores: list[ScoreEntry] = Field(default_factory=list)


class _RawCriterion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    weight: float = Field(allow_inf_nan=False)
    description: str


@dataclass
class ParsedVerdict:
    winner_backend_id: str
    winner_label: str
    reasoning: str
    scores: list[ScoreEntry]
    ok: bool = True


@dataclass
class ParsedConsensus:
    synthesized_text: str
    attributions: list[ConsensusAttribution] = field(default_factory=list)
    key_points: list[KeyPoint] = field(default_factory=list)
    scores: list[ScoreEntry] = field(default_factory=list)
    ok: bool = True


def _match_backend(value: str, evaluated: Sequence[AssembledResponse], labels: LabelLookup) -> Optional[str]:
    """Map a judge's winner string to an evaluated backend id (by id, then by label)."""
    wanted = value.strip()
    for r in evaluated:
        if r.backend_id == wanted:
            return r.backend_id
    lowered = wanted.lower()
    for r in evaluated:
        if r.backend_id.lower() == lowered or r.display_label().lower() == lowered:
            return r.backend_id
        if display_name(r.backend_id, labels).lower() == lowered:
            return r.backend_id
    return None


def _known_scores(scores: Sequence[ScoreEntry], evaluated_ids: set[str]) -> list[ScoreEntry]:
    seen = set()
    kept = []
    for s in scores:
        if s.backend_id in evaluated_ids and s.backend_id not in seen:
            seen.add(s.backend_id)
            kept.append(s)
    return kept


def fallback_verdict(evaluated: Sequence[AssembledResponse], labels: LabelLookup = None) -> ParsedVerdict:
    first = evaluated[0] if evaluated else None
    return ParsedVerdict(
        winner_backend_id=first.backend_id if first else "",
        winner_label=(first.label or display_name(first.backend_id, labels)) if first else "",
        reasoning=FALLBACK_REASONING,
        scores=[ScoreEntry(backend_id=r.backend_id, score=NEUTRAL_SCORE) for r in evaluated],
        ok=False,
    )


def parse_verdict(
    raw_text: Optional[str],
    evaluated: Sequence[AssembledResponse],
    labels: LabelLookup = None,
) -> ParsedVerdict:
    """Parse a judge's output; never raises."""
    data = extract_json(raw_text)
    if data is None:
        logger.warning("Judge output is not JSON: {!r}", (raw_text or "")[:200])
        return fallback_verdict(evaluated, labels)

    try:
        raw = _RawVerdict.model_validate(data)
    except ValidationError as e:
        logger.warning("Judge output failed validation: {} error(s)", e.error_count())
        return fallback_verdict(evaluated, labels)

    winner = _match_backend(raw.winner_backend_id, evaluated, labels)
    if winner is None:
        logger.warning("Judge picked '{}', which was not under evaluation", raw.winner_backend_id)
        return fallback_verdict(evaluated, labels)

    by_id = {r.backend_id: r for r in evaluated}
    return ParsedVerdict(
        winner_backend_id=winner,
        winner_label=by_id[winner].label or display_name(winner, labels),
        reasoning=raw.reasoning.strip(),
        scores=_known_scores(raw.scores, set(by_id)),
    )


def fallback_consensus(raw_text: Optional[str], evaluated: Sequence[AssembledResponse], labels: LabelLookup = None) -> ParsedConsensus:
    text = (raw_text or "").strip()
    return ParsedConsensus(
        synthesized_text=text or FALLBACK_SYNTHESIS,
        attributions=[
            ConsensusAttribution(
                backend_id=r.backend_id,
                label=r.label or display_name(r.backend_id, labels),
            )
            for r in evaluated
        ],
        ok=False,
    )


def parse_consensus(
    raw_text: Optional[str],
    evaluated: Sequence[AssembledResponse],
    labels: LabelLookup = None,
) -> ParsedConsensus:
    """Parse a synthesizer's output; never raises. Attributions are not completed here."""
    data = extract_json(raw_text)
    if data is None:
        logger.warning("Synthesizer output is not JSON: {!r}", (raw_text or "")[:200])
        return fallback_consensus(raw_text, evaluated, labels)

    try:
        raw = _RawConsensus.model_validate(data)
    except ValidationError as e:
        logger.warning("Synthesizer output failed validation: {} error(s)", e.error_count())
        return fallback_consensus(raw_text, evaluated, labels)

    by_id = {r.backend_id: r for r in evaluated}
    attributions = []
    for a in raw.attributions:
        backend_id = _match_backend(a.modelId, evaluated, labels)
        if backend_id is None or any(x.backend_id == backend_id for x in attributions):
            continue
        attributions.append(ConsensusAttribution(
            backend_id=backend_id,
            label=by_id[backend_id].label or a.modelName or display_name(backend_id, labels),
            contribution=a.contribution.strip(),
        ))

    key_points = []
    for kp in raw.keyPoints:
        sources = []
        for source in kp.sourceModelIds:
            backend_id = _match_backend(source, evaluated, labels)
            if backend_id and backend_id not in sources:
                sources.append(backend_id)
        key_points.append(KeyPoint(point=kp.point.strip(), source_backend_ids=sources))

    return ParsedConsensus(
        synthesized_text=raw.synthesizedResponse.strip(),
        attributions=attributions,
        key_points=key_points,
        scores=_known_scores(raw.scores, set(by_id)),
    )


def parse_generated_criteria(raw_text: Optional[str]) -> Optional[Criteria]:
    """Parse a generated rubric; invalid items are dropped, weights clamped to 1..5."""
    data = extract_json(raw_text)
    if data is None:
        return None

    name = data.get("name")
    description = data.get("description")
    items = data.get("criteria")
    if not isinstance(name, str) or not isinstance(description, str) or not isinstance(items, list):
        return None

    valid = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            c = _RawCriterion.model_validate(item)
        except ValidationError:
            continue
        if not c.name.strip() or isinstance(item.get("weight"), (bool, str)):
            continue
        valid.append(CriterionItem(
            name=c.name.strip(),
            weight=max(1, min(5, round(c.weight))),
            description=c.description.strip(),
        ))

    if not valid:
        return None
    return Criteria(
        id="custom",
        label=name.strip() or "AI-Generated Criteria",
        description=description.strip() or "AI-generated evaluation criteria",
        items=tuple(valid),
        is_custom=True,
    )
