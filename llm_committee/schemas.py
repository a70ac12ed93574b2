"""Value types shared by the fan-out, judging and HTTP layers.

Field names are snake_case in Python; aliases carry the camelCase names used
on the wire (``modelId``, ``winnerModelId``, ``voteCount`` ...). Serialize with
``to_wire()`` or ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JudgingMode(str, Enum):
    SINGLE = "single"
    COMMITTEE = "committee"
    EXECUTIVE = "executive"
    CONSENSUS = "consensus"

    @classmethod
    def _missing_(cls, value):
        # Older clients send "judge" for the single-judge mode
        if isinstance(value, str) and value.lower() == "judge":
            return cls.SINGLE
        if isinstance(value, str):
            for member in cls:
                if member.value == value.lower():
                    return member
        return None

    @property
    def is_voting(self) -> bool:
        return self is not JudgingMode.CONSENSUS


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenDelta(_WireModel):
    """One streamed fragment from one backend, or that backend's terminal event."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    backend_id: str = Field(alias="modelId")
    content: str = ""
    done: bool = False
    error: Optional[str] = None

    @classmethod
    def fragment(cls, backend_id: str, text: str) -> "TokenDelta":
        return cls(backend_id=backend_id, content=text)

    @classmethod
    def finished(cls, backend_id: str) -> "TokenDelta":
        return cls(backend_id=backend_id, done=True)

    @classmethod
    def failed(cls, backend_id: str, message: str) -> "TokenDelta":
        return cls(backend_id=backend_id, done=True, error=message or "Unknown error")

    def to_wire(self) -> dict:
        if self.error is not None:
            return {"modelId": self.backend_id, "error": self.error, "done": True}
        return {"modelId": self.backend_id, "content": self.content, "done": self.done}


class AssembledResponse(_WireModel):
    """Accumulated text for one backend; frozen by the assembler once done."""

    backend_id: str = Field(alias="modelId")
    label: str = Field(default="", alias="modelName")
    content: str = ""
    error: Optional[str] = None
    latency_ms: Optional[float] = Field(default=None, alias="latencyMs")
    done: bool = Field(default=False, alias="isComplete")

    @property
    def usable(self) -> bool:
        return self.done and self.error is None and bool(self.content.strip())

    def display_label(self) -> str:
        return self.label or self.backend_id


class ScoreEntry(_WireModel):
    backend_id: str = Field(alias="modelId")
    score: int = 50
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError("score must be a number")
        score = float(value)
        return int(round(max(0.0, min(100.0, score))))

    @field_validator("strengths", "weaknesses", mode="before")
    @classmethod
    def _string_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        if not isinstance(value, (list, tuple)):
            raise ValueError("expected a list of strings")
        return [str(v).strip() for v in value if str(v).strip()]


class JudgeVote(_WireModel):
    judge_id: str = Field(alias="judgeModelId")
    judge_label: str = Field(default="", alias="judgeModelName")
    winner_backend_id: str = Field(alias="winnerModelId")
    reasoning: str = ""
    scores: list[ScoreEntry] = Field(default_factory=list)


class Verdict(_WireModel):
    winner_backend_id: str = Field(alias="winnerModelId")
    winner_label: str = Field(alias="winnerModelName")
    reasoning: str
    scores: list[ScoreEntry] = Field(default_factory=list)
    mode: JudgingMode = Field(alias="judgingMode")
    votes: Optional[list[JudgeVote]] = None
    vote_counts: Optional[dict[str, int]] = Field(default=None, alias="voteCount")


class ConsensusAttribution(_WireModel):
    backend_id: str = Field(alias="modelId")
    label: str = Field(default="", alias="modelName")
    contribution: str = ""


class KeyPoint(_WireModel):
    point: str
    source_backend_ids: list[str] = Field(default_factory=list, alias="sourceModelIds")


class ConsensusResult(_WireModel):
    synthesized_text: str = Field(alias="synthesizedResponse")
    attributions: list[ConsensusAttribution] = Field(default_factory=list)
    key_points: list[KeyPoint] = Field(default_factory=list, alias="keyPoints")
    reasoning: str = ""
    # Contribution weight per backend, not a competitive ranking
    scores: list[ScoreEntry] = Field(default_factory=list)
    mode: JudgingMode = Field(default=JudgingMode.CONSENSUS, alias="judgingMode")

    def to_wire(self) -> dict:
        # Hosts expecting a verdict shape find the synthesis under consensusResult
        return {
            "winnerModelId": "",
            "winnerModelName": "",
            "reasoning": self.reasoning,
            "scores": [s.to_wire() for s in self.scores],
            "judgingMode": self.mode.value,
            "consensusResult": {
                "synthesizedResponse": self.synthesized_text,
                "attributions": [a.to_wire() for a in self.attributions],
                "keyPoints": [k.to_wire() for k in self.key_points],
            },
        }


class CriterionItem(_WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(min_length=1)
    weight: int = Field(ge=1, le=5)
    description: str = ""


class Criteria(_WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    label: str = Field(alias="name")
    description: str = ""
    items: tuple[CriterionItem, ...] = Field(default=(), alias="criteria")
    is_custom: bool = Field(default=False, alias="isCustom")


class JudgingError(_WireModel):
    """Structured failure returned by ``judge`` instead of a verdict."""

    error: str
    kind: Literal["precondition", "no_judges", "all_judges_failed"]
    responses: list[AssembledResponse] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return {"error": self.error, "kind": self.kind}
