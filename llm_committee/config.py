from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .schemas import Criteria, CriterionItem, JudgingMode

MIN_COMMITTEE_SIZE = 2
MAX_COMMITTEE_SIZE = 10
MAX_PROMPT_CHARS = 32000


class BackendRow(BaseModel):
    model_id: str = Field(min_length=1)
    timeout_s: float = Field(default=60.0, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)  # Per-model override


class CustomCriteria(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    criteria: List[CriterionItem] = Field(min_length=1)


class CommitteeConfig(BaseModel):
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_CHARS)
    committee: List[BackendRow] = Field(min_length=MIN_COMMITTEE_SIZE, max_length=MAX_COMMITTEE_SIZE)
    judging_mode: JudgingMode = JudgingMode.SINGLE
    judges: List[BackendRow] = Field(default_factory=list, max_length=MAX_COMMITTEE_SIZE)
    criteria_id: str = "general"
    custom_criteria: Optional[CustomCriteria] = None
    max_output_tokens: Optional[int] = Field(default=None, ge=1)
    judge_timeout_s: float = Field(default=120.0, gt=0)
    stream_timeout_s: float = Field(default=180.0, gt=0)

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value.strip()

    @model_validator(mode="after")
    def _check_committee(self):
        ids = [row.model_id for row in self.committee]
        if len(set(ids)) != len(ids):
            raise ValueError("committee model ids must be unique")
        if self.judging_mode in (JudgingMode.SINGLE, JudgingMode.CONSENSUS) and not self.judges:
            raise ValueError(f"judging_mode '{self.judging_mode.value}' needs a judge model")
        if self.judging_mode is JudgingMode.EXECUTIVE and not self.judges:
            raise ValueError("judging_mode 'executive' needs at least one judge model")
        return self

    @property
    def committee_ids(self) -> list[str]:
        return [row.model_id for row in self.committee]

    @property
    def judge_ids(self) -> list[str]:
        return [row.model_id for row in self.judges]

    def backend_settings(self) -> dict[str, BackendRow]:
        """Per-model call settings; judge rows override committee rows for the same model."""
        settings = {}
        for row in [*self.committee, *self.judges]:
            if row.max_tokens is None and self.max_output_tokens is not None:
                row = row.model_copy(update={"max_tokens": self.max_output_tokens})
            settings[row.model_id] = row
        return settings

    def resolve_criteria(self) -> Criteria:
        from .criteria import create_custom_criteria, get_criteria

        if self.custom_criteria:
            c = self.custom_criteria
            return create_custom_criteria(c.name, c.description, c.criteria)
        return get_criteria(self.criteria_id)
