"""
LLM Committee - ask several models the same question, then judge the answers.

The package is organised around two stages:
1. Committee: fan a prompt out to several models and stream their answers back
   as one interleaved sequence of token deltas
2. Judging: evaluate the assembled answers in one of four modes
   (single judge, committee vote, executive panel, consensus synthesis)

Key features:
- One terminal event per model, even when a model fails or times out
- Tolerant verdict parsing with a deterministic fallback
- Vote tallying with reproducible tie-breaks
- Criteria presets and model-generated custom criteria
"""

from .committee import ResponseAssembler, collect_responses, stream_committee
from .config import BackendRow, CommitteeConfig
from .criteria import PRESETS, create_custom_criteria, generate_criteria, get_criteria
from .judging import judge
from .logging_config import configure_logging
from .openrouter import BackendClient
from .prompts import format_criteria
from .schemas import (
    AssembledResponse,
    ConsensusResult,
    Criteria,
    CriterionItem,
    JudgeVote,
    JudgingError,
    JudgingMode,
    ScoreEntry,
    TokenDelta,
    Verdict,
)

__all__ = [
    # Config
    "BackendRow",
    "CommitteeConfig",
    "configure_logging",
    # Committee
    "BackendClient",
    "stream_committee",
    "collect_responses",
    "ResponseAssembler",
    # Judging
    "judge",
    "JudgingMode",
    # Criteria
    "PRESETS",
    "get_criteria",
    "create_custom_criteria",
    "generate_criteria",
    "format_criteria",
    # Schemas
    "TokenDelta",
    "AssembledResponse",
    "ScoreEntry",
    "JudgeVote",
    "Verdict",
    "ConsensusResult",
    "Criteria",
    "CriterionItem",
    "JudgingError",
]
