"""
Judging engine: turn assembled committee responses into a verdict.

Modes:
- single: one configured judge scores every response
- committee: every responder judges the others (never itself)
- executive: a caller-chosen panel judges every response
- consensus: one synthesizer merges the responses instead of picking a winner

Flow per request: ModeSelected -> JudgesResolved -> Dispatched -> Aggregated -> Done.
Judges run concurrently behind a full barrier. A judge whose call fails or
whose output cannot be parsed is left out of the tally; only when no judge
survives does ``judge`` report a failure.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Optional, Sequence, Union

from loguru import logger

from .aggregation import aggregate_votes
from .catalog import LabelLookup, display_name
from .config import BackendRow
from .parsing import parse_consensus, parse_verdict
from .prompts import build_consensus_prompt, build_judge_prompt
from .schemas import (
    AssembledResponse,
    ConsensusAttribution,
    ConsensusResult,
    Criteria,
    JudgeVote,
    JudgingError,
    JudgingMode,
    Verdict,
)

MIN_USABLE_RESPONSES = 2
DEFAULT_CONTRIBUTION = "Considered in the synthesis; no specific contribution was identified."

JudgeOutcome = Union[Verdict, ConsensusResult, JudgingError]


def resolve_judges(
    mode: JudgingMode,
    usable: Sequence[AssembledResponse],
    judge_ids: Optional[Sequence[str]] = None,
) -> list[str]:
    """Judge backends for ``mode``, in dispatch order (which is also tie-break order)."""
    configured = []
    for judge_id in judge_ids or []:
        if judge_id and judge_id.strip() and judge_id not in configured:
            configured.append(judge_id)

    if mode is JudgingMode.COMMITTEE:
        return [r.backend_id for r in usable]
    if mode is JudgingMode.EXECUTIVE:
        return configured
    # single judge and consensus synthesizer
    return configured[:1]


def evaluated_for(mode: JudgingMode, judge_id: str, usable: Sequence[AssembledResponse]) -> list[AssembledResponse]:
    """Responses a judge sees; in committee mode a judge never sees its own."""
    if mode is JudgingMode.COMMITTEE:
        return [r for r in usable if r.backend_id != judge_id]
    return list(usable)


def complete_attributions(
    attributions: Sequence[ConsensusAttribution],
    usable: Sequence[AssembledResponse],
    labels: LabelLookup = None,
) -> list[ConsensusAttribution]:
    """One attribution per evaluated backend, in response order; omitted ones get a default entry."""
    by_id = {a.backend_id: a for a in attributions}
    completed = []
    for r in usable:
        found = by_id.get(r.backend_id)
        if found is None:
            found = ConsensusAttribution(
                backend_id=r.backend_id,
                label=r.label or display_name(r.backend_id, labels),
                contribution=DEFAULT_CONTRIBUTION,
            )
        completed.append(found)
    return completed


def _judge_label(judge_id: str, usable: Sequence[AssembledResponse], labels: LabelLookup) -> str:
    for r in usable:
        if r.backend_id == judge_id and r.label:
            return r.label
    return display_name(judge_id, labels)


async def _call(client, judge_id: str, prompt_text: str, row: Optional[BackendRow], timeout_s: Optional[float]) -> dict:
    options = {}
    if row is not None:
        options = {"temperature": row.temperature, "max_tokens": row.max_tokens}
        timeout_s = row.timeout_s
    messages = [{"role": "user", "content": prompt_text}]
    call = client.complete(judge_id, messages, json_mode=True, timeout_s=timeout_s, **options)
    if timeout_s:
        # Margin lets the transport report its own timeout first
        return await asyncio.wait_for(call, timeout_s + 5)
    return await call


async def _ask_judge(
    client,
    judge_id: str,
    prompt: str,
    evaluated: Sequence[AssembledResponse],
    usable: Sequence[AssembledResponse],
    criteria: Optional[Criteria],
    labels: LabelLookup,
    row: Optional[BackendRow],
    timeout_s: Optional[float],
    on_call: Optional[Callable[[dict], None]],
) -> Optional[JudgeVote]:
    """One judge's vote, or None when its call or its output is unusable."""
    prompt_text = build_judge_prompt(prompt, evaluated, criteria, labels)
    try:
        result = await _call(client, judge_id, prompt_text, row, timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Judge {} timed out", judge_id)
        return None
    except Exception as e:
        logger.opt(exception=e).warning("Judge {} dispatch failed", judge_id)
        return None

    if on_call:
        on_call({"stage": "judge", "model_id": judge_id, **result})
    if result["status"] != "ok":
        logger.warning("Judge {} failed: {}", judge_id, result["error_message"])
        return None

    parsed = parse_verdict(result["text"], evaluated, labels)
    if not parsed.ok:
        logger.warning("Judge {} excluded: unparseable verdict", judge_id)
        return None

    return JudgeVote(
        judge_id=judge_id,
        judge_label=_judge_label(judge_id, usable, labels),
        winner_backend_id=parsed.winner_backend_id,
        reasoning=parsed.reasoning,
        scores=parsed.scores,
    )


async def _synthesize(
    client,
    synthesizer_id: str,
    prompt: str,
    usable: Sequence[AssembledResponse],
    criteria: Optional[Criteria],
    labels: LabelLookup,
    row: Optional[BackendRow],
    timeout_s: Optional[float],
    on_call: Optional[Callable[[dict], None]],
) -> Union[ConsensusResult, JudgingError]:
    prompt_text = build_consensus_prompt(prompt, usable, criteria, labels)
    try:
        result = await _call(client, synthesizer_id, prompt_text, row, timeout_s)
    except asyncio.TimeoutError:
        result = {"status": "timeout", "text": None, "error_message": "Synthesizer timed out"}
    except Exception as e:
        logger.opt(exception=e).warning("Synthesizer {} dispatch failed", synthesizer_id)
        result = {"status": "error", "text": None, "error_message": str(e) or type(e).__name__}

    if on_call:
        on_call({"stage": "consensus", "model_id": synthesizer_id, **result})
    if result["status"] != "ok":
        logger.error("Synthesizer {} failed: {}", synthesizer_id, result["error_message"])
        return JudgingError(
            error=f"Synthesizer {synthesizer_id} failed: {result['error_message']}",
            kind="all_judges_failed",
            responses=list(usable),
        )

    parsed = parse_consensus(result["text"], usable, labels)
    if not parsed.ok:
        logger.error("Synthesizer {} returned an unparseable result", synthesizer_id)
        return JudgingError(
            error="Could not parse the synthesizer response",
            kind="all_judges_failed",
            responses=list(usable),
        )

    return ConsensusResult(
        synthesized_text=parsed.synthesized_text,
        attributions=complete_attributions(parsed.attributions, usable, labels),
        key_points=parsed.key_points,
        reasoning=f"Synthesized a consensus response from {len(usable)} model responses.",
        scores=parsed.scores,
    )


async def judge(
    client,
    prompt: str,
    responses: Sequence[AssembledResponse],
    mode: Union[JudgingMode, str],
    judge_ids: Optional[Sequence[str]] = None,
    criteria: Optional[Criteria] = None,
    labels: LabelLookup = None,
    timeout_s: Optional[float] = None,
    settings: Optional[Mapping[str, BackendRow]] = None,
    on_call: Optional[Callable[[dict], None]] = None,
) -> JudgeOutcome:
    """
    Adjudicate the committee's responses.

    Returns a Verdict (single, committee, executive), a ConsensusResult
    (consensus), or a JudgingError. Precondition failures return before any
    judge is contacted.
    """
    mode = JudgingMode(mode)
    settings = settings or {}
    logger.debug("Judging: mode selected ({})", mode.value)

    usable = [r for r in responses if r.usable]
    if not prompt or not prompt.strip():
        return JudgingError(error="Prompt is required", kind="precondition", responses=usable)
    ids = [r.backend_id for r in responses]
    if len(set(ids)) != len(ids):
        return JudgingError(error="Model ids must be unique", kind="precondition", responses=usable)
    if len(usable) < MIN_USABLE_RESPONSES:
        return JudgingError(
            error=f"Fewer than {MIN_USABLE_RESPONSES} models responded successfully.",
            kind="precondition",
            responses=usable,
        )

    judges = resolve_judges(mode, usable, judge_ids)
    if not judges:
        return JudgingError(error=f"No judge model configured for mode '{mode.value}'", kind="no_judges", responses=usable)
    logger.debug("Judging: resolved {} judge(s): {}", len(judges), ", ".join(judges))

    if not mode.is_voting:
        synthesizer = judges[0]
        return await _synthesize(
            client, synthesizer, prompt, usable, criteria, labels,
            settings.get(synthesizer), timeout_s, on_call,
        )

    calls = []
    for judge_id in judges:
        evaluated = evaluated_for(mode, judge_id, usable)
        if not evaluated:
            continue
        calls.append(_ask_judge(
            client, judge_id, prompt, evaluated, usable, criteria, labels,
            settings.get(judge_id), timeout_s, on_call,
        ))

    # gather keeps dispatch order, so tie-breaks never depend on completion order
    outcomes = await asyncio.gather(*calls)
    votes = [v for v in outcomes if v is not None]
    logger.debug("Judging: dispatched {}, {} usable vote(s)", len(calls), len(votes))

    if not votes:
        logger.error("All {} judge(s) failed for mode {}", len(calls), mode.value)
        return JudgingError(error="All judges failed to return a usable verdict", kind="all_judges_failed", responses=usable)

    verdict = aggregate_votes(votes, usable, mode, labels)
    logger.info("Verdict ({}): {} with {}", mode.value, verdict.winner_backend_id, verdict.vote_counts)
    return verdict
