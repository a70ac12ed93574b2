"""Tests for the judging engine across the four modes."""
from __future__ import annotations

import asyncio
import json

import pytest

from fakes import FakeClient, answered, error_record, verdict_json
from llm_committee.criteria import get_criteria
from llm_committee.judging import DEFAULT_CONTRIBUTION, judge, resolve_judges
from llm_committee.schemas import AssembledResponse, ConsensusResult, JudgingError, JudgingMode, Verdict

PROMPT = "Explain recursion in one paragraph."
THREE = [
    answered("x/alpha", "Alpha answer", label="Alpha"),
    answered("x/beta", "Beta answer", label="Beta"),
    answered("x/gamma", "Gamma answer", label="Gamma"),
]
TWO = THREE[:2]


def _judge(client, responses, mode, judge_ids=None, **kwargs):
    return asyncio.run(judge(client, PROMPT, responses, mode, judge_ids, **kwargs))


def test_single_judge_verdict() -> None:
    client = FakeClient(completions={"j/one": verdict_json("x/beta", "x/alpha", "x/beta", reasoning="Beta is tighter.")})

    verdict = _judge(client, TWO, JudgingMode.SINGLE, ["j/one"])

    assert isinstance(verdict, Verdict)
    assert verdict.mode is JudgingMode.SINGLE
    assert verdict.winner_backend_id == "x/beta"
    assert verdict.winner_label == "Beta"
    assert verdict.reasoning == "Beta is tighter."
    assert len(verdict.votes) == 1
    assert verdict.vote_counts == {"x/beta": 1}
    assert [s.backend_id for s in verdict.scores] == ["x/alpha", "x/beta"]
    assert client.complete_calls[0]["json_mode"] is True


def test_single_mode_uses_first_configured_judge_only() -> None:
    client = FakeClient(completions={"j/one": verdict_json("x/alpha", "x/alpha"), "j/two": verdict_json("x/beta")})

    _judge(client, TWO, "judge", ["j/one", "j/two"])

    assert [c["backend_id"] for c in client.complete_calls] == ["j/one"]


def test_committee_judges_never_see_their_own_response() -> None:
    client = FakeClient(completions={
        "x/alpha": verdict_json("x/beta", "x/beta", "x/gamma"),
        "x/beta": verdict_json("x/alpha", "x/alpha", "x/gamma"),
        "x/gamma": verdict_json("x/alpha", "x/alpha", "x/beta"),
    })

    verdict = _judge(client, THREE, JudgingMode.COMMITTEE)

    prompts = {c["backend_id"]: c["prompt"] for c in client.complete_calls}
    assert set(prompts) == {"x/alpha", "x/beta", "x/gamma"}
    for judge_id, prompt_text in prompts.items():
        assert f"({judge_id})" not in prompt_text
        assert prompt_text.count("### Response") == 2
    assert verdict.vote_counts == {"x/beta": 1, "x/alpha": 2}
    assert verdict.winner_backend_id == "x/alpha"
    assert [v.judge_id for v in verdict.votes] == ["x/alpha", "x/beta", "x/gamma"]


def test_committee_self_vote_is_excluded() -> None:
    client = FakeClient(completions={
        "x/alpha": verdict_json("x/alpha", "x/alpha"),
        "x/beta": verdict_json("x/gamma", "x/gamma"),
        "x/gamma": verdict_json("x/beta", "x/beta"),
    })

    verdict = _judge(client, THREE, JudgingMode.COMMITTEE)

    assert [v.judge_id for v in verdict.votes] == ["x/beta", "x/gamma"]
    assert verdict.vote_counts == {"x/gamma": 1, "x/beta": 1}
    assert verdict.winner_backend_id == "x/gamma"


def test_committee_skips_failed_responders() -> None:
    broken = AssembledResponse(backend_id="x/gamma", label="Gamma", error="timeout", done=True)
    client = FakeClient(completions={
        "x/alpha": verdict_json("x/beta", "x/beta"),
        "x/beta": verdict_json("x/alpha", "x/alpha"),
    })

    verdict = _judge(client, [*TWO, broken], JudgingMode.COMMITTEE)

    assert {c["backend_id"] for c in client.complete_calls} == {"x/alpha", "x/beta"}
    assert "x/gamma" not in client.complete_calls[0]["prompt"]
    assert verdict.winner_backend_id == "x/beta"


def test_executive_tie_follows_judge_list_not_completion_order() -> None:
    completions = {
        "j/slow": (0.05, verdict_json("x/alpha", "x/alpha", "x/beta")),
        "j/fast": verdict_json("x/beta", "x/alpha", "x/beta"),
    }

    first = _judge(FakeClient(completions=completions), TWO, JudgingMode.EXECUTIVE, ["j/slow", "j/fast"])
    second = _judge(FakeClient(completions=completions), TWO, JudgingMode.EXECUTIVE, ["j/fast", "j/slow"])

    assert first.vote_counts == {"x/alpha": 1, "x/beta": 1}
    assert first.winner_backend_id == "x/alpha"
    assert second.winner_backend_id == "x/beta"


def test_executive_dedupes_judges_and_tolerates_failures() -> None:
    client = FakeClient(completions={
        "j/one": verdict_json("x/beta", "x/alpha", "x/beta"),
        "j/two": RuntimeError("socket closed"),
        "j/three": "I cannot decide.",
        "j/four": error_record("Request timed out after 120s", status="timeout"),
    })
    calls = []

    verdict = _judge(
        client, TWO, JudgingMode.EXECUTIVE, ["j/one", "j/two", "j/one", "j/three", "j/four"], on_call=calls.append,
    )

    assert isinstance(verdict, Verdict)
    assert [v.judge_id for v in verdict.votes] == ["j/one"]
    assert verdict.vote_counts == {"x/beta": 1}
    assert sorted(c["backend_id"] for c in client.complete_calls) == ["j/four", "j/one", "j/three", "j/two"]
    assert {c["model_id"] for c in calls} == {"j/one", "j/three", "j/four"}
    assert all(c["stage"] == "judge" for c in calls)


def test_all_judges_failing_is_reported() -> None:
    client = FakeClient(completions={"j/one": "garbage", "j/two": None})

    outcome = _judge(client, TWO, JudgingMode.EXECUTIVE, ["j/one", "j/two"])

    assert isinstance(outcome, JudgingError)
    assert outcome.kind == "all_judges_failed"
    assert [r.backend_id for r in outcome.responses] == ["x/alpha", "x/beta"]


def test_too_few_usable_responses_dispatch_no_judge() -> None:
    failed = AssembledResponse(backend_id="x/beta", error="API error: 500", done=True)
    empty = AssembledResponse(backend_id="x/gamma", content="   ", done=True)
    client = FakeClient(completions={"j/one": verdict_json("x/alpha", "x/alpha")})

    outcome = _judge(client, [THREE[0], failed, empty], JudgingMode.SINGLE, ["j/one"])

    assert isinstance(outcome, JudgingError)
    assert outcome.kind == "precondition"
    assert outcome.error == "Fewer than 2 models responded successfully."
    assert client.complete_calls == []


def test_blank_prompt_and_missing_judges() -> None:
    client = FakeClient()

    blank = asyncio.run(judge(client, "  ", TWO, JudgingMode.SINGLE, ["j/one"]))
    no_judge = _judge(client, TWO, JudgingMode.SINGLE)
    no_panel = _judge(client, TWO, JudgingMode.EXECUTIVE, ["", "  "])

    assert blank.kind == "precondition"
    assert no_judge.kind == "no_judges"
    assert no_panel.kind == "no_judges"
    assert client.complete_calls == []


def test_criteria_are_rendered_into_judge_prompt() -> None:
    client = FakeClient(completions={"j/one": verdict_json("x/alpha", "x/alpha")})

    _judge(client, TWO, JudgingMode.SINGLE, ["j/one"], criteria=get_criteria("code"))

    prompt_text = client.complete_calls[0]["prompt"]
    assert "## Evaluation Criteria (Code Quality)" in prompt_text
    assert "- **Correctness** (importance: 5/5)" in prompt_text
    assert PROMPT in prompt_text


def test_consensus_fills_missing_attributions() -> None:
    client = FakeClient(completions={"j/synth": json.dumps({
        "synthesizedResponse": "Recursion is a function calling itself.",
        "attributions": [{"modelId": "x/beta", "contribution": "Supplied the base case."}],
        "keyPoints": [{"point": "Base case", "sourceModelIds": ["x/beta"]}],
    })})

    result = _judge(client, TWO, JudgingMode.CONSENSUS, ["j/synth"])

    assert isinstance(result, ConsensusResult)
    assert result.synthesized_text == "Recursion is a function calling itself."
    assert [(a.backend_id, a.contribution) for a in result.attributions] == [
        ("x/alpha", DEFAULT_CONTRIBUTION),
        ("x/beta", "Supplied the base case."),
    ]
    assert result.attributions[0].label == "Alpha"
    assert result.reasoning == "Synthesized a consensus response from 2 model responses."
    wire = result.to_wire()
    assert wire["judgingMode"] == "consensus"
    assert wire["consensusResult"]["keyPoints"][0]["sourceModelIds"] == ["x/beta"]


def test_consensus_failures_are_reported() -> None:
    unparseable = _judge(FakeClient(completions={"j/synth": "Here is my merge"}), TWO, JudgingMode.CONSENSUS, ["j/synth"])
    unreachable = _judge(FakeClient(), TWO, JudgingMode.CONSENSUS, ["j/synth"])

    assert unparseable.kind == "all_judges_failed"
    assert unreachable.kind == "all_judges_failed"


def test_resolve_judges_per_mode() -> None:
    assert resolve_judges(JudgingMode.COMMITTEE, THREE, ["ignored"]) == ["x/alpha", "x/beta", "x/gamma"]
    assert resolve_judges(JudgingMode.EXECUTIVE, THREE, ["j2", "j1", "j2"]) == ["j2", "j1"]
    assert resolve_judges(JudgingMode.SINGLE, THREE, ["j1", "j2"]) == ["j1"]
    assert resolve_judges(JudgingMode.CONSENSUS, THREE, []) == []


def test_malformed_score_lists_drop_only_that_judge() -> None:
    bad = json.dumps({
        "winnerModelId": "x/alpha",
        "reasoning": "Alpha.",
        "scores": [{"modelId": "x/alpha", "score": 90, "weaknesses": True}],
    })
    client = FakeClient(completions={"j/bad": bad, "j/good": verdict_json("x/beta", "x/alpha", "x/beta")})

    verdict = _judge(client, TWO, JudgingMode.EXECUTIVE, ["j/bad", "j/good"])

    assert isinstance(verdict, Verdict)
    assert [v.judge_id for v in verdict.votes] == ["j/good"]
    assert verdict.winner_backend_id == "x/beta"


def test_malformed_synthesizer_scores_are_reported_not_raised() -> None:
    client = FakeClient(completions={"j/synth": json.dumps({
        "synthesizedResponse": "Merged.",
        "scores": [{"modelId": "x/alpha", "score": 50, "strengths": 5}],
    })})

    outcome = _judge(client, TWO, JudgingMode.CONSENSUS, ["j/synth"])

    assert isinstance(outcome, JudgingError)
    assert outcome.kind == "all_judges_failed"


def test_duplicate_response_ids_are_a_precondition_failure() -> None:
    client = FakeClient()
    twins = [answered("x/alpha", "one"), answered("x/alpha", "two")]

    outcome = _judge(client, twins, JudgingMode.COMMITTEE)

    assert isinstance(outcome, JudgingError)
    assert outcome.kind == "precondition"
    assert outcome.error == "Model ids must be unique"
    assert client.complete_calls == []


def test_cancelling_judge_cancels_every_outstanding_call() -> None:
    client = FakeClient(completions={
        "j/one": (10, verdict_json("x/alpha", "x/alpha")),
        "j/two": (10, verdict_json("x/beta", "x/beta")),
    })

    async def run():
        task = asyncio.create_task(judge(client, PROMPT, TWO, JudgingMode.EXECUTIVE, ["j/one", "j/two"]))
        while len(client.complete_calls) < 2:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert sorted(client.cancelled) == ["j/one", "j/two"]
