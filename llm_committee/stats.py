from typing import Optional, Sequence

from .schemas import AssembledResponse, ConsensusResult, JudgingError, Verdict


def compute_stats(responses: Sequence[AssembledResponse], outcome=None, judge_calls: Optional[list] = None) -> dict:
    ok = [r for r in responses if r.usable]
    failed = [r for r in responses if r.error is not None]
    empty = [r for r in responses if r.done and r.error is None and not r.content.strip()]
    latencies = [r.latency_ms for r in ok if r.latency_ms is not None]

    overall = {
        "backends_total": len(responses),
        "backends_ok": len(ok),
        "backends_error": len(failed),
        "backends_empty": len(empty),
        "avg_latency_ms_ok": sum(latencies) / len(latencies) if latencies else 0.0,
        "max_latency_ms_ok": max(latencies) if latencies else 0.0,
        "total_chars": sum(len(r.content) for r in ok),
    }

    per_backend = {
        r.backend_id: {
            "status": "ok" if r.usable else ("error" if r.error else "empty"),
            "latency_ms": r.latency_ms,
            "chars": len(r.content),
            "error": r.error,
        }
        for r in responses
    }

    judge_calls = judge_calls or []
    judging = {
        "judge_calls": len(judge_calls),
        "judge_calls_ok": sum(1 for c in judge_calls if c.get("status") == "ok"),
        "sum_cost_usd": sum((c.get("usage") or {}).get("cost_usd") or 0 for c in judge_calls),
    }
    if isinstance(outcome, Verdict):
        judging.update({
            "outcome": "verdict",
            "winner": outcome.winner_backend_id,
            "votes_counted": len(outcome.votes or []),
        })
    elif isinstance(outcome, ConsensusResult):
        judging.update({"outcome": "consensus", "attributions": len(outcome.attributions)})
    elif isinstance(outcome, JudgingError):
        judging.update({"outcome": "error", "error_kind": outcome.kind})

    return {
        "overall": overall,
        "per_backend": per_backend,
        "judging": judging,
    }
