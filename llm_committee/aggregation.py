"""
Aggregation of judge votes into a single verdict.

- Vote tally over the surviving judge votes
- Winner selection with an explicit, order-based tie-break
- Per-backend score averaging with bounded strengths/weaknesses
- Deterministic reasoning summary for multi-judge modes
"""

from collections import Counter
from typing import Optional, Sequence

from .catalog import LabelLookup, display_name
from .schemas import AssembledResponse, JudgeVote, JudgingMode, ScoreEntry, Verdict

MAX_LIST_ITEMS = 3
MAX_CITED_REASONS = 2


def tally_votes(votes: Sequence[JudgeVote]) -> Counter:
    return Counter(v.winner_backend_id for v in votes)


def select_winner(votes: Sequence[JudgeVote], counts: Optional[Counter] = None) -> Optional[str]:
    """
    Backend with the most votes.

    Ties go to the tied backend picked by the earliest judge in ``votes``.
    ``votes`` must be in resolved-judge order (the order judges were listed
    for dispatch), so the result does not depend on which judge answered first.
    """
    if not votes:
        return None
    counts = counts if counts is not None else tally_votes(votes)
    top = max(counts.values())
    tied = {backend for backend, n in counts.items() if n == top}
    for v in votes:
        if v.winner_backend_id in tied:
            return v.winner_backend_id
    return None


def _merge_unique(lists: Sequence[Sequence[str]], limit: int = MAX_LIST_ITEMS) -> list[str]:
    merged = []
    seen = set()
    for items in lists:
        for item in items:
            key = item.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            merged.append(item.strip())
            if len(merged) >= limit:
                return merged
    return merged


def aggregate_scores(votes: Sequence[JudgeVote], order: Sequence[str] = ()) -> list[ScoreEntry]:
    """Mean score per backend over the judges that scored it; backends nobody scored are left out."""
    per_backend: dict[str, list[ScoreEntry]] = {}
    for v in votes:
        for s in v.scores:
            per_backend.setdefault(s.backend_id, []).append(s)

    ordered = [b for b in order if b in per_backend]
    ordered += [b for b in per_backend if b not in ordered]

    aggregated = []
    for backend_id in ordered:
        entries = per_backend[backend_id]
        aggregated.append(ScoreEntry(
            backend_id=backend_id,
            score=sum(e.score for e in entries) / len(entries),
            strengths=_merge_unique([e.strengths for e in entries]),
            weaknesses=_merge_unique([e.weaknesses for e in entries]),
        ))
    return aggregated


def summarize_reasoning(votes: Sequence[JudgeVote], winner_id: str, winner_label: str, counts: Counter) -> str:
    total = sum(counts.values())
    noun = "vote" if total == 1 else "votes"
    lines = [f"{winner_label} won with {counts[winner_id]} of {total} judge {noun}."]
    supporters = [v for v in votes if v.winner_backend_id == winner_id and v.reasoning]
    for v in supporters[:MAX_CITED_REASONS]:
        lines.append(f"{v.judge_label or v.judge_id}: {v.reasoning}")
    return "\n\n".join(lines)


def aggregate_votes(
    votes: Sequence[JudgeVote],
    responses: Sequence[AssembledResponse],
    mode: JudgingMode,
    labels: LabelLookup = None,
) -> Verdict:
    """Combine surviving votes (in resolved-judge order) into one Verdict."""
    if not votes:
        raise ValueError("aggregate_votes needs at least one vote")

    counts = tally_votes(votes)
    winner_id = select_winner(votes, counts)
    by_id = {r.backend_id: r for r in responses}
    winner_label = by_id[winner_id].display_label() if winner_id in by_id else display_name(winner_id, labels)

    if mode is JudgingMode.SINGLE:
        reasoning = votes[0].reasoning
    else:
        reasoning = summarize_reasoning(votes, winner_id, winner_label, counts)

    return Verdict(
        winner_backend_id=winner_id,
        winner_label=winner_label,
        reasoning=reasoning,
        scores=aggregate_scores(votes, [r.backend_id for r in responses]),
        mode=mode,
        votes=list(votes),
        vote_counts=dict(counts),
    )
