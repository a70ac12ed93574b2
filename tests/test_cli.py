"""Tests for the command line entry point and run output files."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from fakes import FakeClient, answered, verdict_json
from llm_committee import cli
from llm_committee.io import generate_run_id
from llm_committee.schemas import AssembledResponse, JudgingError
from llm_committee.stats import compute_stats


def _main(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return exc.value.code


def _write_config(tmp_path: Path, **overrides) -> Path:
    data = {
        "prompt": "Name a prime number.",
        "committee": [{"model_id": "a"}, {"model_id": "b"}],
        "judging_mode": "single",
        "judges": [{"model_id": "j"}],
        "criteria_id": "concise",
    }
    data.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_presets_command_lists_ids(capsys) -> None:
    assert _main(["presets", "-v"]) == 0

    out = capsys.readouterr().out
    assert "general" in out
    assert "persuasive" in out
    assert "Brevity (5/5)" in out


def test_run_writes_all_outputs(tmp_path: Path, monkeypatch, capsys) -> None:
    backend = FakeClient(
        streams={"a": ["7"], "b": ["Eleven"]},
        completions={"j": verdict_json("b", "a", "b", reasoning="Spelled out.")},
    )
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: backend)
    out_dir = tmp_path / "run"

    code = _main(["run", "--config", str(_write_config(tmp_path)), "--out", str(out_dir), "--quiet"])

    assert code == 0
    assert backend.closed
    results = json.loads((out_dir / "results.json").read_text())
    assert results["outcome"]["winnerModelId"] == "b"
    assert [r["modelId"] for r in results["responses"]] == ["a", "b"]
    stats = json.loads((out_dir / "stats.json").read_text())
    assert stats["overall"]["backends_ok"] == 2
    assert stats["judging"]["judge_calls_ok"] == 1
    assert (out_dir / "stats.csv").exists()
    resolved = json.loads((out_dir / "resolved_config.json").read_text())
    assert resolved["criteria_id"] == "concise"
    assert resolved["run_id"] == results["run_id"]
    assert results["run_id"].startswith("committee_")
    assert results["judges"] == ["j"]
    assert results["judging_mode"] == "single"
    run_log = (out_dir / "run.log").read_text()
    assert results["run_id"] in run_log
    assert "Verdict (single)" in run_log
    events = [json.loads(line) for line in (out_dir / "events.jsonl").read_text().splitlines()]
    assert {e["stage"] for e in events} == {"committee", "judge"}
    assert all("request" not in e for e in events)
    assert "Winner: b (b)" in capsys.readouterr().out


def test_run_reports_judging_failure(tmp_path: Path, monkeypatch) -> None:
    backend = FakeClient(streams={"a": ["7"], "b": [RuntimeError("down")]}, completions={"j": verdict_json("a", "a")})
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: backend)

    code = _main(["run", "--config", str(_write_config(tmp_path)), "--out", str(tmp_path / "run"), "--quiet"])

    assert code == 1
    results = json.loads((tmp_path / "run" / "results.json").read_text())
    assert results["outcome"]["kind"] == "precondition"


def test_run_without_api_key_exits_early(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "BackendClient", lambda **kwargs: FakeClient(configured=False))

    code = _main(["run", "--config", str(_write_config(tmp_path)), "--out", str(tmp_path / "run")])

    assert code == 2
    assert not (tmp_path / "run" / "results.json").exists()


def test_run_rejects_invalid_config(tmp_path: Path) -> None:
    config = _write_config(tmp_path, committee=[{"model_id": "only-one"}])

    assert _main(["run", "--config", str(config), "--out", str(tmp_path / "run")]) == 2


def test_compute_stats_counts_outcomes() -> None:
    responses = [
        answered("a", "text", label="A"),
        AssembledResponse(backend_id="b", error="timeout", done=True),
        AssembledResponse(backend_id="c", content="", done=True),
    ]
    outcome = JudgingError(error="x", kind="precondition")

    stats = compute_stats(responses, outcome, [{"status": "ok", "usage": {"cost_usd": 0.5}}, {"status": "error"}])

    assert stats["overall"]["backends_ok"] == 1
    assert stats["overall"]["backends_error"] == 1
    assert stats["overall"]["backends_empty"] == 1
    assert stats["per_backend"]["c"]["status"] == "empty"
    assert stats["judging"]["sum_cost_usd"] == 0.5
    assert stats["judging"]["outcome"] == "error"


def test_run_ids_carry_prefix_and_differ() -> None:
    first, second = generate_run_id(), generate_run_id("eval")

    assert first.startswith("committee_")
    assert second.startswith("eval_")
    assert len(first.rsplit("_", 1)[1]) == 6
