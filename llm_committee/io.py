import csv
import json
import random
import string
from datetime import datetime
from pathlib import Path

RUN_ID_PREFIX = "committee"


def generate_run_id(prefix: str = RUN_ID_PREFIX) -> str:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}_{ts}_{rand}"


def run_dir(out_dir: str) -> Path:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_resolved_config(out_dir: str, config, run_id: str) -> None:
    """Config as validated (defaults filled in), tagged with the run it drove."""
    data = {"run_id": run_id, **config.model_dump(mode="json")}
    with open(run_dir(out_dir) / "resolved_config.json", "w") as f:
        json.dump(data, f, indent=2)


def append_event_log(out_dir: str, record: dict) -> None:
    with open(run_dir(out_dir) / "events.jsonl", "a") as f:
        f.write(json.dumps(record) + "\n")


def write_results(out_dir: str, run_id: str, config, responses, outcome) -> dict:
    """Committee answers plus the judging outcome, in the HTTP wire shapes."""
    results = {
        "run_id": run_id,
        "prompt": config.prompt,
        "judging_mode": config.judging_mode.value,
        "judges": config.judge_ids,
        "responses": [r.to_wire() for r in responses],
        "outcome": outcome.to_wire(),
    }
    with open(run_dir(out_dir) / "results.json", "w") as f:
        json.dump(results, f, indent=2)
    return results


def write_stats(out_dir: str, stats_dict: dict) -> None:
    p = run_dir(out_dir)
    with open(p / "stats.json", "w") as f:
        json.dump(stats_dict, f, indent=2)

    rows = [{"backend_id": backend_id, **data} for backend_id, data in stats_dict.get("per_backend", {}).items()]
    if rows:
        with open(p / "stats.csv", "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=rows[0].keys())
            writer.writeheader()
            writer.writerows(rows)
