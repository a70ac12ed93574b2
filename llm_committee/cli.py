import argparse
import asyncio
import json
import sys

from loguru import logger
from pydantic import ValidationError

from .committee import collect_responses
from .config import CommitteeConfig
from .criteria import PRESETS, generate_criteria
from .errors import CommitteeError, ConfigurationError
from .io import append_event_log, generate_run_id, write_resolved_config, write_results, write_stats
from .judging import judge
from .logging_config import add_run_log, configure_logging
from .openrouter import MISSING_KEY_MESSAGE, BackendClient
from .schemas import ConsensusResult, JudgingError, Verdict
from .stats import compute_stats


async def _run_committee(config: CommitteeConfig, run_id: str, out_dir: str, quiet: bool):
    settings = config.backend_settings()
    judge_calls = []

    def on_event(event):
        append_event_log(out_dir, {"run_id": run_id, "stage": "committee", **event.to_wire()})
        if event.done and not quiet:
            status = f"error: {event.error}" if event.error else "done"
            print(f"[{event.backend_id}] {status}", file=sys.stderr)

    def on_call(record):
        judge_calls.append(record)
        append_event_log(out_dir, {"run_id": run_id, **{k: v for k, v in record.items() if k != "request"}})

    async with BackendClient(timeout_s=config.stream_timeout_s) as client:
        if not client.configured:
            raise ConfigurationError(MISSING_KEY_MESSAGE)
        responses = await collect_responses(
            client, config.prompt, config.committee_ids,
            on_event=on_event, timeout_s=config.stream_timeout_s, settings=settings,
        )
        outcome = await judge(
            client, config.prompt, responses, config.judging_mode, config.judge_ids,
            config.resolve_criteria(), timeout_s=config.judge_timeout_s,
            settings=settings, on_call=on_call,
        )
    return responses, outcome, judge_calls


def _print_outcome(outcome) -> None:
    if isinstance(outcome, Verdict):
        print(f"Winner: {outcome.winner_label} ({outcome.winner_backend_id})")
        if outcome.vote_counts:
            print("Votes: " + ", ".join(f"{k}={v}" for k, v in outcome.vote_counts.items()))
        print(outcome.reasoning)
    elif isinstance(outcome, ConsensusResult):
        print(outcome.synthesized_text)
        print()
        print(outcome.reasoning)
    elif isinstance(outcome, JudgingError):
        print(f"Judging failed: {outcome.error}")


def _run_single(config: CommitteeConfig, out_dir: str, quiet: bool = False):
    run_id = generate_run_id()
    write_resolved_config(out_dir, config, run_id)

    sink_id = add_run_log(out_dir, run_id)
    try:
        with logger.contextualize(run_id=run_id):
            logger.info("Run {}: {} models, mode {}", run_id, len(config.committee), config.judging_mode.value)
            responses, outcome, judge_calls = asyncio.run(_run_committee(config, run_id, out_dir, quiet))
            write_results(out_dir, run_id, config, responses, outcome)
            stats = compute_stats(responses, outcome, judge_calls)
            write_stats(out_dir, stats)
    finally:
        logger.remove(sink_id)
    return outcome, stats


def cmd_run(args):
    with open(args.config) as f:
        config_data = json.load(f)

    try:
        config = CommitteeConfig(**config_data)
    except ValidationError as e:
        logger.error("Invalid config {}: {}", args.config, e)
        return 2

    try:
        outcome, _ = _run_single(config, args.out, quiet=args.quiet)
    except CommitteeError as e:
        logger.error(str(e))
        return 2

    _print_outcome(outcome)
    print(f"Run complete. Output: {args.out}")
    return 1 if isinstance(outcome, JudgingError) else 0


def cmd_criteria(args):
    async def _generate():
        async with BackendClient() as client:
            return await generate_criteria(client, args.description, args.model)

    try:
        criteria = asyncio.run(_generate())
    except CommitteeError as e:
        logger.error("Criteria generation failed: {}", e)
        return 2
    print(json.dumps(criteria.to_wire(), indent=2))
    return 0


def cmd_presets(args):
    for c in PRESETS:
        print(f"{c.id:<12} {c.label} - {c.description}")
        if args.verbose:
            for item in c.items:
                print(f"    {item.name} ({item.weight}/5): {item.description}")
    return 0


def cmd_serve(args):
    import uvicorn

    uvicorn.run("llm_committee.server:app", host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="llm-committee")
    parser.add_argument("--log-level", default="INFO", help="Console log level")
    parser.add_argument("--log-file", help="Also write DEBUG logs to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Stream a prompt to the committee and judge the answers")
    run_parser.add_argument("--config", required=True, help="Config JSON file")
    run_parser.add_argument("--out", required=True, help="Output directory")
    run_parser.add_argument("--quiet", action="store_true", help="Do not report per-model completion")
    run_parser.set_defaults(func=cmd_run)

    criteria_parser = subparsers.add_parser("criteria", help="Generate judging criteria with a model")
    criteria_parser.add_argument("--description", required=True, help="What the evaluation should focus on")
    criteria_parser.add_argument("--model", required=True, help="Model id used to generate the criteria")
    criteria_parser.set_defaults(func=cmd_criteria)

    presets_parser = subparsers.add_parser("presets", help="List built-in criteria presets")
    presets_parser.add_argument("--verbose", "-v", action="store_true", help="Show every criterion")
    presets_parser.set_defaults(func=cmd_presets)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
