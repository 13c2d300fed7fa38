from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from .config import load_config
from .core import HybridBrain
from .logging_config import configure_logging
from .strategist import build_strategist
from .types import DecisionType

logger = logging.getLogger(__name__)

CONSOLE_HELP = (
    "Commands: quit | status | report | train | save | "
    "reactive|tactical|strategic [complexity] [urgency] | ok [reward] | fail [reward]"
)


def _read_snapshot(path: Optional[str]) -> Dict[str, Any]:
    """Snapshot JSON from a file, '-' for stdin, or an empty snapshot."""
    if not path:
        return {}
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _build_brain(args: argparse.Namespace) -> HybridBrain:
    config = load_config(args.config)
    if args.state_dir:
        config.state_dir = args.state_dir
    if args.model_dir:
        config.model_dir = args.model_dir
    if args.no_ml:
        config.ml_enabled = False
    configure_logging("DEBUG" if args.verbose else config.log_level, config.log_dir)
    return HybridBrain(config, strategist=build_strategist(getattr(args, "model", None)))


def cmd_decide(args: argparse.Namespace) -> int:
    brain = _build_brain(args)
    brain.load()
    try:
        result = brain.decide({
            "type": args.type,
            "complexity": args.complexity,
            "urgency": args.urgency,
            "snapshot": _read_snapshot(args.snapshot),
        })
        print(json.dumps(result.to_dict(), indent=2))
    finally:
        brain.stop()
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    brain = _build_brain(args)
    brain.load()
    try:
        if args.json:
            print(json.dumps(brain.metrics(), indent=2, default=str))
        else:
            print(brain.performance_report())
    finally:
        brain.router.close()
    return 0


def cmd_train(args: argparse.Namespace) -> int:
    brain = _build_brain(args)
    brain.load()
    try:
        report = brain.train_now()
        if report is None:
            print("[Training skipped: not enough completed experiences]")
            return 1
        print(f"[Trained on {report.samples} samples, loss {report.loss:.4f}, {report.duration_ms:.0f}ms]")
    finally:
        brain.stop()
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    if args.output:
        config.save(args.output)
        print(f"[Wrote config to {args.output}]")
    else:
        print(json.dumps(config.to_dict(), indent=2))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    brain = _build_brain(args)
    app = create_app(brain=brain)
    logger.info(f"Hybrid Brain API starting on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def cmd_console(args: argparse.Namespace) -> int:
    """Interactive loop for poking at routing and learning by hand."""
    brain = _build_brain(args)
    brain.start()
    snapshot = _read_snapshot(args.snapshot)
    last_action: Optional[str] = None

    print(f"\n{CONSOLE_HELP}\n")
    try:
        while True:
            try:
                line = input("brain> ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\n[Goodbye]")
                break
            if not line:
                continue

            cmd, *rest = line.split()
            cmd = cmd.lower()

            if cmd == "quit":
                break

            if cmd == "status":
                m = brain.router.metrics()
                print(f"  Decisions: {m['total_decisions']} (cache hits {m['cache_hits']})")
                print(f"  Remote calls left: {m['remote_calls_remaining']}/{m['remote_call_cap']}")
                print(f"  Last action: {last_action or '-'}")
                continue

            if cmd == "report":
                print(brain.performance_report())
                continue

            if cmd == "train":
                report = brain.train_now()
                print(f"  {report.to_dict() if report else 'skipped'}")
                continue

            if cmd == "save":
                brain.persist()
                print("  [Saved]")
                continue

            if cmd in ("ok", "fail"):
                if last_action is None:
                    print("  [No decision yet]")
                    continue
                reward = float(rest[0]) if rest else (1.0 if cmd == "ok" else -1.0)
                brain.report_outcome(last_action, success=cmd == "ok", reward=reward)
                print(f"  [Reported {cmd} for {last_action}]")
                continue

            try:
                decision_type = DecisionType(cmd)
                complexity = float(rest[0]) if rest else 0.5
                urgency = float(rest[1]) if len(rest) > 1 else 0.0
            except ValueError:
                print(f"  [Unknown command: {line}]\n  {CONSOLE_HELP}")
                continue

            result = brain.decide({
                "type": decision_type,
                "complexity": complexity,
                "urgency": urgency,
                "snapshot": snapshot,
            })
            last_action = result.action
            print(
                f"  {result.action} [{result.priority.value}] "
                f"conf={result.confidence:.2f} via {result.source.value}: {result.reasoning}"
            )
    finally:
        brain.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Hybrid Brain - decision routing between a local brain and a remote strategist"
    )
    ap.add_argument("--config", help="JSON or YAML config file")
    ap.add_argument("--state-dir", help="Override snapshot directory")
    ap.add_argument("--model-dir", help="Override model artifact directory")
    ap.add_argument("--no-ml", action="store_true", help="Disable the local scoring models")
    ap.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("decide", help="Make one decision and print it as JSON")
    p.add_argument("--type", default="tactical", choices=[t.value for t in DecisionType])
    p.add_argument("--complexity", type=float, default=0.5)
    p.add_argument("--urgency", type=float, default=0.0)
    p.add_argument("--snapshot", help="Snapshot JSON file ('-' for stdin)")
    p.add_argument("--model", help="Path to GGUF model for the remote strategist")
    p.set_defaults(func=cmd_decide)

    p = sub.add_parser("console", help="Interactive decision console")
    p.add_argument("--snapshot", help="Snapshot JSON file used for every decision")
    p.add_argument("--model", help="Path to GGUF model for the remote strategist")
    p.set_defaults(func=cmd_console)

    p = sub.add_parser("report", help="Print the performance report from persisted state")
    p.add_argument("--json", action="store_true", help="Print raw metrics as JSON")
    p.set_defaults(func=cmd_report)

    p = sub.add_parser("train", help="Run one training cycle on persisted experiences")
    p.set_defaults(func=cmd_train)

    p = sub.add_parser("config", help="Print (or write) the effective configuration")
    p.add_argument("--output", help="Write to this JSON/YAML path instead of printing")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--model", help="Path to GGUF model for the remote strategist")
    p.set_defaults(func=cmd_serve)

    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
