"""CLI entry point for prose-polisher."""

import argparse
import csv
import io
import json
import sys
from pathlib import Path

from .config import load_settings, load_static_rules
from .errors import GenerationError
from .generation import load_generator
from .lifecycle import PolisherContext
from .models import LeaderboardStats, PatternLeaderboard
from .stats import summarize
from .transcript import load_transcript


def main(argv: list[str] | None = None) -> None:
    """Prose Polisher: find repetitive phrasing in a chat and rewrite text with rules."""
    parser = argparse.ArgumentParser(
        prog="prose-polisher",
        description="Find repeated phrases in an AI chat transcript and rewrite text with regex rules.",
    )
    parser.add_argument("chat_file", nargs="?", default=None, help="Path to a SillyTavern .jsonl chat or a JSON message list.")
    parser.add_argument("--rewrite", dest="rewrite_text", default=None, help="Rewrite TEXT with the active rules and print it.")
    parser.add_argument("--settings", dest="settings_path", default=None, help="Path to a YAML or JSON settings blob.")
    parser.add_argument("--rules", dest="rules_path", default=None, help="Path to a static rule seed replacing the bundled one.")
    parser.add_argument("--format", dest="output_format", choices=["json", "csv"], default="json", help="Output format (default: json).")
    parser.add_argument("--output", dest="output_path", default=None, help="Write results to file instead of stdout.")
    parser.add_argument("--top", type=int, default=None, help="Only output the N highest-scoring entries.")
    parser.add_argument("--stats", dest="show_stats", action="store_true", default=False, help="Print summary statistics to stderr.")
    parser.add_argument("--generator", dest="generator_path", default=None, help="Dotted path of a prompt -> text callable used to draft new rules.")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the generator.")

    args = parser.parse_args(argv)

    if args.chat_file is None and args.rewrite_text is None:
        parser.print_help()
        sys.exit(1)

    context = _build_context(args)
    context.mark_ready()

    if args.rewrite_text is not None:
        print(context.polish(args.rewrite_text))
        return

    _cmd_analyze(args, context)


def _build_context(args: argparse.Namespace) -> PolisherContext:
    """Load settings and rules named on the command line."""
    for path in (args.settings_path, args.rules_path):
        if path and not Path(path).is_file():
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(2)

    settings = load_settings(args.settings_path) if args.settings_path else None
    static_rules = load_static_rules(args.rules_path) if args.rules_path else None
    return PolisherContext(settings=settings, static_rules=static_rules)


def _cmd_analyze(args: argparse.Namespace, context: PolisherContext) -> None:
    """Analyze a chat transcript and print its leaderboard."""
    if not Path(args.chat_file).is_file():
        print(f"Error: File not found: {args.chat_file}", file=sys.stderr)
        sys.exit(2)

    messages = load_transcript(args.chat_file)
    leaderboard = context.analyzer.analyze_history(messages)

    if args.generator_path:
        _cmd_generate(args, context)
        leaderboard = context.analyzer.get_leaderboard()

    if args.output_format == "json":
        output_text = _format_json(leaderboard, args.top)
    else:
        output_text = _format_csv(leaderboard, args.top)

    if args.output_path:
        with open(args.output_path, "w", encoding="utf-8") as f:
            f.write(output_text)
    else:
        print(output_text)

    if args.show_stats:
        _print_stats(summarize(leaderboard), context.analyzer.total_ai_messages)


def _cmd_generate(args: argparse.Namespace, context: PolisherContext) -> None:
    """Draft rules with an external generator and report them on stderr."""
    generator = load_generator(args.generator_path)
    try:
        report = context.analyzer.generate_rules_from_analysis(generator, timeout=args.timeout)
    except GenerationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(3)

    print(f"Generated {len(report.added)} rules ({len(report.rejected)} drafts rejected)", file=sys.stderr)
    for rule in report.added:
        print(f"  + {rule.script_name}: {rule.find_regex}", file=sys.stderr)


def _records(leaderboard: PatternLeaderboard, top: int | None) -> list[dict]:
    return [
        {"phrase": phrase, "score": round(score, 2), "pattern": is_pattern}
        for phrase, score, is_pattern in leaderboard.top(top)
    ]


def _format_json(leaderboard: PatternLeaderboard, top: int | None) -> str:
    """Format leaderboard entries as JSON."""
    return json.dumps(_records(leaderboard, top), indent=2)


def _format_csv(leaderboard: PatternLeaderboard, top: int | None) -> str:
    """Format leaderboard entries as CSV."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=["phrase", "score", "pattern"])
    writer.writeheader()
    for record in _records(leaderboard, top):
        writer.writerow(record)
    return buf.getvalue()


def _print_stats(stats: LeaderboardStats, messages_analyzed: int) -> None:
    """Print summary statistics to stderr."""
    print("\n=== Repetition Summary ===", file=sys.stderr)
    print(f"AI messages analyzed: {messages_analyzed:,}", file=sys.stderr)
    print(
        f"Entries: {stats.total_entries:,}  |  Patterns: {stats.merged_patterns:,}  "
        f"|  Phrases: {stats.remaining_phrases:,}",
        file=sys.stderr,
    )
    print("", file=sys.stderr)
    print("Score:", file=sys.stderr)
    print(
        f"  Mean: {stats.mean_score}  |  Median: {stats.median_score}  "
        f"|  Min: {stats.min_score}  |  Max: {stats.max_score}",
        file=sys.stderr,
    )
    hist = stats.score_histogram
    print(
        "  Distribution:  " + "  |  ".join(f"{bucket}: {count}" for bucket, count in hist.items()),
        file=sys.stderr,
    )
