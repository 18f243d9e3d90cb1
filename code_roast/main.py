"""
Command line entry point for Code Roast.

Usage:
    python -m code_roast.main --file src/app.py
    python -m code_roast.main --file main.go --language go --output output/roast.json
    python -m code_roast.main --file app.js --provider openai --model gpt-4o-mini
    python -m code_roast.main --init-db
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from code_roast.client import ReviewClient
from code_roast.config import PROVIDER_KEY_VARS, load_settings
from code_roast.db import create_session_factory, init_db
from code_roast.errors import TransportError
from code_roast.prompts import build_messages
from code_roast.salvage import salvage_review

LANGUAGES_BY_SUFFIX = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rb": "ruby",
    ".java": "java",
    ".rs": "rust",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".sh": "bash",
    ".sql": "sql",
}


def guess_language(path: Path) -> str:
    return LANGUAGES_BY_SUFFIX.get(path.suffix.lower(), "text")


def save_output(result, filepath: str):
    """Save the review to a JSON file."""
    output_dir = Path(filepath).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(result.model_dump(by_alias=True), f, indent=2)

    print(f"\n✓ Review saved to: {filepath}")


def print_summary(result, degraded: bool):
    """Print human-readable summary to console."""
    print("\n" + "=" * 60)
    print(f"CODE ROAST - SCORE {result.score}/100")
    print("=" * 60)
    print(f"\n{result.summary}")

    metrics = result.metrics
    print("\nMetrics:")
    print(f"  Readability:     {metrics.readability}")
    print(f"  Maintainability: {metrics.maintainability}")
    print(f"  Efficiency:      {metrics.efficiency}")
    print(f"  Best practices:  {metrics.best_practices}")
    print(f"  Security:        {metrics.security}")

    if result.feedback:
        print("\n" + "-" * 60)
        for i, item in enumerate(result.feedback, 1):
            print(f"{i}. [{item.type.upper()}] {item.message}")

    if degraded:
        print("\n(model output was unusable; showing a fallback review)")
    print("\n" + "=" * 60)


def main(argv=None):
    """Main CLI entry point."""
    logging.basicConfig(level=logging.WARNING, format='%(levelname)s: %(message)s')
    settings = load_settings()

    parser = argparse.ArgumentParser(
        description="Code Roast - sarcastic but helpful AI code review"
    )
    parser.add_argument("--file", help="Path to the source file to roast")
    parser.add_argument("--language", help="Language label (default: guessed from the file suffix)")
    parser.add_argument("--output", help="Also write the review as JSON to this path")
    parser.add_argument(
        "--provider",
        choices=["modelslab", "openai", "anthropic"],
        default=settings.llm_provider,
        help=f"LLM provider (default: {settings.llm_provider})"
    )
    parser.add_argument("--model", default=settings.llm_model, help="Model name")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the database tables for DATABASE_URL and exit"
    )

    args = parser.parse_args(argv)

    if args.init_db:
        init_db(create_session_factory(settings.database_url))
        print(f"✓ Tables ready in {settings.database_url}")
        return 0

    if not args.file:
        parser.error("--file is required unless --init-db is given")

    path = Path(args.file)
    try:
        code = path.read_text()
    except FileNotFoundError:
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 1

    if not code.strip():
        print("Error: file is empty", file=sys.stderr)
        return 1

    language = args.language or guess_language(path)
    if args.provider == settings.llm_provider:
        api_key = settings.llm_api_key
    else:
        api_key = os.getenv(PROVIDER_KEY_VARS[args.provider])
    client = ReviewClient(
        provider=args.provider,
        api_key=api_key,
        endpoint=settings.llm_endpoint,
        model=args.model,
        timeout=settings.llm_timeout_seconds,
    )

    print(f"Roasting {path} ({language}) with {args.provider}...")
    try:
        raw = client.complete(build_messages(code, language))
    except TransportError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    outcome = salvage_review(raw)
    print_summary(outcome.result, outcome.degraded)

    if args.output:
        save_output(outcome.result, args.output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
