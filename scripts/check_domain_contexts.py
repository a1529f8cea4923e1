#!/usr/bin/env python3
"""
Domain Context Check Script

Loads every domain artifact in a directory and runs each domain's worked
examples through the query guardrail, so a broken artifact is caught
before deployment rather than at startup.

Usage:
    python scripts/check_domain_contexts.py

    Options:
      --dir PATH       Directory of domain artifacts (default: DOMAIN_CONTEXT_DIR)
      --sql "SELECT"   Validate one statement against --domain
      --domain ID      Domain for --sql
"""

import argparse
import os
import sys
from pathlib import Path

# Add code directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "code"))

os.environ.setdefault("AZURE_AUTH_TYPE", "keys")


def check_directory(directory: str) -> int:
    """Load all artifacts and validate their examples. Returns failure count."""
    from backend.batch.utilities.context_store import ContextStore
    from backend.batch.utilities.nl2sql import Rejected, validate_query

    print("\n" + "=" * 60)
    print(f"Loading domain artifacts from {directory}")
    print("=" * 60)

    store = ContextStore()
    report = store.load_directory(directory)
    failures = len(report.failed)

    for name, reason in sorted(report.failed.items()):
        print(f"  FAILED  {name}: {reason}")

    for context in store:
        print(
            f"  LOADED  {context.domain_id} (version {context.version}, "
            f"{len(context.schema_descriptions)} tables, "
            f"{len(context.metric_definitions)} metrics)"
        )
        for example in context.examples:
            verdict = validate_query(example.sql, context)
            if isinstance(verdict, Rejected):
                failures += 1
                print(f"    example rejected: {example.question}")
                print(f"      {verdict.describe()}")

    print(f"\n{len(report.loaded)} loaded, {failures} problem(s)")
    return failures


def check_statement(directory: str, domain_id: str, sql: str) -> int:
    """Validate one statement against one domain."""
    from backend.batch.utilities.context_store import ContextStore
    from backend.batch.utilities.nl2sql import Accepted, validate_query

    store = ContextStore()
    store.load_directory(directory)
    context = store.get(domain_id)
    if context is None:
        print(f"Unknown domain: {domain_id}")
        return 1

    verdict = validate_query(sql, context)
    if isinstance(verdict, Accepted):
        print(f"Accepted: {verdict.normalized_text}")
        return 0
    print(f"Rejected: {verdict.describe()}")
    return 1


def main():
    from backend.batch.utilities.helpers.env_helper import EnvHelper

    parser = argparse.ArgumentParser(description="Check domain context artifacts")
    parser.add_argument("--dir", default=None, help="Directory of domain artifacts")
    parser.add_argument("--sql", default=None, help="Statement to validate")
    parser.add_argument("--domain", default=None, help="Domain for --sql")
    args = parser.parse_args()

    directory = args.dir or EnvHelper().DOMAIN_CONTEXT_DIR

    if args.sql:
        if not args.domain:
            parser.error("--sql requires --domain")
        sys.exit(check_statement(directory, args.domain, args.sql))

    sys.exit(1 if check_directory(directory) else 0)


if __name__ == "__main__":
    main()
