#!/usr/bin/env python3
"""
modquery - query the resolved external dependency graph

Loads a dependency graph snapshot and answers tree, deps, path, all_paths,
explain, show and show_extension queries against it.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from modquery.cli.render import render
from modquery.config import CHARSETS, OUTPUT_FORMATS, load_config
from modquery.errors import ModqueryError, QueryInterrupted
from modquery.graph.model import ROOT_TOKEN, Snapshot
from modquery.graph.store import load_snapshot
from modquery.query.command import QueryCommand
from modquery.query.options import QueryOptions, QueryType
from modquery.repo_rules import HttpRepoRuleLookup, RepoRuleLookup

logger = logging.getLogger(__name__)

PROGRAM = "modquery"


def failure_message(message: str) -> str:
    """Normalize an error message and append the help hint."""
    message = message.rstrip()
    if not message.endswith('.'):
        message += '.'
    return f"{message} Type '{PROGRAM} --help' for syntax and help."


class ModqueryCLI:
    """Runs queries against one snapshot and prints rendered results."""

    def __init__(self, snapshot: Snapshot, options: QueryOptions,
                 output: str = 'text', charset: str = 'utf8', stream=None,
                 repo_rule_lookup: Optional[RepoRuleLookup] = None):
        self.snapshot = snapshot
        self.options = options
        self.repo_rule_lookup = repo_rule_lookup
        self.output = output
        self.charset = charset
        self.stream = stream if stream is not None else sys.stdout

    def run(self, query: str, args: Sequence[str] = ()) -> None:
        """
        Run one query and print its result.

        Raises:
            ModqueryError: On any argument, evaluation or interruption failure;
                nothing is printed in that case
        """
        result = QueryCommand(self.snapshot, self.options, repo_rule_lookup=self.repo_rule_lookup).run(query, args)
        text = render(result, output=self.output, charset=self.charset)
        print(text, file=self.stream)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description='Query the resolved external dependency graph',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Query types: {QueryType.names()}",
    )

    parser.add_argument('query', nargs='?', help='Query type')
    parser.add_argument('args', nargs='*', help='Query arguments (module or extension references)')

    parser.add_argument('--snapshot', type=Path,
                        help='Dependency graph snapshot (YAML or JSON; default: $MODQUERY_SNAPSHOT_PATH)')
    parser.add_argument('--config', type=Path, help='Config file (default: ~/.modquery.yaml)')
    parser.add_argument('--base_module', default=ROOT_TOKEN,
                        help='Module relative to which bare names are resolved (default: <root>)')
    parser.add_argument('--from', dest='modules_from', default=ROOT_TOKEN,
                        help='Comma-separated start modules for tree, path, all_paths and explain (default: <root>)')
    parser.add_argument('--extension_usages',
                        help='Comma-separated modules whose extension usages show_extension reports')
    parser.add_argument('--extension_filter', nargs='?', const='',
                        help='Comma-separated extensions to follow; given without value means all')
    parser.add_argument('--include_unused', action='store_true',
                        help='Allow modules that lost version selection')
    parser.add_argument('--depth', type=int, default=-1,
                        help='Maximum display depth (default: 1 for explain, 2 for deps, unbounded otherwise)')
    parser.add_argument('--repo_rules_url',
                        help='Repository rule service used by show (default: rules embedded in the snapshot)')
    parser.add_argument('--charset', choices=CHARSETS, help='Output charset')
    parser.add_argument('--output', choices=OUTPUT_FORMATS, help='Output format')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.WARNING),
        format="%(levelname)s: %(message)s",
    )

    if not args.query:
        print("ERROR: " + failure_message(f"No query type specified, choose one of : {QueryType.names()}"), file=sys.stderr)
        sys.exit(2)

    snapshot_path = args.snapshot or config.snapshot_path
    if snapshot_path is None:
        print("ERROR: no snapshot given", file=sys.stderr)
        print("Set via --snapshot or MODQUERY_SNAPSHOT_PATH environment variable", file=sys.stderr)
        sys.exit(2)

    options = QueryOptions(
        base_module=args.base_module,
        modules_from=args.modules_from,
        extension_usages=args.extension_usages,
        extension_filter=args.extension_filter,
        include_unused=args.include_unused,
        depth=args.depth,
        max_paths=config.max_paths,
        max_visits=config.max_visits,
    )

    repo_rule_lookup = None
    repo_rules_url = args.repo_rules_url or config.repo_rules_url
    if repo_rules_url:
        repo_rule_lookup = HttpRepoRuleLookup(repo_rules_url, token=config.repo_rules_token)

    try:
        snapshot = load_snapshot(snapshot_path)
        cli = ModqueryCLI(
            snapshot,
            options,
            output=args.output or config.output,
            charset=args.charset or config.charset,
            repo_rule_lookup=repo_rule_lookup,
        )
        cli.run(args.query, args.args)
    except KeyboardInterrupt:
        error = QueryInterrupted("Modquery interrupted")
        print(f"ERROR: {error.message}", file=sys.stderr)
        sys.exit(error.exit_code)
    except ModqueryError as e:
        print(f"ERROR: {failure_message(e.message)}", file=sys.stderr)
        logger.debug(f"Failure kind: {e.kind.value}")
        sys.exit(e.exit_code)


if __name__ == '__main__':
    main()
