#!/usr/bin/env python3
"""
Block list generator

Fetches one or more known remote lists, extracts the domains and prints
them one per line, ready to be used as the sinkhole's block list.
"""

import argparse
import logging
import sys

from twisted.internet import task

from dns_sinkhole.sources import SOURCES, collect, find_source

logger = logging.getLogger(__name__)


def _parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="Generate a DNS sinkhole block list from remote sources.",
        epilog="Use 'list' to show available sources, 'all' to combine all of them.",
    )
    parser.add_argument("sources", nargs="+", metavar="list|all|source", help="Sources to use")
    return parser.parse_args(argv)


def print_sources(out=None):
    out = out or sys.stdout
    for source in SOURCES:
        out.write(f"{source.name:<10} {source.description}\n")


def select_sources(names):
    """Resolve source names, 'all' meaning every known source

    Raises:
        ValueError: If a name is not a known source
    """
    if "all" in names:
        return list(SOURCES)

    selected = []
    for name in names:
        source = find_source(name)
        if source is None:
            raise ValueError(f"Unknown source: {name}")
        if source not in selected:
            selected.append(source)
    return selected


def write_domains(domains, out=None):
    out = out or sys.stdout
    for domain in sorted(domains):
        out.write(f"{domain}\n")


def run(reactor, selected, fetch=None, out=None):
    """Fetch the selected sources and print the merged list"""
    d = collect(selected, fetch=fetch)
    d.addCallback(write_domains, out)
    return d


def main(argv=None):
    """Main entry point"""
    args = _parse_arguments(argv)
    logging.basicConfig(
        stream=sys.stderr, level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
    )

    if args.sources == ["list"]:
        print_sources()
        return

    try:
        selected = select_sources(args.sources)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    task.react(run, (selected,))


if __name__ == "__main__":
    main()
