"""Command-line interface for the file record unduplicator."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Callable, List, Optional, Sequence

import unduplicator.config as config
from unduplicator.db import init_db
from unduplicator.options import ConflictResolution
from unduplicator.services.metadata_reconciler import MetadataUpdateDecision
from unduplicator.services.unduplicate import unduplicate_files

PROMPT = "Keep OLD or MASTER metadata or SKIP record [o,m,s,?]? "
PROMPT_HELP = [
    "    o - keep OLD metadata record",
    "    m - keep MASTER metadata record",
    "    s - SKIP handling of record for now",
    "    ? - HELP",
]
PROMPT_CHOICES = {
    "o": ConflictResolution.keep_old,
    "m": ConflictResolution.keep_master,
    "s": ConflictResolution.skip,
}


class ConflictPrompt:
    """Ask on the terminal how to resolve a metadata conflict."""

    def __init__(
        self,
        ask: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ):
        self.ask = ask
        self.write = write

    def __call__(self, decision: MetadataUpdateDecision) -> ConflictResolution:
        self.write(
            f"\tOld metadata {decision.old_uid} (file {decision.old_file_uid}) conflicts with master "
            f"metadata {decision.master_uid} (file {decision.master_file_uid}), "
            f"sys_language_uid {decision.language_uid}"
        )
        self.write(f"\t -> Old metadata   : {json.dumps(decision.old_clean, default=str)}")
        self.write(f"\t -> Master metadata: {json.dumps(decision.master_clean, default=str)}")
        while True:
            try:
                answer = self.ask(PROMPT)
            except EOFError:
                return ConflictResolution.skip
            resolution = PROMPT_CHOICES.get((answer or "?").strip().lower()[:1])
            if resolution is not None:
                return resolution
            for line in PROMPT_HELP:
                self.write(line)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unduplicate",
        description="Merge duplicate sys_file records that share storage and identifier",
    )
    parser.add_argument("-d", "--dry-run", action="store_true", help="Report what would change without writing anything")
    parser.add_argument("-i", "--identifier", help="Only use this identifier")
    parser.add_argument("-s", "--storage", type=int, default=config.STORAGE_FILTER_ALL, help="Only use this storage (-1 = all)")
    parser.add_argument(
        "-f",
        "--force",
        nargs="?",
        const="overwrite",
        default=None,
        help="Resolve metadata conflicts automatically: overwrite (default when given), keep, keep-nonempty",
    )
    parser.add_argument("-o", "--keep-oldest", action="store_true", help="Use the oldest record as master instead of the newest")
    parser.add_argument("-a", "--interactive", action="store_true", help="Ask which metadata to keep when a conflict is found")
    parser.add_argument(
        "-m",
        "--meta-fields",
        help=(
            "Comma separated list of metadata fields to compare "
            f"(default: {','.join(config.DEFAULT_META_FIELDS)}; "
            f"with extended metadata: {','.join(config.FILEMETADATA_META_FIELDS)})"
        ),
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show per-language decisions")
    parser.add_argument("--no-migrate", action="store_true", help="Do not check or upgrade the database schema")
    return parser


def _print_summary(result: dict) -> None:
    prefix = "[dry-run] " if result["dry_run"] else ""
    print(f"{prefix}Duplicates found:   {result['duplicates_found']}")
    print(f"{prefix}Duplicates removed: {result['duplicates_removed']}")
    print(f"{prefix}Duplicates kept:    {result['kept']}")
    if result["case_variants_skipped"]:
        print(f"{prefix}Case variants skipped: {result['case_variants_skipped']}")
    for conflict in result["conflicts"]:
        print(
            f"  conflict: file {conflict['old_file_uid']} vs master {conflict['master_file_uid']} "
            f"(sys_language_uid {conflict['language_uid']})"
        )
    for error in result["errors"]:
        print(f"  error: file {error['uid']} ({error['error_type']}): {error['message']}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        config.logger.setLevel(logging.DEBUG)

    try:
        init_db(migrate=not args.no_migrate)
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    meta_fields: Optional[List[str]] = None
    if args.meta_fields is not None:
        meta_fields = args.meta_fields.split(",")

    result = unduplicate_files(
        dry_run=args.dry_run,
        identifier=args.identifier,
        storage=args.storage,
        keep_oldest=args.keep_oldest,
        force=args.force,
        interactive=args.interactive,
        meta_fields=meta_fields,
        conflict_resolver=ConflictPrompt() if args.interactive else None,
    )
    if result["status"] == "error":
        print(f"error: {result['field']}: {result['message']}", file=sys.stderr)
        return 1

    _print_summary(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
