"""Minimal CLI entry point for running and reviewing the support inbox."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from support_inbox.config.settings import SupportInboxSettings
from support_inbox.core.models import (
    PRIORITIES,
    SENTIMENTS,
    TONES,
    VALID_STATUSES,
    BatchProgress,
    ProcessingRecord,
    ResponseDraft,
)
from support_inbox.pipeline.orchestrator import BatchOrchestrator


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: BatchProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"total={progress.total} "
        f"processed={progress.messages_processed} "
        f"duplicate={progress.messages_duplicate} "
        f"failed={progress.messages_failed} "
        f"sent={progress.responses_sent}",
        end="\r",
        flush=True,
    )


def _add_filter_args(subparser: argparse.ArgumentParser) -> None:
    """Add record filter and pagination flags to a subparser."""
    subparser.add_argument("--priority", choices=PRIORITIES, help="Only this priority")
    subparser.add_argument("--sentiment", choices=SENTIMENTS, help="Only this sentiment")
    subparser.add_argument("--status", choices=sorted(VALID_STATUSES), help="Only this status")
    subparser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum records to show",
    )
    subparser.add_argument(
        "--offset",
        type=int,
        default=0,
        help="Skip the first N records",
    )


def _validate_filter_args(args: argparse.Namespace) -> None:
    """Reject negative pagination values."""
    if getattr(args, "limit", 0) < 0:
        print("Error: --limit must be non-negative", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "offset", 0) < 0:
        print("Error: --offset must be non-negative", file=sys.stderr)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Support Inbox - Classify, summarize and answer support email"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # process command
    process_parser = subparsers.add_parser("process", help="Fetch and process unread email")
    process_parser.add_argument(
        "--max-results",
        type=int,
        default=None,
        dest="max_results",
        help="Cap messages fetched this cycle (default: from settings)",
    )

    # status command
    subparsers.add_parser("status", help="Show record counts by status")

    # list command
    list_parser = subparsers.add_parser("list", help="List processed records")
    _add_filter_args(list_parser)

    # show command
    show_parser = subparsers.add_parser("show", help="Show one record in full")
    target = show_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("record_id", type=int, nargs="?")
    target.add_argument("--message-id", dest="message_id", help="Look up by Gmail message id")
    show_parser.add_argument(
        "--history", action="store_true", help="Also print every earlier draft"
    )

    # regeneration commands
    analyze_parser = subparsers.add_parser("analyze", help="Re-run analysis for a record")
    analyze_parser.add_argument("record_id", type=int)

    summarize_parser = subparsers.add_parser("summarize", help="Re-run summary for a record")
    summarize_parser.add_argument("record_id", type=int)

    respond_parser = subparsers.add_parser("respond", help="Draft a new response")
    respond_parser.add_argument("record_id", type=int)
    respond_parser.add_argument("--tone", "-t", choices=TONES, default=None)

    # send command
    send_parser = subparsers.add_parser("send", help="Send the current draft")
    send_parser.add_argument("record_id", type=int)

    # set-status command
    status_parser = subparsers.add_parser("set-status", help="Change a record's status")
    status_parser.add_argument("record_id", type=int)
    status_parser.add_argument("status", choices=sorted(VALID_STATUSES))

    # analytics command
    subparsers.add_parser("analytics", help="Show totals and distributions")

    # insights command
    insights_parser = subparsers.add_parser(
        "insights", help="Sentiment, priority and category breakdown"
    )
    insights_parser.add_argument(
        "--status", choices=sorted(VALID_STATUSES), help="Only this status"
    )

    # knowledge base commands
    subparsers.add_parser("kb-show", help="Print the knowledge base")
    kb_set_parser = subparsers.add_parser("kb-set", help="Add or replace a knowledge snippet")
    kb_set_parser.add_argument("category")
    kb_set_parser.add_argument("key")
    kb_set_parser.add_argument("value")

    return parser


def _print_record(record: ProcessingRecord) -> None:
    message = record.message
    print(f"\nRecord {record.record_id} [{record.status}]")
    print(f"  From:     {message.sender}")
    print(f"  Subject:  {message.subject or '(no subject)'}")
    print(f"  Received: {message.received_at.isoformat()}")
    if record.analysis:
        print(
            f"  Analysis: {record.analysis.sentiment}/{record.analysis.priority} "
            f"({record.analysis.category})"
        )
    if record.summary:
        print(f"\nSummary:\n  {record.summary}")
    if record.response:
        state = "sent" if record.response.sent else "draft"
        print(f"\nResponse ({record.response.tone}, {state}):\n{record.response.text}")


def _print_drafts(drafts: list[ResponseDraft]) -> None:
    print(f"\nDraft history ({len(drafts)}):")
    for draft in drafts:
        state = f"sent {draft.sent_at.isoformat()}" if draft.sent and draft.sent_at else "draft"
        print(f"\n  #{draft.response_id} {draft.created_at.isoformat()} ({draft.tone}, {state})")
        for line in draft.text.splitlines():
            print(f"    {line}")


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "list":
        _validate_filter_args(args)

    settings = SupportInboxSettings()
    setup_logging(settings.log_level)

    orchestrator = BatchOrchestrator(settings=settings, on_progress=on_progress)

    try:
        if args.command == "process":
            result = orchestrator.run_cycle(max_results=args.max_results)
            print(
                f"\n\nComplete: processed={result.processed_count} "
                f"duplicates={result.duplicate_count} "
                f"errors={result.error_count} sent={result.sent_count}"
            )
            for external_id, error in result.errors:
                print(f"  failed {external_id}: {error}")

        elif args.command == "status":
            counts = orchestrator.get_status()
            print("\nRecord counts by status:")
            for status, count in sorted(counts.items()):
                print(f"  {status}: {count}")

        elif args.command == "list":
            records = orchestrator.list_records(
                priority=args.priority,
                sentiment=args.sentiment,
                status=args.status,
                limit=args.limit,
                offset=args.offset,
            )
            print(f"\nFound {len(records)} records:\n")
            for record in records:
                analysis = record.analysis
                tag = f"{analysis.priority:7s} {analysis.sentiment:8s}" if analysis else " " * 16
                print(
                    f"  {record.record_id:5d} {record.status:10s} {tag} "
                    f"{record.message.sender:30s} {record.message.subject}"
                )

        elif args.command == "show":
            if args.message_id:
                record = orchestrator.find_record(args.message_id)
            else:
                record = orchestrator.get_record(args.record_id)
            _print_record(record)
            if args.history:
                _print_drafts(orchestrator.list_drafts(record.record_id))

        elif args.command == "analyze":
            analysis = orchestrator.regenerate_analysis(args.record_id)
            print(json.dumps(analysis.to_dict(), indent=2))

        elif args.command == "summarize":
            print(orchestrator.regenerate_summary(args.record_id))

        elif args.command == "respond":
            draft = orchestrator.regenerate_response(args.record_id, tone=args.tone)
            print(f"\nDraft {draft.response_id} ({draft.tone}):\n{draft.text}")

        elif args.command == "send":
            sent_id = orchestrator.send_response(args.record_id)
            print(f"\nSent response for record {args.record_id} (message {sent_id})")

        elif args.command == "set-status":
            orchestrator.update_status(args.record_id, args.status)
            print(f"\nRecord {args.record_id} marked {args.status}")

        elif args.command == "analytics":
            print(json.dumps(orchestrator.get_analytics(), indent=2))

        elif args.command == "insights":
            records = orchestrator.list_records(status=args.status)
            print(json.dumps(orchestrator.insights(records), indent=2))

        elif args.command == "kb-show":
            print(json.dumps(orchestrator.get_knowledge_base(), indent=2))

        elif args.command == "kb-set":
            orchestrator.update_knowledge_base(args.category, args.key, args.value)
            print(f"\nSaved {args.category}.{args.key} to {settings.knowledge_path}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        orchestrator.close()


if __name__ == "__main__":
    main()
