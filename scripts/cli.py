"""CLI entry point for Gmail Attachments."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from tqdm import tqdm

from gmail_attachments.config.settings import GmailAttachmentsSettings
from gmail_attachments.core.exceptions import MissingConfiguration
from gmail_attachments.core.models import ProgressCounters
from gmail_attachments.pipeline.fetcher import AttachmentFetcher


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class ProgressBar:
    """Render ProgressCounters with tqdm once the download stage starts."""

    def __init__(self) -> None:
        self._bar: tqdm | None = None

    def __call__(self, progress: ProgressCounters) -> None:
        if progress.current_stage != "download" and self._bar is None:
            return
        if self._bar is None:
            self._bar = tqdm(
                total=progress.total_expected_attachments,
                desc="Attachments",
                unit="file",
            )
        self._bar.n = progress.downloaded_attachments
        self._bar.set_postfix(
            messages=progress.processed_messages,
            matched=progress.matched_messages,
            failed=progress.failed_attachments,
        )
        self._bar.refresh()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


def format_summary(progress: ProgressCounters) -> str:
    return (
        f"messages found={progress.messages_discovered} "
        f"processed={progress.processed_messages} "
        f"matched={progress.matched_messages} "
        f"attachments downloaded={progress.downloaded_attachments}"
        f"/{progress.total_expected_attachments} "
        f"failed messages={progress.failed_messages} "
        f"failed attachments={progress.failed_attachments}"
    )


def _month(value: str) -> int:
    month = int(value)
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError("Month must be between 1 and 12")
    return month


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gmail Attachments - Download Gmail attachments by month and file type"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    auth_parser = subparsers.add_parser("auth", help="Authorize access and cache the token")
    auth_parser.add_argument(
        "--reset", action="store_true", help="Discard the cached token first"
    )

    fetch_parser = subparsers.add_parser("fetch", help="Download attachments for a month")
    fetch_parser.add_argument("--month", "-m", type=_month, required=True, help="Month (1-12)")
    fetch_parser.add_argument(
        "--year", "-y", type=int, default=date.today().year, help="Year (default: current)"
    )
    fetch_parser.add_argument(
        "--kind",
        "-k",
        action="append",
        default=None,
        help="Attachment extension to keep, repeatable (default: from settings)",
    )
    fetch_parser.add_argument(
        "--subfolders",
        action="store_true",
        default=None,
        help="Create one folder per email instead of prefixing filenames",
    )

    recent_parser = subparsers.add_parser("recent", help="List the newest emails")
    recent_parser.add_argument("--max-results", type=int, default=10, dest="max_results")

    upload_parser = subparsers.add_parser("upload", help="Upload a file to Google Drive")
    upload_parser.add_argument("path", type=Path)
    upload_parser.add_argument("--name", help="Name in Drive (default: local filename)")
    upload_parser.add_argument("--folder", help="Drive folder path, e.g. reports/2025")

    download_parser = subparsers.add_parser("download", help="Download a file from Google Drive")
    download_parser.add_argument("file_id")
    download_parser.add_argument("dest", type=Path)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = GmailAttachmentsSettings()
    if getattr(args, "subfolders", None):
        settings.create_subfolders = True
    setup_logging(settings.log_level)

    bar = ProgressBar()
    fetcher = AttachmentFetcher(settings=settings, on_progress=bar)

    try:
        if args.command == "auth":
            fetcher.authorize(reset=args.reset)
            print("Authorization complete.")

        elif args.command == "fetch":
            settings.ensure_directories()
            kinds = [[kind] for kind in args.kind] if args.kind else None
            progress = fetcher.run_month(args.year, args.month, extension_sets=kinds)
            bar.close()
            print(f"\nComplete: {format_summary(progress)}")
            print(f"Attachments saved in {settings.output_dir / f'{args.year}-{args.month:02d}'}")

        elif args.command == "recent":
            for email in fetcher.list_recent(args.max_results):
                print(f"\n{email['date']}  {email['from']}")
                print(f"  {email['subject']}")
                print(f"  {email['snippet']}")

        elif args.command == "upload":
            uploaded = fetcher.upload(args.path, name=args.name, folder_path=args.folder)
            print(f"File ID: {uploaded.file_id}")
            print(f"File name: {uploaded.name}")
            print(f"View in browser: {uploaded.web_view_link}")

        elif args.command == "download":
            path = fetcher.download(args.file_id, args.dest)
            print(f"Downloaded to {path}")

    except KeyboardInterrupt:
        bar.close()
        print(f"\n\nInterrupted by user. Progress: {format_summary(fetcher.progress)}")
        sys.exit(130)
    except MissingConfiguration as e:
        print(f"\nError: {e}", file=sys.stderr)
        print("Set them in the environment or in a .env file.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        bar.close()
        print(f"\nError: {e}", file=sys.stderr)
        if args.command == "fetch":
            print(f"Progress before failure: {format_summary(fetcher.progress)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
