#!/usr/bin/env python3
"""
PeerVault Storage CLI

Command-line interface for a local PeerVault store.

Commands:
- add: Store a file
- get: Retrieve a file by content ID
- rm: Delete a file
- ls: List stored files
- search: Search by name or content ID
- quota: Show or set storage capacity
- validate: Run the recovery sweep
- stats: Display engine statistics
"""

import sys
import os
import argparse
import asyncio
import logging
from datetime import datetime
from pathlib import Path

from peervault.config import EngineConfig
from peervault.core.metadata_index import FileMetadata
from peervault.core.storage_engine import StorageEngine
from peervault.errors import PeerVaultError

logger = logging.getLogger(__name__)


def _format_size(size: float) -> str:
    if size < 1024:
        return f"{int(size)} B"
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.2f} GB"


class PeerVaultCLI:
    """
    CLI for a local PeerVault store.

    Every command opens the store (loading the index and running the
    startup sweep), does its work and exits.
    """

    def __init__(self):
        self.engine = None  # StorageEngine instance

    async def add_file(self, args):
        """Store a file."""
        path = Path(args.path)
        data = path.read_bytes()

        metadata = await self.engine.add_file(
            data,
            name=args.name or path.name,
            mime_type=args.mime_type,
            indexed=args.indexed,
            passphrase=args.passphrase,
        )

        print(f"✅ Stored {metadata.name}")
        print(f"  Content ID: {metadata.content_id}")
        print(f"  Size:       {_format_size(metadata.size)}")
        print(f"  Encrypted:  {'yes' if metadata.is_encrypted else 'no'}")
        return 0

    async def get_file(self, args):
        """Retrieve a file."""
        metadata = self.engine.get_metadata(args.content_id)
        data = await self.engine.get_file(args.content_id, passphrase=args.passphrase)

        if args.output == "-":
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
            return 0

        output = Path(args.output or metadata.name)
        output.write_bytes(data)
        print(f"📥 Wrote {output} ({_format_size(len(data))})")
        return 0

    async def remove_file(self, args):
        """Delete a file."""
        metadata = await self.engine.delete_file(args.content_id)
        print(f"🗑️ Deleted {metadata.name}")
        return 0

    async def list_files(self, args):
        """List stored files."""
        records = sorted(self.engine.get_file_index(), key=lambda r: r.uploaded_at, reverse=True)
        self._print_records(records)
        return 0

    async def search_files(self, args):
        """Search files."""
        self._print_records(self.engine.search_files(args.query))
        return 0

    async def quota(self, args):
        """Show or set storage capacity."""
        if args.set is not None:
            await self.engine.set_storage_quota(args.set)

        quota = self.engine.get_storage_quota()
        print("💾 Storage Quota")
        print("-" * 40)
        print(f"  {'Capacity':<15} {quota.total_capacity_gb:.2f} GB")
        print(f"  {'Used':<15} {quota.used_gb:.4f} GB ({quota.usage_percent:.1f}%)")
        print(f"  {'Available':<15} {quota.available_gb:.4f} GB")
        print(f"  {'Monthly cost':<15} ${quota.monthly_cost:.2f}")
        return 0

    async def validate(self, args):
        """Run the recovery sweep."""
        report = await self.engine.validate_all_files()

        print(f"🔍 Checked {report.checked} file(s)")
        print(f"  Healthy:    {len(report.healthy)}")
        print(f"  Recovered:  {len(report.recovered)}")
        print(f"  Missing:    {len(report.recovering)}")
        print(f"  Evicted:    {len(report.evicted)}")
        print(f"  Errors:     {len(report.errors)}")
        return 1 if report.errors else 0

    async def get_stats(self, args):
        """Display engine statistics."""
        stats = self.engine.get_stats()

        print("📊 PeerVault Statistics")
        print("=" * 60)
        print(f"Peer ID: {self.engine.local_peer_id}")

        for category in ("files", "quota", "network"):
            print(f"\n{category.title()}:")
            print("-" * 60)
            for key, value in stats[category].items():
                print(f"  {key:<25} {value}")

        print("\nTiers:")
        print("-" * 60)
        for tier, tier_stats in stats["tiers"].items():
            print(f"  {tier:<25} {tier_stats}")
        return 0

    def _print_records(self, records):
        if not records:
            print("No files.")
            return

        print(f"{'Content ID':<20} {'Name':<30} {'Size':>10}  {'Uploaded':<19} Flags")
        print("-" * 90)
        for record in records:
            print(
                f"{record.content_id[:16] + '...':<20} "
                f"{record.name[:30]:<30} "
                f"{_format_size(record.size):>10}  "
                f"{datetime.fromtimestamp(record.uploaded_at):%Y-%m-%d %H:%M:%S} "
                f"{_flags(record)}"
            )
        print(f"\nTotal files: {len(records)}")

    def create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog="peervault",
            description="PeerVault local storage CLI",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument(
            "--storage-dir",
            default=os.getenv("PEERVAULT_STORAGE_DIR", "./peervault_storage"),
            help="Storage directory",
        )
        parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

        subparsers = parser.add_subparsers(dest="command", help="Commands")

        add_parser = subparsers.add_parser("add", help="Store a file")
        add_parser.add_argument("path", help="File to store")
        add_parser.add_argument("--name", help="Name to store under (default: file name)")
        add_parser.add_argument("--mime-type", help="MIME type (default: guessed)")
        add_parser.add_argument("--indexed", action="store_true", help="Announce to the network")
        add_parser.add_argument("--passphrase", help="Encrypt with this passphrase")

        get_parser = subparsers.add_parser("get", help="Retrieve a file")
        get_parser.add_argument("content_id", help="Content ID")
        get_parser.add_argument("-o", "--output", help="Output path, '-' for stdout (default: stored name)")
        get_parser.add_argument("--passphrase", help="Passphrase for encrypted files")

        rm_parser = subparsers.add_parser("rm", help="Delete a file")
        rm_parser.add_argument("content_id", help="Content ID")

        subparsers.add_parser("ls", help="List files")

        search_parser = subparsers.add_parser("search", help="Search files")
        search_parser.add_argument("query", help="Name or content ID fragment")

        quota_parser = subparsers.add_parser("quota", help="Show or set storage capacity")
        quota_parser.add_argument("--set", type=float, metavar="GB", help="New capacity in GB")

        subparsers.add_parser("validate", help="Run the recovery sweep")

        subparsers.add_parser("stats", help="Display statistics")

        return parser

    async def run_async(self, args):
        """Run CLI command asynchronously."""
        handlers = {
            "add": self.add_file,
            "get": self.get_file,
            "rm": self.remove_file,
            "ls": self.list_files,
            "search": self.search_files,
            "quota": self.quota,
            "validate": self.validate,
            "stats": self.get_stats,
        }
        handler = handlers.get(args.command)
        if handler is None:
            print("❌ Unknown command. Use --help for usage.")
            return 1

        config = EngineConfig.from_env().model_copy(update={"storage_dir": Path(args.storage_dir)})
        self.engine = StorageEngine(config)

        try:
            await self.engine.initialize()
            return await handler(args)
        except (PeerVaultError, OSError) as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1
        finally:
            await self.engine.close()

    def run(self, argv=None):
        """Run CLI (entry point)."""
        parser = self.create_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        return asyncio.run(self.run_async(args))


def _flags(record: FileMetadata) -> str:
    flags = []
    if record.is_encrypted:
        flags.append("encrypted")
    if record.indexed:
        flags.append("indexed")
    if not record.is_valid:
        flags.append(f"missing({record.retry_count})")
    if len(record.replicated_on) > 1:
        flags.append(f"replicas={len(record.replicated_on)}")
    return ",".join(flags)


def main():
    """CLI entry point."""
    cli = PeerVaultCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
