#!/usr/bin/env python3
"""
Emby Stats - One-shot sync

This script:
1. Seeds servers from config.ini (or EMBY_SERVER_* environment variables)
2. Takes the sync lease so it never overlaps the web app's auto-sync
3. Syncs users and play history of every active server
4. Prints a per-server summary

Usage:
    python3 run_sync.py [--config config.ini] [--server-id 1 --server-id 2]
"""

import argparse
import sys

from emby_stats.config_loader import load_optional_servers
from flask_app import create_app
from flask_app.services.config_service import ConfigService
from flask_app.services.sync_lease_service import SyncLeaseService
from flask_app.services.sync_service import SyncService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync play history from Emby servers.")
    parser.add_argument('--config', default='config.ini', help="Path to config.ini (default: config.ini)")
    parser.add_argument('--server-id', type=int, action='append', dest='server_ids',
                        help="Only sync this server id (repeatable)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Run one sync and return a process exit code."""
    args = parse_args(argv)
    app = create_app('production', start_scheduler=False)

    with app.app_context():
        print("Loading configuration...")
        try:
            servers = load_optional_servers(args.config)
        except ValueError as e:
            print(f"\nConfiguration Error:\n{e}\n")
            return 2

        for server_config in servers or []:
            ConfigService.create_or_update_server(server_config)
            print(f"  Loaded {server_config!r}")

        if not ConfigService.has_valid_config():
            print("\nNo servers configured. Add a [Server:<name>] section to config.ini.\n")
            return 2

        service = SyncService(
            page_size=app.config['SYNC_PAGE_SIZE'],
            resume_limit=app.config['SYNC_RESUME_LIMIT'],
        )
        lease = SyncLeaseService(ttl_seconds=app.config['SYNC_LEASE_TTL'])

        print("\nSyncing...")
        try:
            results = service.run_exclusive(args.server_ids, lease=lease)
        except LookupError as e:
            print(f"\n{e}\n")
            return 2

        if results is None:
            print("\nAnother sync is already running; try again later.\n")
            return 1

        failed = 0
        for result in results:
            users = result['users_sync']
            history = result['history_sync']
            line = (
                f"  {result['server_name']}: users +{users['added']}/~{users['updated']}, "
                f"history +{history['added']} (skipped {history['skipped']})"
            )
            if 'error' in result:
                failed += 1
                line += f"  FAILED: {result['error']}"
            print(line)

        print(f"\nDone: {len(results) - failed} succeeded, {failed} failed")
        return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
