import argparse
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import config
import connection
import exports
from challenge_cache import ChallengeCache
from helium_api import HeliumClient, HeliumApiError
from hotspot_directory import HotspotDirectory, UnknownHotspotError, NameCollisionError
from witness_analytics import WitnessAnalytics


TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

logger = logging.getLogger("helium_analysis")


class RunContext:
    def __init__(self, args):
        self.args = args
        self.engine = connection.connect(args.db)
        self.client = HeliumClient()
        self.directory = HotspotDirectory(self.engine)
        self.cache = ChallengeCache(self.engine, self.client)
        self.analytics = WitnessAnalytics(self.directory)

    def resolve(self, identifier: str) -> str:
        return self.directory.resolve(identifier)


def parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"Invalid date {value}, expected YYYY-MM-DD")


def window(days: int, now: datetime):
    """start of the day `days` ago through now"""
    start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, now


def format_time(seconds: int, local: bool = False) -> str:
    t = datetime.fromtimestamp(seconds, tz=timezone.utc)
    if local:
        t = t.astimezone()
    return t.strftime(TIME_FORMAT)


# --- Challenges Commands ---
def cmd_challenges_refresh(ctx: RunContext):
    args = ctx.args
    address = ctx.resolve(args.address)
    first, last = window(args.days, datetime.now(timezone.utc))
    written = ctx.cache.reconcile(address, first, last, timedelta(hours=args.buffer))
    print(f"Stored {written} new challenges for {address}")


def cmd_challenges_export(ctx: RunContext):
    args = ctx.args
    address = ctx.resolve(args.address)
    challenges = ctx.cache.query(address, 0, datetime.now(timezone.utc))
    logger.info("Retrieved %d challenges", len(challenges))
    if not challenges:
        return
    exports.write_json(challenges, args.file)


def cmd_challenges_import(ctx: RunContext):
    args = ctx.args
    address = ctx.resolve(args.address)
    written = ctx.cache.import_records(address, exports.load_challenges(args.file))
    print(f"Imported {written} challenges for {address}")


def cmd_challenges_delete(ctx: RunContext):
    args = ctx.args
    address = ctx.resolve(args.address)
    if args.before:
        deleted = ctx.cache.delete_range(address, before=parse_date(args.before))
    else:
        deleted = ctx.cache.delete_range(address, after=parse_date(args.after))
    print(f"Deleted {deleted} challenges for {address}")


def cmd_challenges_delete_all(ctx: RunContext):
    address = ctx.resolve(ctx.args.address)
    deleted = ctx.cache.delete_all(address)
    print(f"Deleted {deleted} challenges for {address}")


def cmd_challenges_list(ctx: RunContext):
    summaries = ctx.cache.summaries()
    if not summaries:
        print("No challenges cached.")
        return

    print(f"{'Name':<30} {'Address':<52} {'Records':>8} {'First':<20} {'Last':<20}")
    print("-" * 134)
    for s in summaries:
        print(f"{s.name or '':<30} {s.address:<52} {s.records:>8} {format_time(s.first, ctx.args.localtime):<20} {format_time(s.last, ctx.args.localtime):<20}")


# --- Hotspots Commands ---
def cmd_hotspots_refresh(ctx: RunContext):
    if ctx.directory.refresh(ctx.client, force=ctx.args.force):
        print(f"Hotspot directory refreshed at height {ctx.directory.height()}")
    else:
        print("Hotspot directory is current.")


def cmd_hotspots_export(ctx: RunContext):
    exports.write_json(ctx.directory.all(), ctx.args.output)


def cmd_hotspots_import(ctx: RunContext):
    count = ctx.directory.set_all(exports.load_hotspots(ctx.args.file))
    print(f"Imported {count} hotspots")


def cmd_names_export(ctx: RunContext):
    exports.write_json(ctx.directory.names(), ctx.args.output)


# --- Analysis ---
def cmd_peers(ctx: RunContext):
    args = ctx.args
    try:
        ctx.directory.refresh(ctx.client)
    except HeliumApiError as e:
        logger.warning("Unable to refresh hotspots, using cached directory: %s", e)

    address = ctx.resolve(args.address)
    first, last = window(args.days, datetime.now(timezone.utc))
    try:
        ctx.cache.reconcile(address, first, last, timedelta(hours=args.buffer))
    except HeliumApiError as e:
        logger.warning("Unable to refresh challenges, using cached data: %s", e)

    challenges = ctx.cache.query(address, first, last)
    if len(challenges) < args.min:
        raise ValueError(f"Only {len(challenges)} challenges available")

    output = args.output or ctx.directory.name_of(address)
    os.makedirs(output, exist_ok=True)

    for report in ctx.analytics.peer_reports(address, challenges, args.min):
        filename = os.path.join(output, f"{report.witness_name or report.witness}.json")
        exports.write_json(report, filename)
        logger.info("Created %s with %d data points", filename, report.series.data_points)

    beacons = ctx.analytics.beacon_validity_counts(address, challenges)
    if len(beacons) >= args.min:
        exports.write_json(beacons, os.path.join(output, "beacon-totals.json"))
    else:
        logger.warning("Only %d beacons with witnesses available", len(beacons))

    distances = ctx.analytics.witness_distances(address, challenges)
    if distances.data_points >= args.min:
        exports.write_json(distances, os.path.join(output, "witness-distance.json"))
    else:
        logger.warning("Only %d witness distance datapoints available", distances.data_points)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="helium-analysis", description="Helium hotspot challenge cache and peer analysis")
    parser.add_argument("--db", default=config.HELIUM_DB_PATH, help="Database file")
    parser.add_argument("--debug", action="store_true", help="Enable debugging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # challenges
    challenges = subparsers.add_parser("challenges", help="Manage cached challenges")
    challenges_sub = challenges.add_subparsers(dest="subcommand", required=True)

    p = challenges_sub.add_parser("refresh", help="Refresh challenges in database for given hotspot")
    p.add_argument("address", help="Hotspot name or address to refresh")
    p.add_argument("-d", "--days", type=int, default=config.DEFAULT_DAYS, help="Previous number of days to load")
    p.add_argument("-b", "--buffer", type=int, default=config.DEFAULT_BUFFER_HOURS, help="Challenge buffer in hours")
    p.set_defaults(func=cmd_challenges_refresh)

    p = challenges_sub.add_parser("export", help="Export challenges from the database for given hotspot to JSON")
    p.add_argument("address", help="Hotspot name or address to export")
    p.add_argument("-f", "--file", default=exports.STDOUT, help="Output file for export")
    p.set_defaults(func=cmd_challenges_export)

    p = challenges_sub.add_parser("import", help="Import challenges into the database for given hotspot from JSON")
    p.add_argument("address", help="Hotspot name or address to import")
    p.add_argument("-f", "--file", required=True, help="Input JSON file to import")
    p.set_defaults(func=cmd_challenges_import)

    p = challenges_sub.add_parser("delete", help="Delete specified challenges in database for given hotspot")
    p.add_argument("address", help="Hotspot name or address to delete")
    mode = p.add_mutually_exclusive_group(required=True)
    mode.add_argument("-b", "--before", help="Delete data before YYYY-MM-DD")
    mode.add_argument("-a", "--after", help="Delete data after YYYY-MM-DD")
    p.set_defaults(func=cmd_challenges_delete)

    p = challenges_sub.add_parser("delete-all", help="Delete all challenges in database for given hotspot")
    p.add_argument("address", help="Hotspot name or address to delete")
    p.set_defaults(func=cmd_challenges_delete_all)

    p = challenges_sub.add_parser("list", help="List all the hotspots we have challenges for")
    p.add_argument("--localtime", action="store_true", help="Display in local time instead of UTC")
    p.set_defaults(func=cmd_challenges_list)

    # hotspots
    hotspots = subparsers.add_parser("hotspots", help="Manage the hotspot directory")
    hotspots_sub = hotspots.add_subparsers(dest="subcommand", required=True)

    p = hotspots_sub.add_parser("refresh", help="Reload hotspots from the API if the directory is stale")
    p.add_argument("--force", action="store_true", help="Reload even if the directory is current")
    p.set_defaults(func=cmd_hotspots_refresh)

    p = hotspots_sub.add_parser("export", help="Export hotspots as JSON")
    p.add_argument("-o", "--output", default=exports.STDOUT, help="Output file for export")
    p.set_defaults(func=cmd_hotspots_export)

    p = hotspots_sub.add_parser("import", help="Import hotspots from JSON")
    p.add_argument("-f", "--file", required=True, help="Input JSON file to import")
    p.set_defaults(func=cmd_hotspots_import)

    # names
    names = subparsers.add_parser("names", help="Hotspot name mappings")
    names_sub = names.add_subparsers(dest="subcommand", required=True)
    p = names_sub.add_parser("export", help="Export name to address map as JSON")
    p.add_argument("-o", "--output", default=exports.STDOUT, help="Output file for export")
    p.set_defaults(func=cmd_names_export)

    # peers
    p = subparsers.add_parser("peers", help="Generate per-peer witness reports for a hotspot")
    p.add_argument("address", help="Hotspot name or address to report on")
    p.add_argument("-d", "--days", type=int, default=config.DEFAULT_DAYS, help="Set starting point in days")
    p.add_argument("-b", "--buffer", type=int, default=config.DEFAULT_BUFFER_HOURS, help="Challenge buffer in hours")
    p.add_argument("-m", "--min", type=int, default=config.DEFAULT_MIN_SAMPLES, help="Minimum challenges required to report")
    p.add_argument("-o", "--output", help="Output directory, defaults to the hotspot name")
    p.set_defaults(func=cmd_peers)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s'
    )

    if getattr(args, "min", 2) < 2:
        parser.error("Please specify a --min value >= 2")

    try:
        ctx = RunContext(args)
        args.func(ctx)
    except connection.SchemaVersionError as e:
        logger.critical("%s", e)
        sys.exit(1)
    except (HeliumApiError, UnknownHotspotError, NameCollisionError, ValueError, ConnectionError) as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
