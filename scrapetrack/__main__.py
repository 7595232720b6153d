import argparse
import asyncio
import json
import logging
import sys

try:
    import uvloop
except ImportError:
    pass
else:
    uvloop.install()

from . import tracker
from .infohash import InfoHash, InfoHashError


def format_human(info_hashes, scrapes):
    lines = []
    for info_hash in info_hashes:
        scrape = scrapes.get(info_hash)
        if scrape is None:
            lines.append(f"{info_hash}: --- not tracked ---")
            continue
        lines.append(f"{info_hash}:")
        lines.append(f"  Complete/Seeders: {scrape.complete}")
        lines.append(f"  Incomplete/Leechers: {scrape.incomplete}")
        lines.append(f"  Downloaded: {scrape.downloaded}")
        lines.append("")
    return lines


def format_json(info_hashes, scrapes):
    lines = []
    for info_hash in info_hashes:
        scrape = scrapes.get(info_hash)
        if scrape is None:
            d = {"info_hash": str(info_hash), "tracked": False}
        else:
            d = {
                "info_hash": str(info_hash),
                "complete": scrape.complete,
                "incomplete": scrape.incomplete,
                "downloaded": scrape.downloaded,
            }
        lines.append(json.dumps(d))
    return lines


def _tracker(s):
    try:
        return tracker.parse(s)
    except tracker.errors.TrackerURLError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _info_hash(s):
    try:
        return InfoHash.from_hex(s)
    except InfoHashError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="scrapetrack",
        description="Query a BitTorrent tracker for swarm statistics.",
    )
    parser.add_argument("tracker", help="HTTP(S) or UDP tracker URL.", type=_tracker, metavar="<tracker>")
    parser.add_argument("info_hashes", help="Hex-encoded info hashes.", type=_info_hash, nargs="+", metavar="<info-hash>")
    parser.add_argument("--json", help="Print one JSON object per line.", action="store_true")
    parser.add_argument("--timeout", help="Overall timeout, in seconds.", type=float, default=tracker.TIMEOUT, metavar="<seconds>")
    parser.add_argument("--debug", help="Enable logging.", action="store_true")
    args = parser.parse_args(argv)
    if len(args.info_hashes) > tracker.MAX_INFO_HASHES:
        parser.error(f"at most {tracker.MAX_INFO_HASHES} info hashes are allowed")
    return args


def main(args):
    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s,%(msecs)03d %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    try:
        scrapes = asyncio.run(
            tracker.scrape(args.tracker, args.info_hashes, timeout=args.timeout)
        )
    except tracker.errors.TrackerError as exc:
        message = str(exc)
        if exc.__cause__ is not None:
            message += f" ({exc.__cause__})"
        print(f"scrapetrack: {message}", file=sys.stderr)
        return 1
    format_lines = format_json if args.json else format_human
    for line in format_lines(args.info_hashes, scrapes):
        print(line)
    return 0


def run():
    try:
        sys.exit(main(parse_args()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
