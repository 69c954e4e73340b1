#!/usr/bin/env python3
import argparse
import datetime
import json
import os
import sys

import appdirs

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tlecache.cache import CacheStore, NoOpCacheStore  # noqa: E402
from tlecache.celestrak_client import CelesTrakClient  # noqa: E402
from tlecache.errors import TLEError  # noqa: E402
from tlecache.policy import CachePolicy, RefreshScheduler  # noqa: E402
from tlecache.presenter import TLEPresenter  # noqa: E402
from tlecache.repository import TLERepository  # noqa: E402
from tlecache.storage import LocalFileStorage, S3Storage  # noqa: E402
from tlecache.utils import parse_utc, say, utcnow  # noqa: E402

LAST_SCHEDULED_FILE = 'last_scheduled.json'


def load_last_scheduled(storage):
    raw = storage.get(LAST_SCHEDULED_FILE)
    if raw is None:
        return None
    try:
        return parse_utc(json.loads(raw)['lastScheduledAt'])
    except (ValueError, KeyError, TypeError):
        return None


def store_last_scheduled(storage, when):
    storage.put(LAST_SCHEDULED_FILE, json.dumps({'lastScheduledAt': when.isoformat()}).encode())


def schedule(storage, cache_store, query_key, policy):
    record = cache_store.load(query_key)
    fetched_at = record.metadata.fetched_at if record else None
    now = utcnow()

    decision = RefreshScheduler().decision(
        fetched_at, load_last_scheduled(storage), now, policy)
    if decision.should_schedule:
        store_last_scheduled(storage, now)
    return decision


def main():
    parser = argparse.ArgumentParser(description='Fetch and cache CelesTrak TLEs')
    parser.add_argument(
        '-q', '--query',
        help='Satellite name filter (default: SPACEMOBILE)',
        type=str,
        default='SPACEMOBILE',
    )
    parser.add_argument(
        '-r', '--refresh',
        help='Ignore cache freshness and hit the network first',
        action='store_true',
    )
    parser.add_argument(
        '-j', '--json',
        help='Print records as JSON instead of a table',
        action='store_true',
    )
    parser.add_argument(
        '-b', '--bucket',
        help='Cache in this S3 bucket instead of the local cache directory',
        type=str,
    )
    parser.add_argument(
        '--no-cache',
        help='Do not read or write the cache',
        action='store_true',
    )
    parser.add_argument(
        '-s', '--schedule',
        help='Print whether a background refresh should be scheduled',
        action='store_true',
    )
    parser.add_argument(
        '--stale-hours',
        help='Hours after which cached data is refreshed (default: 6)',
        type=float,
        default=6.0,
    )
    args = parser.parse_args()

    if args.no_cache and args.bucket:
        parser.error('--no-cache and --bucket are mutually exclusive')

    if args.bucket:
        storage = S3Storage(args.bucket)
    else:
        storage = LocalFileStorage(appdirs.user_cache_dir("tle_cache"))
    cache_store = NoOpCacheStore() if args.no_cache else CacheStore(storage)

    policy = CachePolicy(stale_after=datetime.timedelta(hours=args.stale_hours))

    if args.schedule:
        decision = schedule(storage, cache_store, args.query, policy)
        print(json.dumps(TLEPresenter.decision_to_dict(decision)))
        return

    repository = TLERepository(CelesTrakClient(), cache_store, policy=policy)
    try:
        if args.refresh:
            result = repository.refresh_tles(args.query)
        else:
            result = repository.get_tles(args.query)
    except TLEError as e:
        say(f'Error: {e}')
        sys.exit(1)
    finally:
        repository.close()

    if args.json:
        print(json.dumps(TLEPresenter.to_dict(args.query, result), indent=2))
    else:
        print(TLEPresenter.format_table(args.query, result))


if __name__ == '__main__':
    main()
