#!/usr/bin/env python
# /// script
# requires-python = ">=3.8"
# dependencies = [
#   "aiohttp[speedups]>=3.9.0",
#   "beautifulsoup4>=4.11.0",
#   "lxml>=4.9.0",
#   "cryptography>=41.0.0",
#   "tqdm>=4.65.0",
#   "PyYAML>=6.0",
#   "python-dotenv>=1.0.0",
# ]
# ///
import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from tqdm.asyncio import tqdm_asyncio

# Load environment variables from .env file before LOGLEVEL is read
load_dotenv()

from novelpull.models import (
    log, AcquisitionOptions, ExhaustionPolicy, BATCH_SIZE,
    RATE_LIMIT_DELAY, RATE_LIMIT_MAX_ATTEMPTS, chapter_to_dict, listing_to_dict, parse_chapter_spec
)
from novelpull.errors import NovelPullError, BatchExhaustedError
from novelpull.core.session import get_session, HttpClient
from novelpull.core.profiles import ProfileManager
from novelpull.core.job import AcquisitionJob

def default_concurrency() -> int:
    try:
        return max(1, int(os.getenv("NOVELPULL_CONCURRENCY", "4")))
    except ValueError:
        return 4

def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Fetch ordered chapter lists (and chapter text) from novel sites")
    parser.add_argument("url", help="Novel landing page URL")
    parser.add_argument("-o", "--output", help="Write JSON here instead of stdout")
    parser.add_argument("--decode", action="store_true", help="Also download and decode chapter bodies")
    parser.add_argument("--chapters", help="Chapter orders to decode (e.g. '1-5,8')")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel chapter downloads")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="Pages fetched per batch")
    parser.add_argument("--retry-delay", type=float, default=RATE_LIMIT_DELAY, help="Seconds to wait when rate limited")
    parser.add_argument("--max-attempts", type=int, default=RATE_LIMIT_MAX_ATTEMPTS, help="Attempts per rate-limited request")
    parser.add_argument("--retain-partial", action="store_true", help="Keep a partial chapter list when retries run out")
    return parser.parse_args(argv)

async def run(args) -> Dict[str, Any]:
    options = AcquisitionOptions(
        batch_size=args.batch_size,
        max_attempts=args.max_attempts,
        retry_delay=args.retry_delay,
        exhaustion_policy=ExhaustionPolicy.RETAIN if args.retain_partial else ExhaustionPolicy.DISCARD,
        decode_concurrency=args.concurrency or default_concurrency(),
    )
    profile = ProfileManager.get_instance().get_profile(args.url)

    async with get_session() as session:
        client = HttpClient(session, headers=profile.headers if profile else None)
        job = AcquisitionJob(client, options=options, profile=profile)
        listing = await job.acquire(args.url)
        output = listing_to_dict(listing)
        log.info(f"'{listing.identifier.title}': {len(listing.chapters)} chapters via {listing.strategy}")

        if args.decode:
            wanted = parse_chapter_spec(args.chapters)
            chapters = [c for c in listing.chapters if wanted is None or c.order in wanted]
            results = await job.decode_chapters(
                chapters, gather=lambda *aws: tqdm_asyncio.gather(*aws, desc="Decoding chapters"))
            bodies = []
            for chapter, result in results:
                entry = chapter_to_dict(chapter)
                entry["status"] = result.kind.value
                if result.is_ok:
                    entry["paragraphs"] = list(result.value.paragraphs)
                    entry["html"] = result.value.html
                else:
                    entry["error"] = result.message
                bodies.append(entry)
            failed = sum(1 for _, r in results if not r.is_ok)
            if failed:
                log.warning(f"{failed} of {len(results)} chapters failed to decode")
            output["contents"] = bodies
    return output

async def async_main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        output = await run(args)
    except BatchExhaustedError as e:
        log.error(f"{e} ({len(e.partial)} chapters fetched before giving up; use --retain-partial to keep them)")
        return 2
    except NovelPullError as e:
        log.error(str(e))
        return 1

    text = json.dumps(output, ensure_ascii=False, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        log.info(f"Wrote {args.output}")
    else:
        print(text)
    return 0

def main():
    sys.exit(asyncio.run(async_main()))

if __name__ == "__main__":
    main()
