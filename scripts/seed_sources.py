#!/usr/bin/env python3
"""Emit deterministic SQL that registers crawl sources in the idle state."""

from __future__ import annotations

import argparse
from urllib.parse import urlparse

CRAWL_TYPES = ("events", "places")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _validate_url(url: str) -> str:
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise argparse.ArgumentTypeError(f"not an absolute http(s) URL: {url!r}")
    return candidate


def render_sql(*, sources: list[tuple[str, str]]) -> str:
    # Sorted and de-duplicated so repeated runs emit identical SQL.
    unique_sources = sorted(set(sources))
    values = ",\n".join(
        f"  ({_quote_sql(url)}, {_quote_sql(crawl_type)}, 'idle')" for url, crawl_type in unique_sources
    )
    return f"""-- Crawl source seed SQL
-- Existing rows keep their crawl status; only missing (url, type) pairs are added.

insert into crawl_sources (source_url, source_type, crawl_status)
values
{values}
on conflict (source_url, source_type) do nothing;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register crawl sources.")
    parser.add_argument(
        "--type",
        dest="crawl_type",
        choices=CRAWL_TYPES,
        required=True,
        help="Crawl type applied to every URL",
    )
    parser.add_argument("urls", nargs="+", type=_validate_url, help="Absolute http(s) URLs to register")
    args = parser.parse_args()

    print(render_sql(sources=[(url, args.crawl_type) for url in args.urls]))


if __name__ == "__main__":
    main()
