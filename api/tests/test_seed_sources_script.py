from __future__ import annotations

import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "seed_sources.py"


def _run_script(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=check,
        capture_output=True,
        text=True,
    )


def test_seed_script_emits_idle_upsert_for_each_url() -> None:
    output = _run_script(
        "--type",
        "events",
        "https://b.example.org/calendar",
        "https://a.example.org/events",
    ).stdout

    assert "insert into crawl_sources (source_url, source_type, crawl_status)" in output
    assert "on conflict (source_url, source_type) do nothing;" in output
    first = output.index("'https://a.example.org/events', 'events', 'idle'")
    second = output.index("'https://b.example.org/calendar', 'events', 'idle'")
    assert first < second


def test_seed_script_is_deterministic_and_deduplicates() -> None:
    once = _run_script("--type", "places", "https://parks.example.org").stdout
    twice = _run_script("--type", "places", "https://parks.example.org", "https://parks.example.org").stdout

    assert once == twice
    assert once.count("https://parks.example.org") == 1


def test_seed_script_escapes_quotes() -> None:
    output = _run_script("--type", "places", "https://example.org/kid's-corner").stdout

    assert "'https://example.org/kid''s-corner'" in output


def test_seed_script_rejects_relative_urls() -> None:
    completed = _run_script("--type", "events", "/relative/path", check=False)

    assert completed.returncode == 2
    assert "not an absolute http(s) URL" in completed.stderr
