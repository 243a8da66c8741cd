# Developed in Oct 2026.
# Purpose: Poll the notification feed and pair incoming payments with the open
# donation session by amount and time window.
# Matching is heuristic and best-effort; two matchers sharing one store may both
# report the same payment.

import re
import time
import queue
import argparse
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone, timedelta
from typing import Optional

import requests

import donation_store
from donation_store import Session, parse_timestamp
from schema_validation import validate_against_schema

# --- CONFIGURATION ---
FEED_URL = "http://127.0.0.1:5020"
POLL_INTERVAL = 5
FEED_LIMIT = 10
REQUEST_TIMEOUT = 10
CLOCK_SKEW_TOLERANCE = timedelta(seconds=300)
# Lower-cased prefixes of "payment received" notifications.
DONATION_PREFIXES = ("kamu berhasil menerima",)

ENRICHMENT_FIELDS = ("donorName", "message", "gifUrl")

@dataclass(frozen=True)
class MatcherState:
    """Watermark and active session, threaded through every evaluation."""
    last_seen_id: int = 0
    session: Optional[Session] = None

@dataclass(frozen=True)
class PersistResult:
    record_id: int
    ok: bool
    error: Optional[str] = None

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

def parse_amount(value):
    """Reads the leading integer of an amount string; anything unreadable counts as 0."""
    if value is None:
        return 0
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0

def record_id(record):
    """Returns the integer id of a feed record, or None when it is missing or unreadable."""
    try:
        return int(record["id"])
    except (KeyError, TypeError, ValueError):
        return None

def is_donation(record, prefixes=DONATION_PREFIXES):
    if not isinstance(record, dict):
        return False
    text = record.get("text") or ""
    return text.lower().startswith(tuple(prefixes))

def filter_donations(records, prefixes=DONATION_PREFIXES):
    kept = []
    for r in records:
        if not is_donation(r, prefixes):
            continue
        if record_id(r) is None:
            print(f"MATCHER: [!] Skipping feed record without a usable id: {r.get('id')!r}")
            continue
        kept.append(r)
    return kept

def sort_newest_first(records):
    return sorted(records, key=lambda r: int(r["id"]), reverse=True)

def merge_metadata(records, metadata):
    """Overlays cached donor details onto the records they belong to."""
    merged = []
    for record in records:
        extra = metadata.get(int(record["id"]))
        merged.append({**record, **extra} if extra else record)
    return merged

def prepare_feed(records, metadata, prefixes=DONATION_PREFIXES):
    """Filters noise, sorts newest first and merges cached metadata."""
    return merge_metadata(sort_newest_first(filter_donations(records, prefixes)), metadata)

def amount_matches(record, session):
    return parse_amount(record.get("amount_detected")) == session.amount

def time_matches(record, session):
    """True when the record falls between 5 minutes before generation and the expiry."""
    try:
        created_at = parse_timestamp(record["created_at"])
    except (KeyError, TypeError, ValueError):
        return False
    return created_at < session.expires_at and (created_at - session.generated_at) > -CLOCK_SKEW_TOLERANCE

def enrich(record, session):
    return {
        **record,
        "donorName": session.donor_name,
        "message": session.donor_message,
        "gifUrl": session.gif_url,
    }

def evaluate_feed(state, records, now, scan_all=True):
    """
    Evaluates a prepared feed (newest first) against the state.

    Returns (new_state, match). With scan_all every record above the watermark is
    checked in ascending id order and the first amount and time match wins;
    otherwise only the newest record is checked. The first observation after
    startup only sets the watermark.
    """
    if not records:
        return state, None

    latest = records[0]
    latest_id = int(latest["id"])
    session = state.session

    if session is None or not session.is_active(now):
        if state.last_seen_id == 0:
            print(f"MATCHER: [*] Baseline set to record {latest_id}")
            return replace(state, last_seen_id=latest_id), None
        return state, None

    if state.last_seen_id == 0:
        print(f"MATCHER: [*] First observation, baseline set to record {latest_id}")
        return replace(state, last_seen_id=latest_id), None

    if scan_all:
        candidates = [r for r in reversed(records) if int(r["id"]) > state.last_seen_id]
    else:
        candidates = [latest] if latest_id > state.last_seen_id else []

    for record in candidates:
        amount_ok = amount_matches(record, session)
        time_ok = time_matches(record, session)
        print(f"MATCHER: [DEBUG] Record {record['id']}: amount {parse_amount(record.get('amount_detected'))} "
              f"vs {session.amount} -> {amount_ok}, time -> {time_ok}")
        if amount_ok and time_ok:
            return MatcherState(last_seen_id=latest_id, session=None), enrich(record, session)

    if latest_id > state.last_seen_id:
        print(f"MATCHER: [*] No match, watermark advanced to {latest_id}")
        return replace(state, last_seen_id=latest_id), None
    return state, None

def fetch_donations(feed_url=FEED_URL, limit=FEED_LIMIT, timeout=REQUEST_TIMEOUT):
    """Returns the newest feed records; raises on transport or payload errors."""
    resp = requests.get(f"{feed_url}/public/donations", params={"limit": limit}, timeout=timeout)
    resp.raise_for_status()
    body = resp.json()
    if not validate_against_schema(body, "DonationFeed", component="MATCHER"):
        raise ValueError("Feed payload failed schema validation")
    if not body.get("success"):
        raise ValueError(f"Feed reported failure: {body.get('error', 'unknown error')}")
    return body.get("data") or []

class MetadataPersister:
    """Sends donor metadata to the feed in background threads and reports results on a queue."""

    def __init__(self, feed_url=FEED_URL, timeout=REQUEST_TIMEOUT):
        self.feed_url = feed_url
        self.timeout = timeout
        self.results = queue.Queue()

    def submit(self, record_id, donor_name=None, message=None, gif_url=None):
        payload = {"id": int(record_id), "donorName": donor_name, "message": message, "gifUrl": gif_url}
        thread = threading.Thread(target=self._persist, args=(payload,), daemon=True)
        thread.start()
        return thread

    def _persist(self, payload):
        try:
            resp = requests.put(f"{self.feed_url}/public/donations", json=payload, timeout=self.timeout)
            resp.raise_for_status()
            self.results.put(PersistResult(payload["id"], True))
        except requests.RequestException as e:
            self.results.put(PersistResult(payload["id"], False, str(e)))

    def drain(self):
        """Logs and returns every result reported since the last call."""
        drained = []
        while True:
            try:
                result = self.results.get_nowait()
            except queue.Empty:
                break
            if result.ok:
                print(f"MATCHER: [OK] Metadata persisted for record {result.record_id}")
            else:
                print(f"MATCHER: [!] Failed to persist metadata for record {result.record_id}: {result.error}")
            drained.append(result)
        return drained

class DonationMatcher:
    """Runs the poll loop against the feed and the durable store."""

    def __init__(self, feed_url=FEED_URL, db_dir=donation_store.DB_DIR, limit=FEED_LIMIT,
                 scan_all=True, prefixes=DONATION_PREFIXES, fetch=None, persister=None):
        self.db_dir = db_dir
        self.scan_all = scan_all
        self.prefixes = prefixes
        self.fetch = fetch or (lambda: fetch_donations(feed_url, limit))
        self.persister = persister or MetadataPersister(feed_url)
        self.state = MatcherState()

    def tick(self, now=None):
        """Runs one poll. Returns the enriched record when a donation was matched."""
        self.persister.drain()
        try:
            raw_records = self.fetch()
        except (requests.RequestException, ValueError) as e:
            print(f"MATCHER: [!] Failed to fetch donations: {e}")
            return None

        records = prepare_feed(raw_records, donation_store.load_metadata(self.db_dir), self.prefixes)
        session = donation_store.load_session(self.db_dir)
        state = replace(self.state, session=session)
        self.state, match = evaluate_feed(state, records, now or datetime.now(timezone.utc), self.scan_all)

        if match:
            self._on_match(match, session)
        return match

    def _on_match(self, match, session):
        print(f"MATCHER: [OK] Donation {match['id']} matched session for {session.amount}")
        if session.has_donor_metadata():
            entry = {k: match[k] for k in ENRICHMENT_FIELDS if match.get(k)}
            donation_store.save_metadata_entry(match["id"], entry, self.db_dir)
            self.persister.submit(match["id"], session.donor_name, session.donor_message, session.gif_url)

        # A newer session may have replaced the matched one since this tick read it.
        if donation_store.load_session(self.db_dir) == session:
            donation_store.clear_session(self.db_dir)
        donation_store.save_last_match(match, self.db_dir)

    def run(self, interval=POLL_INTERVAL, max_ticks=None):
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            self.tick()
            ticks += 1
            if max_ticks is None or ticks < max_ticks:
                time.sleep(interval)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="QRIS Donation Matcher")
    parser.add_argument("--feed", default=FEED_URL, help="Base URL of the notification feed")
    parser.add_argument("--interval", type=float, default=POLL_INTERVAL, help="Seconds between polls")
    parser.add_argument("--limit", type=int, default=FEED_LIMIT, help="Records fetched per poll")
    parser.add_argument("--store", default=donation_store.DB_DIR, help="Store directory")
    parser.add_argument("--latest-only", action="store_true", help="Only evaluate the newest record on each poll.")
    parser.add_argument("--once", action="store_true", help="Run a single poll and exit.")
    args = parser.parse_args()

    matcher = DonationMatcher(feed_url=args.feed, db_dir=args.store, limit=args.limit, scan_all=not args.latest_only)
    print(f"MATCHER: [*] Polling {args.feed} every {args.interval}s...")
    try:
        matcher.run(interval=args.interval, max_ticks=1 if args.once else None)
    except KeyboardInterrupt:
        print("\nMATCHER: [*] Stopped.")
    finally:
        matcher.persister.drain()
