# Developed in Oct 2026.
# Purpose: File-backed key-value store for the merchant payload, the active donation
# session, the donor metadata cache and the last confirmed match.

import os
import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone, timedelta
from typing import Optional

# --- CONFIGURATION ---
DB_DIR = "donation_db"
CONFIG_FILE = "config.json"
SESSION_FILE = "session.json"
METADATA_FILE = "metadata.json"
LAST_MATCH_FILE = "last_match.json"
SESSION_TTL = timedelta(minutes=10)

def format_timestamp(dt):
    """Formats a datetime as ISO-8601 UTC with millisecond precision."""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'

def parse_timestamp(value):
    """
    Parses ISO-8601 timestamps and the 'YYYY-MM-DD HH:MM:SS' form SQLite produces.
    Timestamps without an offset are taken as UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text.replace(" ", "T", 1))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

@dataclass(frozen=True)
class Session:
    """An open donation request waiting for a matching payment notification."""
    amount: int
    generated_at: datetime
    expires_at: datetime
    donor_name: Optional[str] = None
    donor_message: Optional[str] = None
    gif_url: Optional[str] = None

    def is_active(self, now):
        return now < self.expires_at

    def has_donor_metadata(self):
        return bool(self.donor_name or self.donor_message or self.gif_url)

    def to_dict(self):
        data = {
            "amount": self.amount,
            "generatedAt": format_timestamp(self.generated_at),
            "expiresAt": format_timestamp(self.expires_at),
        }
        if self.donor_name:
            data["donorName"] = self.donor_name
        if self.donor_message:
            data["donorMessage"] = self.donor_message
        if self.gif_url:
            data["gifUrl"] = self.gif_url
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            amount=int(data["amount"]),
            generated_at=parse_timestamp(data["generatedAt"]),
            expires_at=parse_timestamp(data["expiresAt"]),
            donor_name=data.get("donorName") or None,
            donor_message=data.get("donorMessage") or None,
            gif_url=data.get("gifUrl") or None,
        )

def create_session(amount, donor_name=None, donor_message=None, gif_url=None, now=None):
    generated_at = now or datetime.now(timezone.utc)
    return Session(
        amount=amount,
        generated_at=generated_at,
        expires_at=generated_at + SESSION_TTL,
        donor_name=donor_name or None,
        donor_message=donor_message or None,
        gif_url=gif_url or None,
    )

# --- FILE HELPERS ---
def _path(db_dir, filename):
    return os.path.join(db_dir, filename)

def _read_json(path):
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return json.load(f)

def _write_json(path, data):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=4)
    os.replace(tmp_path, path)

# --- MERCHANT CONFIGURATION ---
def load_config(db_dir=DB_DIR):
    """Returns the saved merchant config ({"rawString": ...}) or None."""
    try:
        config = _read_json(_path(db_dir, CONFIG_FILE))
    except json.JSONDecodeError:
        print(f"STORE: [!] {CONFIG_FILE} is corrupt, ignoring it.")
        return None
    if not isinstance(config, dict) or not config.get("rawString"):
        return None
    return config

def save_config(config, db_dir=DB_DIR):
    _write_json(_path(db_dir, CONFIG_FILE), config)

# --- SESSION ---
def load_session(db_dir=DB_DIR):
    try:
        data = _read_json(_path(db_dir, SESSION_FILE))
        return Session.from_dict(data) if data else None
    except (json.JSONDecodeError, KeyError, ValueError) as e:
        print(f"STORE: [!] Discarding unreadable session: {e}")
        return None

def save_session(session, db_dir=DB_DIR):
    """Stores the session, superseding any previous one."""
    _write_json(_path(db_dir, SESSION_FILE), session.to_dict())

def clear_session(db_dir=DB_DIR):
    path = _path(db_dir, SESSION_FILE)
    if os.path.exists(path):
        os.remove(path)

# --- DONOR METADATA CACHE ---
def load_metadata(db_dir=DB_DIR):
    """Returns the {record id -> enrichment} cache with integer keys."""
    try:
        data = _read_json(_path(db_dir, METADATA_FILE)) or {}
    except json.JSONDecodeError:
        print(f"STORE: [!] {METADATA_FILE} is corrupt, starting with an empty cache.")
        return {}
    return {int(k): v for k, v in data.items()}

def save_metadata_entry(record_id, entry, db_dir=DB_DIR):
    metadata = load_metadata(db_dir)
    metadata[int(record_id)] = entry
    _write_json(_path(db_dir, METADATA_FILE), {str(k): v for k, v in metadata.items()})

# --- LAST MATCH ---
def load_last_match(db_dir=DB_DIR):
    try:
        return _read_json(_path(db_dir, LAST_MATCH_FILE))
    except json.JSONDecodeError:
        return None

def save_last_match(record, db_dir=DB_DIR):
    _write_json(_path(db_dir, LAST_MATCH_FILE), record)
