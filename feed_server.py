# Developed in Oct 2026.
# Purpose: Notification ingestion service. Devices post payment notifications to
# /webhook; the donation page and the matcher read them from /public/donations.

import os
import json
import time
import sqlite3
import argparse
from datetime import datetime, timezone
from flask import Flask, jsonify, request, g
from flask_cors import CORS

from schema_validation import validate_against_schema

# --- CONFIGURATION ---
PORT = 5020
HOST = "127.0.0.1"
DB_PATH = "feed_db/notifications.db"
API_KEY = os.environ.get("FEED_API_KEY", "")
START_TIME = time.time()

app = Flask(__name__)
CORS(app)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT NOT NULL,
    package_name TEXT NOT NULL,
    app_name TEXT,
    posted_at TEXT,
    title TEXT,
    text TEXT,
    sub_text TEXT,
    big_text TEXT,
    channel_id TEXT,
    notification_id INTEGER,
    amount_detected TEXT,
    extras TEXT,
    donor_name TEXT,
    donor_message TEXT,
    gif_url TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT UNIQUE NOT NULL,
    last_seen DATETIME DEFAULT CURRENT_TIMESTAMP,
    total_notifications INTEGER DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""

def now_iso():
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'

def init_db():
    """Creates the database file and tables if needed."""
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    with sqlite3.connect(DB_PATH) as conn:
        conn.executescript(SCHEMA_SQL)
    print(f"FEED_SERVER: [*] Database ready at {DB_PATH}")

def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(DB_PATH)
        g.db.row_factory = sqlite3.Row
    return g.db

@app.teardown_appcontext
def close_db(exc):
    db = g.pop("db", None)
    if db is not None:
        db.close()

def error_response(message, status):
    return jsonify({"success": False, "error": message}), status

def require_api_key():
    """Returns an error response when an API key is configured and the request lacks it."""
    if API_KEY and request.headers.get("x-api-key") != API_KEY:
        return error_response("Invalid or missing API key", 401)
    return None

def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default

def public_record(row):
    """Public fields of a notification plus any donor metadata attached to it."""
    record = {
        "id": row["id"],
        "app_name": row["app_name"],
        "title": row["title"],
        "text": row["text"],
        "amount_detected": row["amount_detected"],
        "created_at": row["created_at"],
    }
    if row["donor_name"]:
        record["donorName"] = row["donor_name"]
    if row["donor_message"]:
        record["message"] = row["donor_message"]
    if row["gif_url"]:
        record["gifUrl"] = row["gif_url"]
    return record

@app.route('/health', methods=['GET'])
def health():
    return jsonify({"status": "OK", "timestamp": now_iso(), "uptime": round(time.time() - START_TIME, 3)})

@app.route('/webhook', methods=['POST'])
def receive_webhook():
    """Stores a notification forwarded by a listening device."""
    denied = require_api_key()
    if denied:
        return denied

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get("deviceId") or not data.get("packageName"):
        return error_response("Missing required fields: deviceId, packageName", 400)
    if not validate_against_schema(data, "Notification", component="FEED_SERVER"):
        return error_response("Invalid notification payload", 400)

    amount = data.get("amountDetected")
    extras = data.get("extras")
    db = get_db()
    try:
        db.execute("""
            INSERT OR REPLACE INTO devices (device_id, last_seen, total_notifications, created_at)
            VALUES (?, ?,
                    COALESCE((SELECT total_notifications FROM devices WHERE device_id = ?) + 1, 1),
                    COALESCE((SELECT created_at FROM devices WHERE device_id = ?), CURRENT_TIMESTAMP))
        """, (data["deviceId"], now_iso(), data["deviceId"], data["deviceId"]))
        cur = db.execute("""
            INSERT INTO notifications (
                device_id, package_name, app_name, posted_at, title, text,
                sub_text, big_text, channel_id, notification_id, amount_detected, extras
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            data["deviceId"], data["packageName"], data.get("appName"), data.get("postedAt"),
            data.get("title"), data.get("text"), data.get("subText"), data.get("bigText"),
            data.get("channelId"), data.get("notificationId"),
            str(amount) if amount is not None else None,
            json.dumps(extras) if extras is not None else None,
        ))
        db.commit()
    except sqlite3.Error as e:
        print(f"FEED_SERVER: [!] Database error: {e}")
        return error_response("Database error", 500)

    text = data.get("text") or ""
    print(f"FEED_SERVER: [*] Notification {cur.lastrowid} from {data['deviceId']} ({data['packageName']}): "
          f"{text[:50]}{'...' if len(text) > 50 else ''} amount={amount}")
    return jsonify({
        "success": True,
        "message": "Notification received successfully",
        "id": cur.lastrowid,
        "timestamp": now_iso()
    })

@app.route('/notifications', methods=['GET'])
def list_notifications():
    denied = require_api_key()
    if denied:
        return denied

    query = "SELECT * FROM notifications"
    params = []
    device_id = request.args.get("device_id")
    if device_id:
        query += " WHERE device_id = ?"
        params.append(device_id)
    query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
    params += [_int_arg("limit", 100), _int_arg("offset", 0)]

    rows = [dict(row) for row in get_db().execute(query, params).fetchall()]
    return jsonify({"success": True, "data": rows, "count": len(rows)})

@app.route('/devices', methods=['GET'])
def list_devices():
    denied = require_api_key()
    if denied:
        return denied
    rows = [dict(row) for row in get_db().execute("SELECT * FROM devices ORDER BY last_seen DESC").fetchall()]
    return jsonify({"success": True, "data": rows, "count": len(rows)})

@app.route('/stats', methods=['GET'])
def stats():
    denied = require_api_key()
    if denied:
        return denied
    db = get_db()
    top_apps = db.execute("""
        SELECT package_name, app_name, COUNT(*) AS count FROM notifications
        GROUP BY package_name, app_name ORDER BY count DESC LIMIT 10
    """).fetchall()
    return jsonify({"success": True, "data": {
        "totalNotifications": db.execute("SELECT COUNT(*) FROM notifications").fetchone()[0],
        "totalDevices": db.execute("SELECT COUNT(*) FROM devices").fetchone()[0],
        "notificationsToday": db.execute(
            "SELECT COUNT(*) FROM notifications WHERE date(created_at) = date('now')").fetchone()[0],
        "topApps": [dict(row) for row in top_apps],
    }})

@app.route('/public/donations', methods=['GET'])
def public_donations():
    """Recent notifications that carry a detected amount, newest first."""
    rows = get_db().execute("""
        SELECT * FROM notifications
        WHERE amount_detected IS NOT NULL AND amount_detected != ''
        ORDER BY created_at DESC, id DESC
        LIMIT ?
    """, (_int_arg("limit", 10),)).fetchall()
    return jsonify({"success": True, "data": [public_record(row) for row in rows]})

@app.route('/public/donations', methods=['PUT'])
def update_donation_metadata():
    """Attaches donor name, message and GIF to an existing notification."""
    data = request.get_json(silent=True)
    if not data or not validate_against_schema(data, "MetadataUpdate", component="FEED_SERVER"):
        return error_response("Invalid metadata payload", 400)

    db = get_db()
    cur = db.execute("""
        UPDATE notifications SET donor_name = ?, donor_message = ?, gif_url = ? WHERE id = ?
    """, (data.get("donorName"), data.get("message"), data.get("gifUrl"), data["id"]))
    db.commit()
    if cur.rowcount == 0:
        return error_response("Donation not found", 404)

    print(f"FEED_SERVER: [*] Metadata attached to donation {data['id']}")
    return jsonify({"success": True, "id": data["id"]})

@app.errorhandler(404)
def not_found(e):
    return error_response("Endpoint not found", 404)

@app.errorhandler(405)
def method_not_allowed(e):
    return error_response("Method not allowed", 405)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Payment Notification Feed Server")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    parser.add_argument("--db", default=DB_PATH, help="SQLite database path")
    args = parser.parse_args()

    PORT = args.port
    DB_PATH = args.db

    init_db()
    print(f"FEED_SERVER: [*] Starting Feed Server at http://{HOST}:{PORT}...")
    print(f"FEED_SERVER: [*] API Key: {'Configured' if API_KEY else 'Not configured (set FEED_API_KEY)'}")
    app.run(host=HOST, port=PORT, debug=False, use_reloader=False)
