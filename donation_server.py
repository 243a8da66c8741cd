# Developed in Oct 2026.
# Purpose: Merchant-facing app server behind the donation page. Generates the
# amount-specific QRIS payload, opens the donation session and exposes the
# recent donations and the last matched payment.

import os
import argparse
from datetime import datetime, timezone
import requests
from flask import Flask, request, jsonify
from flask_cors import CORS

import donation_store
import donation_matcher
from qr_generator import (
    DEFAULT_QRIS_PAYLOAD, PRESET_AMOUNTS, format_rupiah, generate_donation,
    resolve_base_payload,
)
from qr_parser import CRC_ANCHOR, check_crc, decode_tlv

app = Flask(__name__)
CORS(app)
PORT = 5010
HOST = "127.0.0.1"
DB_DIR = donation_store.DB_DIR
FEED_URL = donation_matcher.FEED_URL
SETTINGS_PASSWORD = os.environ.get("SETTINGS_PASSWORD", "")

def validate_base_payload(raw_string):
    """Returns an error message for payloads that cannot serve as a static base, else None."""
    if not raw_string or CRC_ANCHOR not in raw_string:
        return "Payload has no CRC record (6304)"
    unparsed = decode_tlv(raw_string).unparsed
    if unparsed:
        return f"Payload has {unparsed} undecodable trailing characters"
    is_valid, calculated, found = check_crc(raw_string)
    if not is_valid:
        return f"CRC mismatch: calculated {calculated}, found {found}"
    return None

@app.route('/config', methods=['GET'])
def get_config():
    raw_string = resolve_base_payload(DB_DIR)
    return jsonify({"rawString": raw_string, "isDefault": raw_string == DEFAULT_QRIS_PAYLOAD})

@app.route('/config', methods=['PUT'])
def update_config():
    """Replaces the merchant's static payload. Requires the settings password."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON"}), 400
    if not SETTINGS_PASSWORD or data.get("password") != SETTINGS_PASSWORD:
        print("DONATION_SERVER: [!] Rejected config update: wrong password")
        return jsonify({"error": "Wrong password"}), 401

    raw_string = (data.get("rawString") or "").strip()
    error = validate_base_payload(raw_string)
    if error:
        print(f"DONATION_SERVER: [!] Rejected config update: {error}")
        return jsonify({"error": error}), 400

    donation_store.save_config({"rawString": raw_string}, DB_DIR)
    print("DONATION_SERVER: [*] Merchant payload updated")
    return jsonify({"rawString": raw_string})

@app.route('/presets', methods=['GET'])
def get_presets():
    return jsonify([{"amount": a, "formatted": format_rupiah(a)} for a in PRESET_AMOUNTS])

@app.route('/generate', methods=['POST'])
def generate_qr():
    """
    Receives the donor's amount and optional name/message/GIF, returns the
    dynamic QRIS content and opens a session that supersedes any earlier one.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "amount" not in data:
        return jsonify({"error": "Missing amount"}), 400

    print("DONATION_SERVER: [*] Received QR generation request")
    try:
        qr_content, session = generate_donation(
            data["amount"],
            donor_name=data.get("donorName"),
            donor_message=data.get("donorMessage"),
            gif_url=data.get("gifUrl"),
            db_dir=DB_DIR,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    session_data = session.to_dict()
    return jsonify({
        "qrContent": qr_content,
        "amount": session.amount,
        "amountFormatted": format_rupiah(session.amount),
        "generatedAt": session_data["generatedAt"],
        "expiresAt": session_data["expiresAt"]
    })

@app.route('/session', methods=['GET'])
def get_session():
    session = donation_store.load_session(DB_DIR)
    now = datetime.now(timezone.utc)
    if session is None or not session.is_active(now):
        return jsonify({"error": "No active session"}), 404
    body = session.to_dict()
    body["secondsRemaining"] = max(0, int((session.expires_at - now).total_seconds()))
    return jsonify(body)

@app.route('/donations', methods=['GET'])
def recent_donations():
    """Recent donations from the feed, with locally cached donor details merged in."""
    try:
        records = donation_matcher.fetch_donations(FEED_URL)
    except (requests.RequestException, ValueError) as e:
        print(f"DONATION_SERVER: [!] Error fetching donations: {e}")
        return jsonify({"error": "Feed unavailable"}), 502

    metadata = donation_store.load_metadata(DB_DIR)
    return jsonify(donation_matcher.prepare_feed(records, metadata))

@app.route('/match', methods=['GET'])
def last_match():
    match = donation_store.load_last_match(DB_DIR)
    if not match:
        return jsonify({"error": "No donation matched yet"}), 404
    return jsonify(match)

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="QRIS Donation App Server")
    parser.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    parser.add_argument("--store", default=DB_DIR, help="Store directory")
    parser.add_argument("--feed", default=FEED_URL, help="Base URL of the notification feed")
    args = parser.parse_args()
    PORT = args.port
    DB_DIR = args.store
    FEED_URL = args.feed

    if not SETTINGS_PASSWORD:
        print("DONATION_SERVER: [!] SETTINGS_PASSWORD is not set; payload changes are disabled.")
    print(f"DONATION_SERVER: Starting App Server on port {PORT}...")
    app.run(host=HOST, port=PORT)
