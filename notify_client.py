# Developed in Oct 2026.
# Purpose: Manual utility for feed_server.py. Simulates a listening device posting
# payment notifications and prints the public donation feed.

import os
import json
import argparse
from datetime import datetime, timezone
import requests

PORT = 5020
HOST = "127.0.0.1"
BASE_URL = f"http://{HOST}:{PORT}"
API_KEY = os.environ.get("FEED_API_KEY", "")

def sample_notification(amount, text=None):
    """Notification shaped like the ones a payment app posts on the device."""
    return {
        "deviceId": "test-device-123",
        "packageName": "id.dana",
        "appName": "DANA",
        "postedAt": datetime.now(timezone.utc).isoformat(),
        "title": "Pembayaran diterima",
        "text": text or f"Kamu berhasil menerima Rp{amount:,}".replace(",", "."),
        "subText": "",
        "bigText": f"Kamu berhasil menerima pembayaran sebesar Rp{amount:,}".replace(",", "."),
        "channelId": "payment_channel",
        "notificationId": 12345,
        "amountDetected": str(amount),
        "extras": {"android.title": "Pembayaran diterima"}
    }

def print_response(response):
    print(f"NOTIFY_CLIENT: [*] Status Code: {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=4))
    except ValueError:
        print(response.text)

def send_webhook(data):
    url = f"{BASE_URL}/webhook"
    print(f"NOTIFY_CLIENT: [*] Sending POST request to {url}")
    try:
        print_response(requests.post(url, json=data, headers={"x-api-key": API_KEY}, timeout=10))
    except requests.exceptions.ConnectionError:
        print(f"NOTIFY_CLIENT: [!] Error: Could not connect to {url}. Is feed_server.py running?")
    except requests.RequestException as e:
        print(f"NOTIFY_CLIENT: [!] Error during request: {e}")

def show_feed(limit):
    url = f"{BASE_URL}/public/donations"
    try:
        print_response(requests.get(url, params={"limit": limit}, timeout=10))
    except requests.RequestException as e:
        print(f"NOTIFY_CLIENT: [!] Error during request: {e}")

def send_metadata(record_id, donor_name, message):
    url = f"{BASE_URL}/public/donations"
    try:
        print_response(requests.put(url, json={"id": record_id, "donorName": donor_name, "message": message}, timeout=10))
    except requests.RequestException as e:
        print(f"NOTIFY_CLIENT: [!] Error during request: {e}")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Test utility for the notification feed server")
    parser.add_argument("--notify", type=int, metavar="AMOUNT", help="Post a payment notification for AMOUNT")
    parser.add_argument("--text", help="Override the notification text")
    parser.add_argument("--file", help="Post the notification JSON stored in a file")
    parser.add_argument("--feed", type=int, nargs="?", const=10, metavar="LIMIT", help="Print the public donation feed")
    parser.add_argument("--metadata", type=int, metavar="ID", help="Attach donor metadata to a record")
    parser.add_argument("--name", default="Anonim", help="Donor name for --metadata")
    parser.add_argument("--message", default="", help="Donor message for --metadata")
    args = parser.parse_args()

    if args.notify:
        send_webhook(sample_notification(args.notify, args.text))
    elif args.file:
        if not os.path.exists(args.file):
            print(f"NOTIFY_CLIENT: [!] Error: Input file '{args.file}' not found.")
        else:
            with open(args.file, "r") as f:
                send_webhook(json.load(f))
    elif args.feed:
        show_feed(args.feed)
    elif args.metadata:
        send_metadata(args.metadata, args.name, args.message)
    else:
        parser.print_help()
