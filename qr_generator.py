# Developed in Oct 2026.
# Purpose: Turn a merchant's static QRIS payload into a one-time payload carrying
# a specific amount, and open the donation session that waits for its payment.

import os
import argparse
import qrcode

import donation_store
from qr_parser import CRC_ANCHOR, TLVRecord, calculate_crc, decode_tlv, encode_tlv, tlv

# --- CONFIGURATION ---
QR_TEXT_FILE = "qrcode.txt"
QR_IMAGE_FILE = "qrcode.png"
MIN_DONATION = 100
MAX_AMOUNT_DIGITS = 99
PRESET_AMOUNTS = [10000, 25000, 50000, 100000]
AMOUNT_TAG = "54"
CRC_TAG = "63"

def append_crc(body):
    """Appends the 6304 checksum record computed over body + '6304'."""
    raw_str = body + CRC_ANCHOR
    return raw_str + calculate_crc(raw_str)

DEFAULT_QRIS_PAYLOAD = append_crc("".join([
    tlv("00", "01"),
    tlv("01", "11"),
    tlv("26", tlv("00", "ID.CO.QRIS.WWW") + tlv("01", "936009150000000001") +
        tlv("02", "ID1026000000001") + tlv("03", "UMI")),
    tlv("52", "8999"),
    tlv("53", "360"),
    tlv("58", "ID"),
    tlv("59", "DONASI KITA"),
    tlv("60", "JAKARTA"),
    tlv("61", "10110"),
    tlv("62", tlv("07", "A01")),
]))

def validate_amount(value):
    """Returns the amount as int or raises ValueError when it cannot be encoded."""
    if isinstance(value, bool):
        raise ValueError("Amount must be a whole number")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValueError("Amount must be a whole number")
    if value < MIN_DONATION:
        raise ValueError(f"Minimum donation is {format_rupiah(MIN_DONATION)}")
    if len(str(value)) > MAX_AMOUNT_DIGITS:
        raise ValueError(f"Amount cannot exceed {MAX_AMOUNT_DIGITS} digits")
    return value

def format_rupiah(amount):
    """Formats with dot separators, e.g. Rp 1.000.000."""
    return "Rp " + f"{amount:,}".replace(",", ".")

def strip_crc_record(payload):
    if len(payload) >= 8 and payload[-8:-4] == CRC_ANCHOR:
        return payload[:-8]
    # Only trust an anchor near the end; 6304 can legitimately occur inside values.
    crc_index = payload.rfind(CRC_ANCHOR)
    if crc_index != -1 and crc_index > len(payload) - 10:
        return payload[:crc_index]
    return payload

def build_dynamic_qris(base_payload, amount):
    """
    Builds the amount-specific payload.

    The existing checksum and amount records are dropped, the remaining records keep
    their order, and the new amount plus a freshly computed checksum are appended.
    Callers validate the amount with validate_amount().
    """
    result = decode_tlv(strip_crc_record(base_payload))
    if result.unparsed:
        print(f"QR_GENERATOR: [!] Base payload has {result.unparsed} undecodable trailing characters; they are dropped.")

    records = [r for r in result.records if r.tag not in (AMOUNT_TAG, CRC_TAG)]
    amount_str = str(amount)
    records.append(TLVRecord(AMOUNT_TAG, len(amount_str), amount_str))

    return append_crc(encode_tlv(records))

def resolve_base_payload(db_dir=donation_store.DB_DIR):
    """Returns the stored merchant payload, falling back to the default one."""
    config = donation_store.load_config(db_dir)
    if config and CRC_ANCHOR in config["rawString"]:
        return config["rawString"]
    return DEFAULT_QRIS_PAYLOAD

def generate_donation(amount, donor_name=None, donor_message=None, gif_url=None,
                      db_dir=donation_store.DB_DIR, now=None):
    """Builds the dynamic payload and stores the session that supersedes any previous one."""
    amount = validate_amount(amount)
    qr_content = build_dynamic_qris(resolve_base_payload(db_dir), amount)
    session = donation_store.create_session(amount, donor_name, donor_message, gif_url, now=now)
    donation_store.save_session(session, db_dir)
    print(f"QR_GENERATOR: [*] Session opened for {format_rupiah(amount)} until {donation_store.format_timestamp(session.expires_at)}")
    return qr_content, session

def save_qr_image(qr_content, path=QR_IMAGE_FILE):
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(qr_content)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    img.save(path)
    return path

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="QRIS Dynamic Payload Generator")
    parser.add_argument("amount", help="Amount in Rupiah (whole number)")
    parser.add_argument("--name", help="Donor name")
    parser.add_argument("--message", help="Donor message")
    parser.add_argument("--gif", help="GIF URL shown with the donation")
    parser.add_argument("--store", default=donation_store.DB_DIR, help="Store directory")
    parser.add_argument("--out", default=".", help="Output directory for the text and PNG files")
    args = parser.parse_args()

    try:
        qr_string, _ = generate_donation(args.amount, args.name, args.message, args.gif, db_dir=args.store)
    except ValueError as e:
        print(f"[!] Error: {e}")
        exit(1)

    os.makedirs(args.out, exist_ok=True)
    text_path = os.path.join(args.out, QR_TEXT_FILE)
    with open(text_path, "w") as f:
        f.write(qr_string)
    print(f"[*] Raw QR string saved to '{text_path}'.")

    print("[*] Generating QR Code Image...")
    image_path = save_qr_image(qr_string, os.path.join(args.out, QR_IMAGE_FILE))
    print(f"[*] QR Code image saved as '{image_path}'.")
