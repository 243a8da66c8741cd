# Developed in Oct 2026.
# Purpose: Parse and validate QRIS (EMV Merchant Presented Mode) payloads.
# Only flat, root-level tags are decoded; nested templates stay opaque.

import os
import re
import argparse
from collections import namedtuple

# --- CONFIGURATION ---
QR_TEXT_FILE = "qrcode.txt"
CRC_ANCHOR = "6304"

TLVRecord = namedtuple("TLVRecord", ["tag", "length", "value"])
TLVDecodeResult = namedtuple("TLVDecodeResult", ["records", "unparsed"])

_LENGTH_FIELD = re.compile(r"^[0-9]{2}$")

def calculate_crc(data_string):
    """Calculates the CRC-16/CCITT-FALSE (0xFFFF, 0x1021) for EMV QR."""
    crc = 0xFFFF
    polynomial = 0x1021

    for char in data_string:
        # Each code point counts as a single byte.
        crc ^= (ord(char) & 0xFF) << 8
        for _ in range(8):
            if (crc & 0x8000):
                crc = (crc << 1) ^ polynomial
            else:
                crc = crc << 1
            crc &= 0xFFFF
    return f"{crc:04X}"

def tlv(tag, value):
    """Formats a single record as tag + 2-digit length + value."""
    return f"{tag}{len(value):02}{value}"

def decode_tlv(data):
    """
    Splits a flat TLV string into records.

    Decoding stops at the first malformed record (non-numeric length or a value
    running past the end of the string). The number of characters left behind is
    returned as `unparsed` so callers can reject the input instead of silently
    dropping it.
    """
    records = []
    i = 0
    while i < len(data):
        if i + 4 > len(data):
            break
        tag = data[i:i+2]
        length_field = data[i+2:i+4]
        if not _LENGTH_FIELD.match(length_field):
            break
        length = int(length_field)
        if i + 4 + length > len(data):
            break

        records.append(TLVRecord(tag, length, data[i+4:i+4+length]))
        i += 4 + length
    return TLVDecodeResult(records, len(data) - i)

def encode_tlv(records):
    """Concatenates records back into a TLV string, preserving their order."""
    return "".join(tlv(record.tag, record.value) for record in records)

def split_crc(payload):
    """Returns (body, crc) if the payload ends with a 6304 checksum record, else (payload, None)."""
    if len(payload) >= 8 and payload[-8:-4] == CRC_ANCHOR:
        return payload[:-4], payload[-4:]
    return payload, None

def check_crc(payload):
    """Returns (is_valid, calculated, found) for the trailing checksum record."""
    body, found = split_crc(payload)
    if found is None:
        return False, None, None
    calculated = calculate_crc(body)
    return calculated == found.upper(), calculated, found

# QRIS Tag Definitions and Basic Validation Rules
TAG_INFO = {
    "00": {"desc": "Payload Format Indicator", "min_len": 2, "max_len": 2, "pattern": r"^01$"},
    "01": {"desc": "Point of Initiation Method", "min_len": 2, "max_len": 2, "pattern": r"^(11|12)$"},
    "52": {"desc": "Merchant Category Code (MCC)", "min_len": 4, "max_len": 4, "pattern": r"^\d{4}$"},
    "53": {"desc": "Transaction Currency", "min_len": 3, "max_len": 3, "pattern": r"^\d{3}$"},
    "54": {"desc": "Transaction Amount", "min_len": 1, "max_len": 13, "pattern": r"^\d+(\.\d{1,2})?$"},
    "55": {"desc": "Tip or Convenience Indicator", "min_len": 2, "max_len": 2, "pattern": r"^0[1-3]$"},
    "56": {"desc": "Value of Convenience Fee Fixed", "min_len": 1, "max_len": 13},
    "57": {"desc": "Value of Convenience Fee Percentage", "min_len": 1, "max_len": 5},
    "58": {"desc": "Country Code", "min_len": 2, "max_len": 2, "pattern": r"^[A-Z]{2}$"},
    "59": {"desc": "Merchant Name", "min_len": 1, "max_len": 25},
    "60": {"desc": "Merchant City", "min_len": 1, "max_len": 15},
    "61": {"desc": "Postal Code", "min_len": 1, "max_len": 10},
    "62": {"desc": "Additional Data Field Template", "min_len": 1, "max_len": 99},
    "63": {"desc": "CRC", "min_len": 4, "max_len": 4, "pattern": r"^[0-9A-F]{4}$"}
}

# Tags 26-51 are merchant account information templates (e.g. ID.CO.QRIS.WWW).
for _tag in range(26, 52):
    TAG_INFO[f"{_tag:02}"] = {"desc": "Merchant Account Information", "min_len": 1, "max_len": 99}

def validate_field(tag, value):
    """Validates the value against QRIS constraints."""
    info = TAG_INFO.get(tag)
    if not info:
        return True, "N/A"

    # Check length constraints
    if "min_len" in info and len(value) < info["min_len"]:
        return False, f"ERR: Too short (min {info['min_len']})"
    if "max_len" in info and len(value) > info["max_len"]:
        return False, f"ERR: Too long (max {info['max_len']})"

    # Check pattern
    if "pattern" in info and not re.match(info["pattern"], value):
        return False, "ERR: Format mismatch"

    return True, "OK"

def parse_tlv(data):
    """Parses QRIS TLV data and returns a list of field dictionaries for display."""
    results = []
    for record in decode_tlv(data).records:
        is_valid, msg = validate_field(record.tag, record.value)
        results.append({
            "tag": record.tag,
            "length": record.length,
            "value": record.value,
            "description": TAG_INFO.get(record.tag, {}).get("desc", "Unknown Tag"),
            "is_valid": is_valid,
            "validation_msg": msg
        })
    return results

def main(qr_content):
    print("="*110)
    print("QRIS PARSER - EMV MPM VALIDATOR")
    print("="*110)
    print(f"Raw Content: {qr_content}\n")

    # 1. CRC Validation
    is_valid, calculated, found = check_crc(qr_content)
    if found is None:
        print("[!] Error: CRC tag (6304) not found at the expected position.")
    elif is_valid:
        print(f"[OK] CRC-16/CCITT-FALSE Valid: {calculated}")
    else:
        print(f"[!] CRC Mismatch: Calculated {calculated}, Found {found}")

    # 2. Field Parsing and Display
    unparsed = decode_tlv(qr_content).unparsed
    if unparsed:
        print(f"[!] Warning: {unparsed} trailing characters could not be decoded.")

    print(f"\n{'TAG':3}.  | {'LEN':3} | {'VALID':12} | {'DESCRIPTION':40} | {'VALUE'}")
    print("-" * 110)

    for field in parse_tlv(qr_content):
        status = "[OK]" if field['is_valid'] else f"[{field['validation_msg']}]"
        print(f"{field['tag']:3}   | {field['length']:02}  | {status:12} | {field['description']:40} | {field['value']}")

    print("="*110)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="QRIS Payload Parser")
    parser.add_argument("payload", nargs="?", default=QR_TEXT_FILE, help="QRIS string or path to a file containing it")
    args = parser.parse_args()

    if os.path.exists(args.payload):
        with open(args.payload, "r") as f:
            content = f.read().strip()
    elif args.payload == QR_TEXT_FILE:
        print(f"[!] Error: {QR_TEXT_FILE} not found. Run qr_generator.py first.")
        exit(1)
    else:
        content = args.payload.strip()

    main(content)
