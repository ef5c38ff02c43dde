#!/usr/bin/env python3
"""
Paper Attendance Import Script

Imports attendance kept on paper or in a spreadsheet into the server as staff
confirmations, one client at a time, through the attendance API.

Usage:
    python attendance_import.py

Requirements:
    - requests library: pip install requests
    - Server running at http://localhost:8000 (override with IMPORT_BASE_URL)
    - A staff account allowed to confirm attendance

Data File Format:
    Tab-separated values with columns: Date, Check In, Check Out, Status (optional)
    Example: 4/1/2025	9:30	15:30
    Rows without times are imported as absent unless a status is given.
"""

import getpass
import os
import time
from datetime import datetime

import requests

# Configuration
BASE_URL = os.getenv("IMPORT_BASE_URL", "http://localhost:8000")

STATUSES = ("present", "absent", "late", "early_leave", "holiday", "sick")

def login(email, password):
    """Staff login; returns auth headers or None"""
    try:
        response = requests.post(
            f"{BASE_URL}/auth/staff/login",
            json={"email": email, "password": password},
            timeout=10
        )
    except requests.RequestException as e:
        print(f"❌ Could not reach server at {BASE_URL}: {e}")
        return None

    if response.status_code != 200:
        print(f"❌ Login failed (HTTP {response.status_code})")
        return None

    user = response.json()["user"]
    print(f"✅ Logged in as {user['name']} ({user['role']})")
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {response.json()['token']}",
    }

def find_client(headers, client_number):
    """Look up a client by 利用者番号"""
    try:
        response = requests.get(
            f"{BASE_URL}/clients",
            headers=headers,
            params={"search": client_number},
            timeout=10
        )
    except requests.RequestException as e:
        print(f"❌ Error looking up client: {e}")
        return None

    if response.status_code != 200:
        print(f"❌ Client lookup failed (HTTP {response.status_code})")
        return None

    for client in response.json()["clients"]:
        if client["clientNumber"] == client_number:
            print(f"✅ Client verified: {client['lastName']} {client['firstName']} ({client_number})")
            return client
    print(f"❌ Client {client_number} not found")
    return None

def parse_attendance_data(data_content):
    """Parse the TSV rows into confirmation payloads without a clientId"""
    entries = []

    for line_number, line in enumerate(data_content.strip().split('\n'), 1):
        parts = [p.strip() for p in line.split('\t')]
        if not parts or not parts[0]:
            continue

        try:
            date_formatted = datetime.strptime(parts[0], '%m/%d/%Y').strftime('%Y-%m-%d')
        except ValueError as e:
            print(f"⚠️  Line {line_number}: error parsing date '{parts[0]}': {e}")
            continue

        check_in = parts[1].zfill(5) if len(parts) > 1 and parts[1] else None
        check_out = parts[2].zfill(5) if len(parts) > 2 and parts[2] else None
        status = parts[3] if len(parts) > 3 and parts[3] else ("present" if check_in else "absent")

        if status not in STATUSES:
            print(f"⚠️  Line {line_number}: unknown status '{status}', skipping")
            continue

        entries.append({
            "date": date_formatted,
            "status": status,
            "checkInTime": check_in,
            "checkOutTime": check_out,
            "notes": f"Imported from paper record {parts[0]}",
        })

    return entries

def confirm_entry(headers, entry):
    """Create a single confirmation via the attendance API"""
    try:
        response = requests.post(
            f"{BASE_URL}/attendance/confirm",
            headers=headers,
            json=entry,
            timeout=10
        )
    except requests.RequestException as e:
        return False, f"Request error: {e}"

    if response.status_code in [200, 201]:
        return True, response.json()
    return False, f"HTTP {response.status_code}: {response.text}"

def main():
    """Main import process"""
    print("📋 Paper Attendance Import Tool")
    print("=" * 50)

    email = input("\nStaff email: ").strip()
    password = getpass.getpass("Password: ")
    headers = login(email, password)
    if not headers:
        return

    client = find_client(headers, input("\n利用者番号 (client number): ").strip())
    if not client:
        print("❌ Import aborted - client not found")
        return

    filename = input("\n📁 Data filename: ").strip()
    if not os.path.isfile(filename):
        print(f"❌ File '{filename}' not found")
        return
    with open(filename, 'r', encoding='utf-8') as file:
        entries = parse_attendance_data(file.read())

    print(f"✅ Parsed {len(entries)} days")
    if not entries:
        print("❌ No valid entries found in data")
        return

    print(f"\n⚠️  About to confirm {len(entries)} days for {client['lastName']} {client['firstName']}")
    print("   Existing confirmations on those days will be overwritten")
    confirm = input("Continue? (y/N): ").strip().lower()
    if confirm not in ['y', 'yes']:
        print("❌ Import cancelled by user")
        return

    successful_imports = 0
    failed_imports = 0
    for i, entry in enumerate(entries, 1):
        print(f"⏳ {i}/{len(entries)}: {entry['date']} {entry['status']}")
        success, result = confirm_entry(headers, {"clientId": client["id"], **entry})
        if success:
            successful_imports += 1
        else:
            failed_imports += 1
            print(f"   ❌ Failed: {result}")

        # Brief pause between requests
        time.sleep(0.05)

    print("\n" + "=" * 50)
    print("📊 Import Summary:")
    print(f"   Client: {client['clientNumber']}")
    print(f"   Data source: {filename}")
    print(f"   Successful imports: {successful_imports}")
    print(f"   Failed imports: {failed_imports}")

    if failed_imports == 0:
        print("🎉 All days imported successfully!")
    else:
        print(f"⚠️  {failed_imports} days failed to import")

if __name__ == "__main__":
    main()
