#!/usr/bin/env python3
"""
Shuro Support Staff Setup Script
Run this to initialize the database, register a facility and add staff accounts
"""

import sqlite3
import sys

from app.core.config import AuthConfig, ServerConfig
from app.core.database import get_db, init_database, new_id, now_iso
from app.core.security import hash_password
from app.models.auth import STAFF_ROLES

def add_organization(name, capacity=20):
    """Register a facility and return its id"""
    organization_id = new_id()
    with get_db() as conn:
        conn.execute(
            "INSERT INTO organizations (id, name, capacity) VALUES (?, ?, ?)",
            (organization_id, name, capacity)
        )
        conn.commit()
    print(f"✅ Added facility: {name} (capacity {capacity}, ID: {organization_id})")
    return organization_id

def list_organizations():
    with get_db() as conn:
        organizations = conn.execute(
            "SELECT id, name, capacity FROM organizations ORDER BY created_at"
        ).fetchall()

    if not organizations:
        print("No facilities found in database")
        return []

    print("\nFacilities:")
    print("-" * 80)
    for i, org in enumerate(organizations, 1):
        print(f"{i}. {org['name']} (capacity {org['capacity']}) {org['id']}")
    return organizations

def add_staff(organization_id, email, password, name, role="support_staff"):
    """Add a staff account; returns its id or None when the email is taken"""
    if role not in STAFF_ROLES:
        print(f"❌ Role must be one of: {', '.join(STAFF_ROLES)}")
        return None
    if len(password) < AuthConfig.MIN_PASSWORD_LENGTH:
        print(f"❌ Password must be at least {AuthConfig.MIN_PASSWORD_LENGTH} characters")
        return None

    staff_id = new_id()
    try:
        with get_db() as conn:
            conn.execute('''
                INSERT INTO staff_users (id, organization_id, email, password_hash, name, role)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (staff_id, organization_id, email.strip().lower(), hash_password(password), name, role))
            conn.commit()
    except sqlite3.IntegrityError as e:
        print(f"❌ Error adding staff {email}: {e}")
        return None

    print(f"✅ Added staff: {name} <{email}> ({role})")
    return staff_id

def list_staff():
    """List every staff account with its facility"""
    with get_db() as conn:
        staff = conn.execute('''
            SELECT s.email, s.name, s.role, s.is_active, s.created_at, o.name AS organization
            FROM staff_users s
            JOIN organizations o ON o.id = s.organization_id
            ORDER BY o.name, s.role, s.email
        ''').fetchall()

    if not staff:
        print("No staff found in database")
        return

    print("\nCurrent Staff:")
    print("-" * 90)
    print(f"{'Email':<28} {'Name':<16} {'Role':<16} {'Active':<8} {'Facility'}")
    print("-" * 90)
    for member in staff:
        active_status = "✅ Yes" if member['is_active'] else "❌ No"
        print(f"{member['email']:<28} {member['name']:<16} {member['role']:<16} {active_status:<8} {member['organization']}")

def set_staff_password(email, password):
    """Reset a staff password"""
    if len(password) < AuthConfig.MIN_PASSWORD_LENGTH:
        print(f"❌ Password must be at least {AuthConfig.MIN_PASSWORD_LENGTH} characters")
        return False

    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE staff_users SET password_hash = ?, updated_at = ? WHERE email = ?",
            (hash_password(password), now_iso(), email.strip().lower())
        )
        conn.commit()

    if cursor.rowcount == 0:
        print(f"❌ Staff {email} not found")
        return False
    print(f"✅ Password updated for {email}")
    return True

def deactivate_staff(email):
    """Deactivate a staff account (don't delete, preserve audit history)"""
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE staff_users SET is_active = FALSE, updated_at = ? WHERE email = ?",
            (now_iso(), email.strip().lower())
        )
        conn.commit()

    if cursor.rowcount > 0:
        print(f"✅ Staff {email} deactivated")
    else:
        print(f"❌ Staff {email} not found")

def choose_organization():
    organizations = list_organizations()
    if not organizations:
        name = input("New facility name: ").strip()
        capacity = input("Capacity (定員, default 20): ").strip()
        return add_organization(name, int(capacity) if capacity else 20)

    choice = input("Facility number: ").strip()
    try:
        return organizations[int(choice) - 1]['id']
    except (ValueError, IndexError):
        print("❌ Invalid facility number")
        return None

def interactive_setup():
    """Interactive staff setup"""
    print("Shuro Support - Staff Setup")
    print("=" * 40)

    while True:
        print("\nOptions:")
        print("1. Add facility")
        print("2. Add staff account")
        print("3. List staff")
        print("4. Reset staff password")
        print("5. Deactivate staff")
        print("6. Exit")

        choice = input("\nSelect option (1-6): ").strip()

        if choice == '1':
            name = input("Facility name: ").strip()
            capacity = input("Capacity (定員, default 20): ").strip()
            try:
                if name:
                    add_organization(name, int(capacity) if capacity else 20)
                else:
                    print("❌ Facility name is required")
            except ValueError:
                print("❌ Capacity must be a number")

        elif choice == '2':
            organization_id = choose_organization()
            if not organization_id:
                continue
            name = input("Name: ").strip()
            email = input("Email: ").strip()
            password = input("Password: ").strip()
            role = input(f"Role ({'/'.join(STAFF_ROLES)}): ").strip() or "support_staff"

            if name and email:
                add_staff(organization_id, email, password, name, role)
            else:
                print("❌ Name and email are required")

        elif choice == '3':
            list_staff()

        elif choice == '4':
            email = input("Staff email: ").strip()
            password = input("New password: ").strip()
            set_staff_password(email, password)

        elif choice == '5':
            email = input("Staff email to deactivate: ").strip()
            deactivate_staff(email)

        elif choice == '6':
            break

        else:
            print("❌ Invalid option")

if __name__ == "__main__":
    print("Shuro Support Staff Setup")
    print(f"Database: {ServerConfig.DATABASE_PATH}")
    print("=" * 30)

    # Initialize database first
    init_database()

    if len(sys.argv) > 1:
        if sys.argv[1] == "--list":
            list_staff()
        elif sys.argv[1] == "--set-password":
            if len(sys.argv) != 4:
                print("Usage: python staff_setup.py --set-password <email> <password>")
            else:
                set_staff_password(sys.argv[2], sys.argv[3])
        else:
            print("Usage:")
            print("  python staff_setup.py                               # Interactive setup")
            print("  python staff_setup.py --list                        # List current staff")
            print("  python staff_setup.py --set-password EMAIL PASSWORD # Reset a password")
    else:
        interactive_setup()

    print("\n✅ Setup complete! You can now start the server with: python run.py")
