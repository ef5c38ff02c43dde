import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
import logging
from app.core.config import ServerConfig # Import ServerConfig

logger = logging.getLogger(__name__)

@contextmanager
def get_db():
    conn = sqlite3.connect(ServerConfig.DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()

def new_id() -> str:
    return str(uuid.uuid4())

def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")

def row_to_dict(row, json_fields=()):
    """Convert a sqlite3.Row to a dict, decoding the named JSON columns"""
    if row is None:
        return None
    data = dict(row)
    for field in json_fields:
        if data.get(field) is not None:
            data[field] = json.loads(data[field])
    return data

def init_database():
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS organizations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                capacity INTEGER NOT NULL DEFAULT 20,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS staff_users (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                name TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('admin', 'service_manager', 'support_staff')),
                is_active BOOLEAN DEFAULT TRUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (organization_id) REFERENCES organizations (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                client_number TEXT,
                last_name TEXT NOT NULL,
                first_name TEXT NOT NULL,
                service_type TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'suspended', 'terminated', 'trial')),
                start_date DATE,
                end_date DATE,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (organization_id) REFERENCES organizations (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_clients_org
            ON clients (organization_id, status, last_name)
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS client_users (
                id TEXT PRIMARY KEY,
                client_id TEXT UNIQUE NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                is_active BOOLEAN DEFAULT TRUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS certificates (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                type TEXT NOT NULL,
                type_name TEXT NOT NULL,
                number TEXT,
                issued_at DATE,
                valid_from DATE,
                valid_until DATE NOT NULL,
                status TEXT NOT NULL
                    CHECK(status IN ('valid', 'expiring_soon', 'expired', 'pending_renewal')),
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_certificates_expiry
            ON certificates (client_id, valid_until)
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS attendance_reports (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                date DATE NOT NULL,
                status TEXT NOT NULL,
                check_in_time TEXT,
                check_out_time TEXT,
                health_condition TEXT,
                notes TEXT,
                reported_at TIMESTAMP,
                UNIQUE (client_id, date),
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS attendance_confirmations (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                date DATE NOT NULL,
                status TEXT NOT NULL,
                check_in_time TEXT,
                check_out_time TEXT,
                actual_minutes INTEGER,
                notes TEXT,
                confirmed_by_id TEXT,
                confirmed_at TIMESTAMP,
                UNIQUE (client_id, date),
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS wage_rules (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                client_id TEXT,
                name TEXT NOT NULL,
                calculation_type TEXT NOT NULL
                    CHECK(calculation_type IN ('hourly', 'daily', 'piece_rate', 'mixed')),
                hourly_rate REAL,
                daily_rate REAL,
                piece_rates TEXT,
                deductions TEXT,
                valid_from DATE NOT NULL,
                valid_until DATE,
                is_default BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (organization_id) REFERENCES organizations (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_wage_rules_scope
            ON wage_rules (organization_id, client_id, is_default)
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS work_logs (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                date DATE NOT NULL,
                work_type TEXT NOT NULL,
                quantity REAL NOT NULL DEFAULT 0,
                unit TEXT,
                notes TEXT,
                created_by_id TEXT,
                created_at TIMESTAMP,
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_work_logs_lookup
            ON work_logs (client_id, date)
        ''')

        # One run per organization and period, backed by the unique key
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS payroll_runs (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                period_start DATE NOT NULL,
                period_end DATE NOT NULL,
                status TEXT NOT NULL
                    CHECK(status IN ('calculating', 'draft', 'confirmed', 'paid')),
                notes TEXT,
                created_by_id TEXT,
                confirmed_by_id TEXT,
                confirmed_at TIMESTAMP,
                paid_at TIMESTAMP,
                created_at TIMESTAMP,
                UNIQUE (organization_id, period_start, period_end),
                FOREIGN KEY (organization_id) REFERENCES organizations (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS payroll_lines (
                id TEXT PRIMARY KEY,
                payroll_run_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                wage_rule_id TEXT,
                work_days INTEGER NOT NULL,
                total_minutes INTEGER NOT NULL,
                base_amount INTEGER NOT NULL,
                piece_amount INTEGER NOT NULL,
                deductions INTEGER NOT NULL,
                net_amount INTEGER NOT NULL CHECK(net_amount >= 0),
                breakdown TEXT,
                created_at TIMESTAMP,
                UNIQUE (payroll_run_id, client_id),
                FOREIGN KEY (payroll_run_id) REFERENCES payroll_runs (id),
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS interview_sessions (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                staff_id TEXT,
                session_type TEXT NOT NULL,
                session_date TIMESTAMP NOT NULL,
                location TEXT,
                notes TEXT,
                status TEXT NOT NULL DEFAULT 'draft',
                recording_consent BOOLEAN DEFAULT FALSE,
                ai_processing_consent BOOLEAN DEFAULT FALSE,
                consent_date TIMESTAMP,
                consent_by TEXT,
                consent_relationship TEXT,
                consent_version TEXT,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (organization_id) REFERENCES organizations (id),
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_interview_sessions_lookup
            ON interview_sessions (organization_id, client_id, session_date)
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS media_assets (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                file_name TEXT NOT NULL,
                original_name TEXT,
                mime_type TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                storage_path TEXT NOT NULL,
                uploaded_by_id TEXT,
                created_at TIMESTAMP,
                FOREIGN KEY (session_id) REFERENCES interview_sessions (id)
            )
        ''')

        # Derived artifacts are append-only, one row per version
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS transcripts (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                language TEXT NOT NULL DEFAULT 'ja',
                full_text TEXT NOT NULL,
                segments TEXT,
                engine TEXT,
                confidence REAL,
                created_at TIMESTAMP,
                UNIQUE (session_id, version),
                FOREIGN KEY (session_id) REFERENCES interview_sessions (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ai_summaries (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                summary_short TEXT,
                summary_medium TEXT,
                summary_long TEXT,
                model TEXT,
                created_at TIMESTAMP,
                UNIQUE (session_id, version),
                FOREIGN KEY (session_id) REFERENCES interview_sessions (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ai_extractions (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                extracted_data TEXT NOT NULL,
                model TEXT,
                created_at TIMESTAMP,
                UNIQUE (session_id, version),
                FOREIGN KEY (session_id) REFERENCES interview_sessions (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS support_plans (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                session_id TEXT,
                service_type TEXT NOT NULL,
                plan_period_start DATE NOT NULL,
                plan_period_end DATE NOT NULL,
                plan_content TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'draft'
                    CHECK(status IN ('draft', 'pending_consent', 'approved', 'delivered', 'monitoring')),
                monitoring_frequency INTEGER NOT NULL,
                next_monitoring_date DATE,
                consent_date TIMESTAMP,
                consent_by TEXT,
                consent_relationship TEXT,
                consent_signature TEXT,
                delivery_date TIMESTAMP,
                delivery_to TEXT,
                delivery_method TEXT,
                created_by_id TEXT NOT NULL,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                FOREIGN KEY (client_id) REFERENCES clients (id),
                FOREIGN KEY (session_id) REFERENCES interview_sessions (id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_support_plans_lookup
            ON support_plans (organization_id, status, next_monitoring_date)
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS support_plan_versions (
                id TEXT PRIMARY KEY,
                plan_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                plan_content TEXT NOT NULL,
                changes TEXT,
                is_locked BOOLEAN DEFAULT FALSE,
                created_by_id TEXT NOT NULL,
                created_at TIMESTAMP,
                UNIQUE (plan_id, version),
                FOREIGN KEY (plan_id) REFERENCES support_plans (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS plan_monitorings (
                id TEXT PRIMARY KEY,
                plan_id TEXT NOT NULL,
                monitoring_date DATE NOT NULL,
                result TEXT NOT NULL,
                has_changes BOOLEAN DEFAULT FALSE,
                next_monitoring_date DATE,
                notes TEXT,
                conducted_by_id TEXT NOT NULL,
                created_at TIMESTAMP,
                FOREIGN KEY (plan_id) REFERENCES support_plans (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS daily_reports (
                id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                date DATE NOT NULL,
                work_content TEXT,
                mood INTEGER,
                health INTEGER,
                reflection TEXT,
                concerns TEXT,
                is_submitted BOOLEAN DEFAULT FALSE,
                submitted_at TIMESTAMP,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                UNIQUE (client_id, date),
                FOREIGN KEY (client_id) REFERENCES clients (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS daily_report_comments (
                id TEXT PRIMARY KEY,
                report_id TEXT NOT NULL,
                staff_id TEXT NOT NULL,
                content TEXT NOT NULL,
                is_template BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP,
                FOREIGN KEY (report_id) REFERENCES daily_reports (id),
                FOREIGN KEY (staff_id) REFERENCES staff_users (id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                staff_id TEXT,
                action TEXT NOT NULL,
                resource TEXT NOT NULL,
                resource_id TEXT,
                details TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_audit_logs_lookup
            ON audit_logs (resource, resource_id, created_at)
        ''')

        conn.commit()
        logger.info("Database initialized successfully")

def seed_test_data():
    """Add a demo facility with staff, clients and a default wage rule"""
    from app.core.security import hash_password  # Import here to avoid circular imports

    with get_db() as conn:
        cursor = conn.cursor()

        # Check if we already have an organization
        cursor.execute("SELECT COUNT(*) FROM organizations")
        count = cursor.fetchone()[0]

        if count > 0:
            logger.info(f"Database already has {count} organizations")
            return

        org_id = new_id()
        created = now_iso()
        cursor.execute(
            "INSERT INTO organizations (id, name, capacity) VALUES (?, ?, ?)",
            (org_id, "就労支援センターみらい", 20)
        )

        test_staff = [
            (new_id(), org_id, "admin@example.com", hash_password("admin1234"), "管理者 太郎", "admin"),
            (new_id(), org_id, "manager@example.com", hash_password("manager1234"), "サビ管 花子", "service_manager"),
            (new_id(), org_id, "staff@example.com", hash_password("staff1234"), "支援員 次郎", "support_staff"),
        ]
        cursor.executemany('''
            INSERT INTO staff_users (id, organization_id, email, password_hash, name, role)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', test_staff)

        test_clients = [
            (new_id(), org_id, "C001", "山田", "一郎", "employment_continuation_b"),
            (new_id(), org_id, "C002", "佐藤", "美咲", "employment_continuation_b"),
            (new_id(), org_id, "C003", "鈴木", "健太", "employment_continuation_a"),
        ]
        cursor.executemany('''
            INSERT INTO clients (id, organization_id, client_number, last_name, first_name, service_type, start_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', [c + (date.today().replace(day=1).isoformat(),) for c in test_clients])

        cursor.execute('''
            INSERT INTO client_users (id, client_id, email, password_hash)
            VALUES (?, ?, ?, ?)
        ''', (new_id(), test_clients[0][0], "client@example.com", hash_password("client1234")))

        cursor.execute('''
            INSERT INTO wage_rules (
                id, organization_id, client_id, name, calculation_type, hourly_rate,
                piece_rates, deductions, valid_from, is_default, created_at
            ) VALUES (?, ?, NULL, ?, 'mixed', ?, ?, ?, ?, TRUE, ?)
        ''', (
            new_id(), org_id, "標準工賃（時給＋出来高）", 250,
            json.dumps([
                {"workType": "assembly", "unitPrice": 50},
                {"workType": "packing", "unitPrice": 80},
            ]),
            json.dumps([]),
            "2024-01-01",
            created,
        ))

        conn.commit()
        logger.info(f"Added demo organization with {len(test_staff)} staff and {len(test_clients)} clients")
