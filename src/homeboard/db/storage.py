"""SQLite storage for the marketplace."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from homeboard.db.account_repo import AccountRepository
from homeboard.db.analytics_repo import AnalyticsRepository
from homeboard.db.digest_repo import DigestRepository
from homeboard.db.impersonation_repo import ImpersonationRepository
from homeboard.db.listing_queries import ListingQueryService
from homeboard.db.listing_repo import ListingRepository
from homeboard.logging import get_logger

logger = get_logger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        full_name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'tenant',
        email TEXT,
        phone TEXT,
        agency TEXT,
        is_admin INTEGER NOT NULL DEFAULT 0,
        is_banned INTEGER NOT NULL DEFAULT 0,
        can_feature_listings INTEGER NOT NULL DEFAULT 0,
        max_featured_listings_per_user INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS listings (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        listing_type TEXT DEFAULT 'rental',
        title TEXT NOT NULL,
        description TEXT,
        location TEXT NOT NULL,
        neighborhood TEXT,
        cross_streets TEXT,
        bedrooms INTEGER NOT NULL,
        additional_rooms INTEGER DEFAULT 0,
        bathrooms REAL NOT NULL,
        floor INTEGER,
        square_footage INTEGER,
        price INTEGER,
        call_for_price INTEGER NOT NULL DEFAULT 0,
        asking_price INTEGER,
        sale_status TEXT,
        property_type TEXT NOT NULL,
        parking TEXT NOT NULL DEFAULT 'no',
        lease_length TEXT,
        heat TEXT NOT NULL DEFAULT 'tenant_pays',
        broker_fee INTEGER NOT NULL DEFAULT 0,
        contact_name TEXT NOT NULL,
        contact_phone TEXT NOT NULL,
        latitude REAL,
        longitude REAL,
        is_featured INTEGER NOT NULL DEFAULT 0,
        featured_started_at TEXT,
        featured_expires_at TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        approved INTEGER NOT NULL DEFAULT 0,
        views INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT,
        last_published_at TEXT,
        deactivated_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_listings_browse"
    " ON listings(is_active, approved, listing_type, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_listings_user ON listings(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_featured"
    " ON listings(is_featured, featured_expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_listings_expires ON listings(is_active, expires_at)",
    """
    CREATE TABLE IF NOT EXISTS listing_images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id TEXT NOT NULL REFERENCES listings(id) ON DELETE CASCADE,
        image_url TEXT NOT NULL,
        is_featured INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_listing_images_listing ON listing_images(listing_id)",
    """
    CREATE TABLE IF NOT EXISTS favorites (
        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        listing_id TEXT NOT NULL REFERENCES listings(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        PRIMARY KEY (user_id, listing_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        max_featured_listings INTEGER,
        max_featured_per_user INTEGER,
        max_featured_boost_positions INTEGER,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS impersonation_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        admin_user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        impersonated_user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        session_token TEXT NOT NULL UNIQUE,
        started_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        ended_at TEXT,
        ip_address TEXT,
        user_agent TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_impersonation_admin"
    " ON impersonation_sessions(admin_user_id, ended_at)",
    """
    CREATE TABLE IF NOT EXISTS impersonation_audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL REFERENCES impersonation_sessions(id) ON DELETE CASCADE,
        admin_user_id TEXT NOT NULL,
        impersonated_user_id TEXT NOT NULL,
        action_type TEXT NOT NULL,
        action_details TEXT,
        page_path TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analytics_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        anon_id TEXT NOT NULL,
        user_id TEXT,
        event_name TEXT NOT NULL,
        props TEXT NOT NULL DEFAULT '{}',
        occurred_at TEXT NOT NULL,
        ua TEXT,
        ip_hash TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_occurred ON analytics_events(occurred_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_name_time"
    " ON analytics_events(event_name, occurred_at)",
    """
    CREATE TABLE IF NOT EXISTS daily_analytics (
        date TEXT PRIMARY KEY,
        dau INTEGER NOT NULL DEFAULT 0,
        visitors INTEGER NOT NULL DEFAULT 0,
        returners INTEGER NOT NULL DEFAULT 0,
        avg_session_minutes REAL NOT NULL DEFAULT 0,
        listing_views INTEGER NOT NULL DEFAULT 0,
        post_starts INTEGER NOT NULL DEFAULT 0,
        post_submits INTEGER NOT NULL DEFAULT 0,
        post_success INTEGER NOT NULL DEFAULT 0,
        post_abandoned INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_top_listings (
        date TEXT NOT NULL,
        listing_id TEXT NOT NULL,
        views INTEGER NOT NULL DEFAULT 0,
        impressions INTEGER NOT NULL DEFAULT 0,
        ctr REAL NOT NULL DEFAULT 0,
        rank INTEGER NOT NULL,
        PRIMARY KEY (date, listing_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_top_filters (
        date TEXT NOT NULL,
        filter_key TEXT NOT NULL,
        filter_value TEXT NOT NULL,
        uses INTEGER NOT NULL DEFAULT 0,
        rank INTEGER NOT NULL,
        PRIMARY KEY (date, filter_key, filter_value)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        template_type TEXT NOT NULL,
        filter_config TEXT NOT NULL DEFAULT '{}',
        category_limits TEXT NOT NULL DEFAULT '{}',
        sort_preference TEXT NOT NULL DEFAULT 'newest_first',
        allow_resend INTEGER NOT NULL DEFAULT 0,
        resend_after_days INTEGER NOT NULL DEFAULT 7,
        ignore_send_history INTEGER NOT NULL DEFAULT 0,
        subject_template TEXT NOT NULL,
        is_default INTEGER NOT NULL DEFAULT 0,
        usage_count INTEGER NOT NULL DEFAULT 0,
        last_used_at TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_sent_listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        template_id INTEGER REFERENCES digest_templates(id) ON DELETE CASCADE,
        listing_id TEXT NOT NULL REFERENCES listings(id) ON DELETE CASCADE,
        sent_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_digest_sent"
    " ON digest_sent_listings(template_id, listing_id, sent_at)",
    """
    CREATE TABLE IF NOT EXISTS digest_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_at TEXT NOT NULL,
        template_id INTEGER,
        listings_count INTEGER NOT NULL DEFAULT 0,
        recipients_count INTEGER NOT NULL DEFAULT 0,
        success INTEGER NOT NULL,
        error_message TEXT
    )
    """,
)

# Columns added after the first release; applied to older databases on startup
_LISTING_MIGRATIONS = (
    ("approval_email_sent_at", "TEXT", None),
    ("cross_streets", "TEXT", None),
    ("additional_rooms", "INTEGER", "0"),
)


class MarketplaceStorage:
    """SQLite-backed storage composed of focused repositories.

    All repositories share one lazily-opened aiosqlite connection.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()
        self.queries = ListingQueryService(self._get_connection)
        self.listings = ListingRepository(self._get_connection)
        self.accounts = AccountRepository(self._get_connection)
        self.impersonation = ImpersonationRepository(self._get_connection)
        self.analytics = AnalyticsRepository(self._get_connection)
        self.digests = DigestRepository(self._get_connection)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def initialize(self) -> None:
        """Create tables and indexes, then apply column migrations."""
        conn = await self._get_connection()
        for statement in _SCHEMA:
            await conn.execute(statement)

        for column, col_type, default in _LISTING_MIGRATIONS:
            try:
                default_clause = f" DEFAULT {default}" if default is not None else ""
                await conn.execute(
                    f"ALTER TABLE listings ADD COLUMN {column} {col_type}{default_clause}"
                )
            except aiosqlite.OperationalError as e:
                if "duplicate column" not in str(e).lower():
                    raise

        await conn.commit()
        logger.info("database_initialized", db_path=self.db_path)

    async def ping(self) -> bool:
        """Cheap liveness query for the health endpoint."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT 1")
        row = await cursor.fetchone()
        return row is not None
