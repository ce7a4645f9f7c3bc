"""Resource registry for sites and their files, backed by SQLite.

The registry is the source of truth for "does this site exist to the user".
External references (repository, Pages URL) are written once at creation and
only go away when the row is deleted. Every read and write is scoped by the
owning user so one tenant can never reach another tenant's rows.

Thread-safe SQLite access follows the same pattern as the rest of the service:
one connection per thread, WAL journal, schema created lazily on first use.

Usage:
    registry = Registry(db_path)

    registry.subdomain_taken(subdomain) -> bool
    registry.create_site(owner_id, subdomain, name, ...) -> Site
    registry.add_files(site_id, [FileRecord, ...]) -> list[SiteFile]
    registry.list_sites(owner_id) -> list[Site]
    registry.get_site(owner_id, site_id) -> Site | None
    registry.get_site_by_subdomain(owner_id, subdomain) -> Site | None
    registry.list_files(owner_id, site_id) -> list[SiteFile]
    registry.find_file(site_id, file_id) -> tuple[SiteFile, Site] | None
    registry.update_file_fingerprint(owner_id, site_id, file_id, fingerprint, size) -> bool
    registry.delete_site(owner_id, site_id) -> bool
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .errors import Conflict, RegistryError

_LOG = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Site:
    """A provisioned static site.

    Attributes:
        id: Registry primary key (uuid4 hex).
        owner_id: Identity of the owning user.
        subdomain: Unique subdomain label.
        name: Display name (defaults to the subdomain).
        description: Optional free-text description.
        repo_name: Content repository name on the content host.
        repo_url: Browser URL of the content repository.
        pages_url: Published artifact address on the content host.
        created_at: ISO timestamp of creation.
    """

    id: str
    owner_id: str
    subdomain: str
    name: str
    description: str | None
    repo_name: str
    repo_url: str
    pages_url: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SiteFile:
    """Metadata for one file of a site.

    Attributes:
        id: Registry primary key (uuid4 hex).
        site_id: Owning site.
        filename: Path of the file inside the repository (flat).
        file_type: Content media type.
        size_bytes: Size of the current content in bytes.
        fingerprint: Content host version token for optimistic concurrency.
        updated_at: ISO timestamp of the last write.
    """

    id: str
    site_id: str
    filename: str
    file_type: str
    size_bytes: int
    fingerprint: str | None
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FileRecord:
    """Input row for ``Registry.add_files``."""

    filename: str
    file_type: str
    size_bytes: int
    fingerprint: str | None


def _site_from_row(row: sqlite3.Row) -> Site:
    return Site(
        id=row["id"],
        owner_id=row["owner_id"],
        subdomain=row["subdomain"],
        name=row["name"],
        description=row["description"],
        repo_name=row["repo_name"],
        repo_url=row["repo_url"],
        pages_url=row["pages_url"],
        created_at=row["created_at"],
    )


def _file_from_row(row: sqlite3.Row) -> SiteFile:
    return SiteFile(
        id=row["id"],
        site_id=row["site_id"],
        filename=row["filename"],
        file_type=row["file_type"],
        size_bytes=row["size_bytes"],
        fingerprint=row["fingerprint"],
        updated_at=row["updated_at"],
    )


class Registry:
    """Thread-safe SQLite registry.

    Uses a connection per thread with proper locking.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the registry.

        Args:
            db_path: Path to the SQLite database file. Created on first use.
        """
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a connection for the current thread."""
        if getattr(self._local, "conn", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            # Cascading file deletes depend on this; it is per-connection
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn

        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._init_schema(self._local.conn)
                    self._initialized = True

        return self._local.conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Create the sites and site_files tables."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS sites (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                subdomain TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                repo_name TEXT NOT NULL,
                repo_url TEXT NOT NULL,
                pages_url TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS site_files (
                id TEXT PRIMARY KEY,
                site_id TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
                filename TEXT NOT NULL,
                file_type TEXT NOT NULL DEFAULT 'text/plain',
                size_bytes INTEGER NOT NULL DEFAULT 0,
                fingerprint TEXT,
                updated_at TEXT NOT NULL,
                UNIQUE (site_id, filename)
            );

            CREATE INDEX IF NOT EXISTS idx_sites_owner ON sites(owner_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_site_files_site ON site_files(site_id);
        """)
        conn.commit()
        _LOG.info("Registry schema initialized at %s", self.db_path)

    def close(self) -> None:
        """Close this thread's connection, if any."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # =========================================================================
    # Sites
    # =========================================================================

    def subdomain_taken(self, subdomain: str) -> bool:
        """Check whether any owner already holds a subdomain.

        Uniqueness is global, so this is the one lookup that is not owner-scoped.
        """
        conn = self._get_conn()
        row = conn.execute(
            "SELECT 1 FROM sites WHERE subdomain = ?",
            (subdomain,)
        ).fetchone()
        return row is not None

    def create_site(
        self,
        owner_id: str,
        subdomain: str,
        name: str,
        description: str | None,
        repo_name: str,
        repo_url: str,
        pages_url: str,
    ) -> Site:
        """Insert a new site row.

        Raises:
            Conflict: Another site claimed the subdomain concurrently.
            RegistryError: Any other database failure.
        """
        site = Site(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            subdomain=subdomain,
            name=name,
            description=description,
            repo_name=repo_name,
            repo_url=repo_url,
            pages_url=pages_url,
            created_at=_now(),
        )
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO sites
                    (id, owner_id, subdomain, name, description,
                     repo_name, repo_url, pages_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    site.id, site.owner_id, site.subdomain, site.name, site.description,
                    site.repo_name, site.repo_url, site.pages_url, site.created_at,
                )
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise Conflict("Subdomain already taken", detail=str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise RegistryError(f"Failed to save site: {e}", detail=str(e)) from e

        _LOG.info("Created site %s (%s) for owner %s", site.id, subdomain, owner_id)
        return site

    def list_sites(self, owner_id: str) -> list[Site]:
        """List an owner's sites, newest first."""
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM sites WHERE owner_id = ? ORDER BY created_at DESC",
            (owner_id,)
        ).fetchall()
        return [_site_from_row(row) for row in rows]

    def all_sites(self) -> list[Site]:
        """List every site regardless of owner (operator tooling only)."""
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM sites ORDER BY created_at").fetchall()
        return [_site_from_row(row) for row in rows]

    def get_site(self, owner_id: str, site_id: str) -> Site | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM sites WHERE id = ? AND owner_id = ?",
            (site_id, owner_id)
        ).fetchone()
        return _site_from_row(row) if row else None

    def get_site_by_subdomain(self, owner_id: str, subdomain: str) -> Site | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM sites WHERE subdomain = ? AND owner_id = ?",
            (subdomain, owner_id)
        ).fetchone()
        return _site_from_row(row) if row else None

    def delete_site(self, owner_id: str, site_id: str) -> bool:
        """Delete a site and, by cascade, all of its files.

        Returns:
            True if a row was deleted.

        Raises:
            RegistryError: The delete failed.
        """
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM sites WHERE id = ? AND owner_id = ?",
                (site_id, owner_id)
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RegistryError(f"Failed to delete site: {e}", detail=str(e)) from e
        return cursor.rowcount > 0

    # =========================================================================
    # Files
    # =========================================================================

    def add_files(self, site_id: str, records: list[FileRecord]) -> list[SiteFile]:
        """Insert file metadata rows for a site in one transaction.

        Raises:
            RegistryError: The insert failed; no rows are written.
        """
        now = _now()
        files = [
            SiteFile(
                id=uuid.uuid4().hex,
                site_id=site_id,
                filename=record.filename,
                file_type=record.file_type or "text/plain",
                size_bytes=record.size_bytes,
                fingerprint=record.fingerprint,
                updated_at=now,
            )
            for record in records
        ]
        if not files:
            return []

        conn = self._get_conn()
        try:
            conn.executemany(
                """
                INSERT INTO site_files
                    (id, site_id, filename, file_type, size_bytes, fingerprint, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (f.id, f.site_id, f.filename, f.file_type, f.size_bytes, f.fingerprint, f.updated_at)
                    for f in files
                ]
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RegistryError(f"Failed to save file metadata: {e}", detail=str(e)) from e

        _LOG.info("Saved %d file rows for site %s", len(files), site_id)
        return files

    def list_files(self, owner_id: str, site_id: str) -> list[SiteFile]:
        conn = self._get_conn()
        rows = conn.execute(
            """
            SELECT f.* FROM site_files f
            JOIN sites s ON s.id = f.site_id
            WHERE f.site_id = ? AND s.owner_id = ?
            ORDER BY f.filename
            """,
            (site_id, owner_id)
        ).fetchall()
        return [_file_from_row(row) for row in rows]

    def find_file(self, site_id: str, file_id: str) -> tuple[SiteFile, Site] | None:
        """Look up a file together with its parent site.

        Not owner-scoped: callers compare ``site.owner_id`` themselves so they
        can tell a missing file apart from someone else's file.
        """
        conn = self._get_conn()
        file_row = conn.execute(
            "SELECT * FROM site_files WHERE id = ? AND site_id = ?",
            (file_id, site_id)
        ).fetchone()
        if not file_row:
            return None
        site_row = conn.execute(
            "SELECT * FROM sites WHERE id = ?",
            (site_id,)
        ).fetchone()
        if not site_row:
            return None
        return _file_from_row(file_row), _site_from_row(site_row)

    def update_file_fingerprint(
        self,
        owner_id: str,
        site_id: str,
        file_id: str,
        fingerprint: str,
        size_bytes: int,
    ) -> bool:
        """Record a new fingerprint and size after a successful content write.

        Returns:
            True if the row was updated.

        Raises:
            RegistryError: The update failed.
        """
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                UPDATE site_files
                SET fingerprint = ?, size_bytes = ?, updated_at = ?
                WHERE id = ? AND site_id = ?
                  AND site_id IN (SELECT id FROM sites WHERE owner_id = ?)
                """,
                (fingerprint, size_bytes, _now(), file_id, site_id, owner_id)
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RegistryError(f"Failed to update file fingerprint: {e}", detail=str(e)) from e
        return cursor.rowcount > 0
