"""Runtime configuration for the Sriox control panel.

All settings come from environment variables. ``load_settings()`` reads them at
call time so tests and the CLI can build independent ``Settings`` instances.

Environment Variables:
    SRIOX_DB_PATH: SQLite registry path (default: /data/sriox/sriox.db)
    GITHUB_TOKEN: Token with repo + pages scope
    GITHUB_USERNAME: Account that owns the site repositories
    GITHUB_API_URL: GitHub API base URL (default: https://api.github.com)
    CLOUDFLARE_API_TOKEN: Token with DNS edit permission on the zone
    CLOUDFLARE_ZONE_ID: Zone that holds the site subdomains
    CLOUDFLARE_API_URL: Cloudflare API base URL
    BASE_DOMAIN: Parent domain for site subdomains (default: sriox.com)
    REPO_PREFIX: Prefix for repository names (default: sriox-)
    SESSION_SECRET: HMAC secret for session tokens
    SESSION_LIFETIME: Session token lifetime in seconds (default: 7 days)
    MAX_UPLOAD_SIZE: Maximum total upload size in bytes (default: 50 MB)
    PAGES_SETTLE_DELAY: Seconds to wait between enabling Pages and setting the domain
    SAGA_TIMEOUT: Overall deadline in seconds for one provisioning/edit request
    STRICT_UPLOADS: "1" to fail a provision when any file upload fails
    UPSTREAM_TIMEOUT: Per-request timeout in seconds for upstream API calls
    HOST / PORT: Bind address for ``python -m sriox serve``
    LOG_LEVEL: Root logging level (default: INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DB_PATH: Path = Path("/data/sriox/sriox.db")
"""Registry database location when SRIOX_DB_PATH is unset."""

DEFAULT_MAX_UPLOAD_SIZE: int = 50 * 1024 * 1024
"""Maximum upload size in bytes (50 MB)."""

DEFAULT_SESSION_LIFETIME: int = 60 * 60 * 24 * 7
"""Session token validity period in seconds (7 days)."""


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process.

    Attributes:
        db_path: SQLite registry path.
        github_token: GitHub API token.
        github_username: Owner of the site repositories.
        github_api_url: GitHub REST API base URL.
        cloudflare_token: Cloudflare API token.
        cloudflare_zone_id: Cloudflare zone ID.
        cloudflare_api_url: Cloudflare REST API base URL.
        base_domain: Parent domain; sites live at <subdomain>.<base_domain>.
        repo_prefix: Repository name prefix; repos are <prefix><subdomain>.
        session_secret: HMAC secret for bearer session tokens.
        session_lifetime: Token lifetime in seconds.
        max_upload_bytes: Upper bound on the total size of one upload.
        pages_settle_delay: Pause before configuring the custom domain.
        saga_timeout: Deadline for a whole provisioning or edit request.
        strict_uploads: Fail provisioning if any single file upload fails.
        upstream_timeout: httpx timeout per upstream request.
        host: Bind host for the HTTP server.
        port: Bind port for the HTTP server.
        log_level: Root logging level name.
    """

    db_path: Path = DEFAULT_DB_PATH
    github_token: str = ""
    github_username: str = ""
    github_api_url: str = "https://api.github.com"
    cloudflare_token: str = ""
    cloudflare_zone_id: str = ""
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"
    base_domain: str = "sriox.com"
    repo_prefix: str = "sriox-"
    session_secret: str = ""
    session_lifetime: int = DEFAULT_SESSION_LIFETIME
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_SIZE
    pages_settle_delay: float = 3.0
    saga_timeout: float = 120.0
    strict_uploads: bool = False
    upstream_timeout: float = 30.0
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    def repo_name(self, subdomain: str) -> str:
        """Repository name for a subdomain."""
        return f"{self.repo_prefix}{subdomain}"

    def custom_domain(self, subdomain: str) -> str:
        """Fully qualified site domain for a subdomain."""
        return f"{subdomain}.{self.base_domain}"

    def pages_host(self) -> str:
        """Host name GitHub Pages serves this account's sites from."""
        return f"{self.github_username.lower()}.github.io"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        db_path=Path(os.getenv("SRIOX_DB_PATH", str(DEFAULT_DB_PATH))),
        github_token=os.getenv("GITHUB_TOKEN", ""),
        github_username=os.getenv("GITHUB_USERNAME", ""),
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
        cloudflare_token=os.getenv("CLOUDFLARE_API_TOKEN", ""),
        cloudflare_zone_id=os.getenv("CLOUDFLARE_ZONE_ID", ""),
        cloudflare_api_url=os.getenv("CLOUDFLARE_API_URL", "https://api.cloudflare.com/client/v4"),
        base_domain=os.getenv("BASE_DOMAIN", "sriox.com"),
        repo_prefix=os.getenv("REPO_PREFIX", "sriox-"),
        session_secret=os.getenv("SESSION_SECRET", ""),
        session_lifetime=int(os.getenv("SESSION_LIFETIME", str(DEFAULT_SESSION_LIFETIME))),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_SIZE", str(DEFAULT_MAX_UPLOAD_SIZE))),
        pages_settle_delay=float(os.getenv("PAGES_SETTLE_DELAY", "3")),
        saga_timeout=float(os.getenv("SAGA_TIMEOUT", "120")),
        strict_uploads=_env_bool("STRICT_UPLOADS"),
        upstream_timeout=float(os.getenv("UPSTREAM_TIMEOUT", "30")),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
