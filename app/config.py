# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except ValueError:
        return default or {}


class Settings:
    # ── Supabase (local mirror) ──────────────────────────────────────────────
    SUPABASE_URL: str = _rstrip_slash(os.getenv("SUPABASE_URL", ""))
    SUPABASE_KEY: str = os.getenv("SUPABASE_KEY", "") or os.getenv("SUPABASE_ANON_KEY", "")
    PRODUCTS_TABLE: str = os.getenv("PRODUCTS_TABLE", "products_new")
    SUPABASE_TIMEOUT: float = _get_float("SUPABASE_TIMEOUT", 10.0)

    # ── WooCommerce (remote catalog) ─────────────────────────────────────────
    # Per-project credentials live in the project registry; these are fallbacks
    # used when a project entry leaves them blank.
    WC_BASE_URL: str = _rstrip_slash(os.getenv("WC_BASE_URL", ""))
    WC_API_KEY: str = os.getenv("WC_API_KEY", "")
    WC_API_SECRET: str = os.getenv("WC_API_SECRET", "")
    WC_TIMEOUT: float = _get_float("WC_TIMEOUT", 10.0)
    WC_VERIFY_SSL: bool = _get_bool("WC_VERIFY_SSL", True)
    WC_PAGE_SIZE: int = _get_int("WC_PAGE_SIZE", 100)
    WC_PAGE_DELAY: float = _get_float("WC_PAGE_DELAY", 0.1)

    # Webhook HMAC secret (support both names)
    WOO_WEBHOOK_SECRET: str = os.getenv("WOO_WEBHOOK_SECRET", "") or os.getenv("WC_WEBHOOK_SECRET", "")
    WOO_WEBHOOK_DEBUG: bool = _get_bool("WOO_WEBHOOK_DEBUG", False)

    # ── Reconciliation tuning ────────────────────────────────────────────────
    SYNC_CHUNK_SIZE: int = _get_int("SYNC_CHUNK_SIZE", 50)
    UPLOAD_CHUNK_SIZE: int = _get_int("UPLOAD_CHUNK_SIZE", 200)
    SYNC_CHUNK_DELAY: float = _get_float("SYNC_CHUNK_DELAY", 0.3)
    SYNC_MAX_ATTEMPTS: int = _get_int("SYNC_MAX_ATTEMPTS", 3)
    SYNC_BACKOFF_BASE: float = _get_float("SYNC_BACKOFF_BASE", 0.5)

    # Metadata key / sentinel used for the out-of-stock flag
    STOCK_META_KEY: str = os.getenv("STOCK_META_KEY", "het_hang")
    OUT_OF_STOCK_TEXT: str = os.getenv("OUT_OF_STOCK_TEXT", "Hết hàng")

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    # ── Paths / storage ──────────────────────────────────────────────────────
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    PROJECTS_PATH: str = os.getenv("PROJECTS_PATH", os.path.join(DATA_DIR, "projects.json"))
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Optional {"<project_id>": "<products table>"} overrides
    PROJECT_TABLE_MAP: dict = _get_json_map("PROJECT_TABLE_MAP", {})


settings = Settings()
