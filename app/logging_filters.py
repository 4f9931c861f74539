# --- Global log sanitizer: trim HTML error pages, mask API credentials ----------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

# consumer_key=ck_xxx / consumer_secret=cs_xxx in query strings, bare ck_/cs_ tokens,
# and "apikey"/"Bearer" values from PostgREST headers
_SECRET_RES = (
    re.compile(r'(?i)(consumer_(?:key|secret)=)[^&\s"\']+'),
    re.compile(r'\b(c[ks]_)[0-9a-f]{8,}\b'),
    re.compile(r'(?i)(apikey["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+'),
    re.compile(r'(?i)(bearer\s+)[A-Za-z0-9._\-]+'),
)


def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()


def _summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"


def mask_secrets(s: str) -> str:
    for rx in _SECRET_RES:
        s = rx.sub(r"\1***", s)
    return s


def clean_error_text(text: str, limit: int = 300) -> str:
    """Short, log-safe rendition of an upstream error body."""
    text = text or ""
    if _HTML_SIG_RE.search(text):
        text = _summarize_html(text, limit=limit)
    elif len(text) > limit:
        text = text[:limit] + "…"
    return mask_secrets(text)


class _SanitizeFilter(logging.Filter):
    """Collapse HTML blobs into a summary and mask credentials in every record."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        if not isinstance(msg, str):
            return True
        cleaned = msg
        if len(cleaned) > 200 and _HTML_SIG_RE.search(cleaned):
            cleaned = _summarize_html(cleaned)
        cleaned = mask_secrets(cleaned)
        if cleaned != msg:
            record.msg = cleaned
            record.args = ()
        return True


def install() -> None:
    """Attach the sanitizer once to the root + uvicorn loggers."""
    for _name in ("", "uvicorn", "uvicorn.error"):
        lg = logging.getLogger(_name)
        if not any(isinstance(f, _SanitizeFilter) for f in lg.filters):
            lg.addFilter(_SanitizeFilter())


install()
# --------------------------------------------------------------------------------
