# app/webhooks/woo.py
# WooCommerce product webhooks → single-row mirror updates
import base64, hmac, hashlib, logging
from typing import Tuple

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config import settings
from app.errors import MirrorError
from app.models.projects import Project
from app.projects.project_store import get_project
from app.routes import get_mirror_factory
from app.sync.components.mapping import map_remote_to_record
from app.woo.woo_models import RemoteProduct, WooWebhookProduct

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/webhooks/woo", tags=["Woo Webhooks"])


def _redact(headers: dict[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        out[k] = "<redacted>" if k.lower() == "x-wc-webhook-signature" else v
    return out


def _b64_hmac_sha256(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode("utf-8")


def _split_topic(topic: str) -> tuple[str | None, str | None]:
    """Split 'product.updated' → ('product','updated'), tolerate weird inputs."""
    if not topic or "." not in topic:
        return None, None
    a, b = topic.split(".", 1)
    return a or None, b or None


def _webhook_secret(project: Project) -> str:
    return str(project.options.get("webhook_secret") or settings.WOO_WEBHOOK_SECRET or "")


def _verify_signature(request: Request, body: bytes, secret: str) -> Tuple[bool, str]:
    """(ok, received_sig). No secret configured → never ok."""
    received = request.headers.get("X-WC-Webhook-Signature") or ""
    if not secret:
        return False, received
    expected = _b64_hmac_sha256(secret, body)
    return hmac.compare_digest(received, expected), received


@router.post("")
@router.post("/")
async def woo_webhook(
    request: Request,
    project_id: int = Query(...),
    mirror_factory=Depends(get_mirror_factory),
) -> Response:
    if settings.WOO_WEBHOOK_DEBUG:
        logger.info("[WEBHOOK][DEBUG] incoming headers=%s", _redact(dict(request.headers.items())))

    body = await request.body()

    # Woo "ping" on webhook creation: unsigned, form-encoded `webhook_id=...`
    ctype = (request.headers.get("content-type") or "").lower()
    if ctype.startswith("application/x-www-form-urlencoded") and body.startswith(b"webhook_id="):
        logger.info("[WEBHOOK] ping accepted (unsigned) project=%s body_len=%d", project_id, len(body))
        return JSONResponse({"ok": True, "ping": True})

    project = get_project(project_id)
    if project is None:
        return JSONResponse(status_code=404, content={"ok": False, "reason": "unknown_project"})

    ok, _ = _verify_signature(request, body, _webhook_secret(project))
    if not ok:
        logger.warning("[WEBHOOK] signature mismatch for project %s; returning 401", project_id)
        return JSONResponse(status_code=401, content={"ok": False, "reason": "invalid_signature"})

    topic = request.headers.get("X-WC-Webhook-Topic") or ""
    resource = request.headers.get("X-WC-Webhook-Resource")
    event = request.headers.get("X-WC-Webhook-Event")
    if (not resource or not event) and topic:
        a, b = _split_topic(topic)
        resource = resource or a
        event = event or b

    if settings.WOO_WEBHOOK_DEBUG:
        logger.info("[WEBHOOK] topic=%s resource=%s event=%s body_len=%d", topic, resource, event, len(body))

    if resource != "product" or event not in ("created", "updated", "deleted", "restored"):
        return JSONResponse({"ok": True, "ignored": True, "topic": topic})

    try:
        raw = await request.json()
    except ValueError as e:
        return JSONResponse(status_code=422, content={"ok": False, "reason": "invalid_payload", "error": str(e)})

    # the mirror only holds published products, same as a full catalog fetch
    if event != "deleted" and isinstance(raw, dict) and raw.get("status") not in (None, "", "publish"):
        event = "deleted"

    mirror = mirror_factory(project)
    try:
        if event == "deleted":
            ref = WooWebhookProduct.model_validate(raw)
            if ref.id is None:
                return JSONResponse(status_code=422, content={"ok": False, "reason": "missing_id"})
            row = await mirror.find_by_external_id(project.project_id, ref.id)
            deleted = 0
            if row is not None:
                deleted = await mirror.delete_by_ids(project.project_id, [row["id"]])
            logger.info("[WEBHOOK] project=%s product %s deleted (%s rows)", project_id, ref.id, deleted)
            return JSONResponse({"ok": True, "topic": topic, "deleted": deleted})

        product = RemoteProduct.model_validate(raw)
        result = await mirror.upsert_chunk(project.project_id, [map_remote_to_record(product, project.project_id)])
        if not result.ok:
            logger.error("[WEBHOOK] project=%s upsert of product %s failed: %s", project_id, product.id, result.error)
            return JSONResponse(status_code=502, content={"ok": False, "reason": "mirror_rejected", "error": result.error})
        logger.info("[WEBHOOK] project=%s product %s %s", project_id, product.id, event)
        return JSONResponse({"ok": True, "topic": topic, "upserted": result.count})
    except ValidationError as e:
        logger.warning("[WEBHOOK] payload validation error: %s", e.errors()[:1])
        return JSONResponse(status_code=422, content={"ok": False, "reason": "invalid_payload"})
    except MirrorError as e:
        logger.error("[WEBHOOK] mirror error for project %s: %s", project_id, e)
        return JSONResponse(status_code=502, content={"ok": False, "reason": "mirror_error", "error": str(e)})
    finally:
        await mirror.aclose()
