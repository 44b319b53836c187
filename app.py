from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, request
from flask_cors import CORS
from sqlalchemy import text

from actions import dispatch
from actions.badges import configure_badge_allocator
from actions.config_items import configure_config_cache
from auth import assert_permission, is_public_action, role_or_public, validate_session_token
from config import Config
from db import SessionLocal, init_engine
from models import AuditLog
from utils import ApiError, SimpleRateLimiter, err, iso_utc_now, ok, parse_json_body, redact_for_audit

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")

rest_api = Blueprint("rest_api", __name__)


def _rest_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return (
        str(request.headers.get("X-Session-Token") or "").strip()
        or str(request.args.get("token") or "").strip()
        or str((request.get_json(silent=True) or {}).get("token") or "").strip()
    )


def _audit_api_call(db, action_u: str, auth_ctx, data: Any, stage_tag: str) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType="API",
            entityId=str(auth_ctx.userId or auth_ctx.username or "") if auth_ctx else "PUBLIC",
            action=action_u,
            fromState="",
            toState="",
            stageTag=stage_tag,
            remark="",
            actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
            actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
            at=iso_utc_now(),
            metaJson=json.dumps({"data": redact_for_audit(data or {})}),
        )
    )


def _rest_handle(action: str, data: dict):
    cfg = current_app.config["CFG"]
    token = _rest_token()
    action_u = str(action or "").upper().strip()

    db = None
    auth_ctx = None
    try:
        db = SessionLocal()
        auth_ctx = validate_session_token(db, token)
        if not auth_ctx or not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session", http_status=401)

        assert_permission(role_or_public(auth_ctx), action_u)

        out = dispatch(action_u, data or {}, auth_ctx, db, cfg)
        _audit_api_call(db, action_u, auth_ctx, data, "API_CALL_REST")
        db.commit()
        return ok(out)[0]
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, details=e.details)[0], e.http_status
    except Exception:
        if db is not None:
            db.rollback()
        api_err = ApiError("INTERNAL", "Unexpected error")
        _write_error_audit(action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("rest action=%s", action_u)
        return err(api_err.code, api_err.message)[0], 500
    finally:
        if db is not None:
            db.close()


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@rest_api.get("/api/applicants")
def rest_applicants_list():
    return _rest_handle("APPLICANTS_LIST", request.args.to_dict())


@rest_api.post("/api/applicants")
def rest_applicant_create():
    return _rest_handle("APPLICANT_CREATE", _body())


@rest_api.get("/api/applicants/stats")
def rest_applicant_stats():
    return _rest_handle("APPLICANT_STATS", {})


@rest_api.get("/api/applicants/<applicant_id>")
def rest_applicant_get(applicant_id: str):
    return _rest_handle("APPLICANT_GET", {"applicantId": applicant_id})


@rest_api.put("/api/applicants/<applicant_id>/criteria")
def rest_applicant_criteria(applicant_id: str):
    return _rest_handle("APPLICANT_CRITERIA_UPDATE", _body() | {"applicantId": applicant_id})


@rest_api.put("/api/applicants/<applicant_id>/questions")
def rest_applicant_questions(applicant_id: str):
    return _rest_handle("APPLICANT_QUESTIONS_UPDATE", _body() | {"applicantId": applicant_id})


@rest_api.put("/api/applicants/<applicant_id>/onboarding")
def rest_applicant_onboarding(applicant_id: str):
    return _rest_handle("APPLICANT_ONBOARDING_UPDATE", _body() | {"applicantId": applicant_id})


@rest_api.post("/api/applicants/<applicant_id>/assign-roles")
def rest_applicant_assign_roles(applicant_id: str):
    return _rest_handle("APPLICANT_ASSIGN_ROLES", {"applicantId": applicant_id})


@rest_api.post("/api/applicants/<applicant_id>/complete")
def rest_applicant_complete(applicant_id: str):
    return _rest_handle("APPLICANT_COMPLETE", {"applicantId": applicant_id})


@rest_api.post("/api/applicants/<applicant_id>/reject")
def rest_applicant_reject(applicant_id: str):
    return _rest_handle("APPLICANT_REJECT", _body() | {"applicantId": applicant_id})


@rest_api.delete("/api/applicants/<applicant_id>")
def rest_applicant_delete(applicant_id: str):
    return _rest_handle("APPLICANT_DELETE", {"applicantId": applicant_id})


@rest_api.get("/api/blacklist/check/<discord_id>")
def rest_blacklist_check(discord_id: str):
    return _rest_handle("BLACKLIST_CHECK", {"discordId": discord_id})


@rest_api.get("/api/onboarding-config")
def rest_onboarding_config():
    return _rest_handle("ONBOARDING_CONFIG_GET", {})


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init

    Base.metadata.create_all(bind=engine)

    configure_config_cache(ttl_seconds=cfg.CONFIG_CACHE_TTL_SECONDS)
    configure_badge_allocator(max_attempts=cfg.BADGE_CLAIM_MAX_ATTEMPTS)

    app = Flask(__name__)
    app.config["CFG"] = cfg

    CORS(app, origins=cfg.ALLOWED_ORIGINS, supports_credentials=False)
    app.register_blueprint(rest_api)

    limiter = SimpleRateLimiter()

    if not cfg.DISCORD_ENABLED:
        logging.getLogger(__name__).warning("DISCORD_BOT_TOKEN not set; role grants, nicknames and invites are disabled")

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = time.monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/health")
    def health():
        db_status = "ok"
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        except Exception:
            logging.getLogger("api").exception("health db check failed")
            db_status = "error"
        finally:
            db.close()
        body = {"status": "ok" if db_status == "ok" else "degraded", "db": db_status, "time": iso_utc_now(), "version": APP_VERSION}
        return body, 200 if db_status == "ok" else 503

    @app.get("/version")
    def version():
        return {"version": APP_VERSION, "env": cfg.APP_ENV, "time": iso_utc_now()}

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}. Use POST /api for actions.")[0], 404

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.")[0], 405

    @app.post("/api")
    def api_route():
        cfg2: Config = app.config["CFG"]
        raw = request.get_data(as_text=True)
        db = None
        auth_ctx = None
        action_u = ""
        token = None
        data: Any = {}

        try:
            body = parse_json_body(raw)
            action_u = str(body.get("action") or "").upper().strip()
            token = body.get("token")
            data = body.get("data") or {}

            if not action_u:
                raise ApiError("BAD_REQUEST", "Missing action")

            ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
            # Use a generous global limit + a per-action limit to avoid blocking normal SPA usage.
            limiter.check(f"{ip}:GLOBAL", cfg2.RATE_LIMIT_GLOBAL)
            limiter.check(f"{ip}:API:{action_u}", cfg2.RATE_LIMIT_DEFAULT)

            db = SessionLocal()

            if not is_public_action(action_u):
                auth_ctx = validate_session_token(db, token)
                if not auth_ctx.valid:
                    raise ApiError("AUTH_INVALID", "Invalid or expired session")
            elif token:
                maybe = validate_session_token(db, token)
                auth_ctx = maybe if maybe.valid else None

            assert_permission(role_or_public(auth_ctx), action_u)

            out = dispatch(action_u, data, auth_ctx, db, cfg2)

            _audit_api_call(db, action_u, auth_ctx, data, "API_CALL")
            db.commit()

            latency_ms = int((time.monotonic() - g.start_ts) * 1000)
            logging.getLogger("api").info(
                "request_id=%s action=%s user=%s role=%s latency_ms=%s",
                g.request_id,
                action_u,
                (auth_ctx.userId if auth_ctx else "PUBLIC"),
                (auth_ctx.role if auth_ctx else "PUBLIC"),
                latency_ms,
            )

            return ok(out)[0]
        except ApiError as e:
            if db is not None:
                db.rollback()
            _write_error_audit(action_u, auth_ctx, data, e)
            return err(e.code, e.message, details=e.details)[0], e.http_status
        except Exception:
            if db is not None:
                db.rollback()
            api_err = ApiError("INTERNAL", "Unexpected error")
            _write_error_audit(action_u, auth_ctx, data, api_err)
            logging.getLogger("api").exception("request_id=%s action=%s", g.request_id, action_u)
            return err(api_err.code, api_err.message)[0], 500
        finally:
            if db is not None:
                db.close()

    return app


def _write_error_audit(action: str, auth_ctx, data: Any, err_obj: ApiError):
    db2 = SessionLocal()
    try:
        db2.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.username or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                fromState="",
                toState="",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                at=iso_utc_now(),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data or {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        logging.getLogger("api").exception("failed to write error audit for action=%s", action)
        db2.rollback()
    finally:
        db2.close()


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
