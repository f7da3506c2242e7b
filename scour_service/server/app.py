# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request
from pydantic import BaseModel

from scour_service import __version__
from scour_service.core.job_manager import AdvanceParams
from scour_service.core.runner import ScourRunner
from scour_service.errors import (
    ConfigError,
    IncidentNotFoundError,
    JobBusyError,
    JobNotFoundError,
    QuotaExceededError,
    SourceNotFoundError,
    StoreError,
)
from scour_service.schemas import JobProgress, ScourJob, SourceRunResult
from scour_service.server.auth import AuthError, Identity, resolve_identity

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ("/health",)

_CAMEL_RE = re.compile(r"_([a-z0-9])")


def camel(key: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), key)


def camelize(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {camel(str(k)): camelize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [camelize(v) for v in obj]
    return obj


def job_view(job: ScourJob) -> Dict[str, Any]:
    out = camelize(job)
    out["total"] = job.total
    out["errorCount"] = len(job.errors)
    return out


def progress_view(p: JobProgress) -> Dict[str, Any]:
    job = p.job
    return {
        "jobId": job.id,
        "kind": job.kind,
        "status": job.status,
        "total": job.total,
        "nextIndex": job.next_index,
        "processed": job.processed,
        "created": job.created,
        "duplicatesSkipped": job.duplicates_skipped,
        "lowConfidenceSkipped": job.low_confidence_skipped,
        "errorCount": len(job.errors),
        "processedThisCall": p.processed_this_call,
        "createdThisCall": p.created_this_call,
        "errorsThisCall": camelize(p.errors_this_call),
        "rejectionsThisCall": camelize(p.rejections_this_call),
        "done": p.done,
    }


def result_view(res: SourceRunResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "created": res.outcome == "created",
        "dup": res.outcome == "dup",
        "low": res.outcome == "low",
    }
    if res.incident_id:
        out["incidentId"] = res.incident_id
    if res.dup_grouped_into:
        out["dupGroupedInto"] = res.dup_grouped_into
    if res.outcome == "error":
        out["error"] = res.reason
    if res.outcome == "reject":
        out["reject"] = res.reason
    if res.outcome == "low":
        out["reason"] = res.reason
    return out


def _ms_to_s(v: Any) -> Optional[float]:
    return None if v is None else float(v) / 1000.0


def _opt_int(v: Any) -> Optional[int]:
    return None if v is None else int(v)


def create_app(runner: ScourRunner) -> Flask:
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.extensions["scour_runner"] = runner
    settings = runner.settings

    # -------------------------
    # Access gate
    # -------------------------
    @app.before_request
    def _authenticate():
        if request.path in PUBLIC_PATHS:
            g.identity = Identity(user_id=None, admin=False)
            return None
        g.identity = resolve_identity(request.headers, settings.auth)
        return None

    def quota():
        ident: Identity = g.identity
        return runner.quota_for(None if ident.admin else ident.user_id)

    # -------------------------
    # Error mapping
    # -------------------------
    def _error(status: int, code: str, e: Exception):
        return jsonify({"error": code, "message": str(e)}), status

    @app.errorhandler(AuthError)
    def _auth(e: AuthError):
        return _error(e.status_code, "unauthorized" if e.status_code == 401 else "forbidden", e)

    @app.errorhandler(JobNotFoundError)
    @app.errorhandler(SourceNotFoundError)
    @app.errorhandler(IncidentNotFoundError)
    def _not_found(e: Exception):
        return _error(404, "not_found", e)

    @app.errorhandler(JobBusyError)
    def _busy(e: JobBusyError):
        return _error(409, "job_busy", e)

    @app.errorhandler(QuotaExceededError)
    def _quota(e: QuotaExceededError):
        return _error(429, "quota_exceeded", e)

    @app.errorhandler(ValueError)
    def _bad_request(e: ValueError):
        return _error(400, "bad_request", e)

    @app.errorhandler(ConfigError)
    @app.errorhandler(StoreError)
    def _fatal(e: Exception):
        logger.error(f"HTTP fatal | path={request.path} err={type(e).__name__}: {e}")
        return _error(500, "internal", e)

    # -------------------------
    # Routes
    # -------------------------
    @app.get("/health")
    def health():
        return jsonify({
            "ok": True,
            "version": __version__,
            "store": settings.store_backend,
            "geoColumns": runner.stores.incidents.supports_geo_columns(),
        })

    async def _advance(job_id: str, body: Dict[str, Any], days_back: Optional[int]):
        params = AdvanceParams.clamped(
            settings.scour,
            time_budget_s=_ms_to_s(body.get("callBudgetMs")),
            batch_size=_opt_int(body.get("batchSize")),
            source_timeout_s=_ms_to_s(body.get("sourceTimeoutMs")),
            days_back=days_back,
        )
        progress = await runner.jobs.advance(
            job_id,
            time_budget_s=params.time_budget_s,
            batch_size=params.batch_size,
            source_timeout_s=params.source_timeout_s,
            days_back=days_back,
            quota=quota(),
        )
        return jsonify(progress_view(progress))

    @app.post("/scour-sources")
    async def scour_sources():
        body = request.get_json(silent=True) or {}
        job_id = body.get("jobId")
        days_back = _opt_int(body.get("daysBack"))
        if not job_id:
            job = runner.create_job(
                list(body.get("sourceIds") or []),
                max_sources=_opt_int(body.get("maxSources")),
                days_back=days_back,
            )
            job_id = job.id
        return await _advance(job_id, body, days_back)

    @app.post("/scour/early-signals")
    async def scour_early_signals():
        body = request.get_json(silent=True) or {}
        job_id = body.get("jobId")
        if not job_id:
            job = runner.jobs.create_early_signals_job(
                countries=list(body.get("countries") or []) or None,
                categories=list(body.get("categories") or []) or None,
                max_queries=_opt_int(body.get("maxQueries")),
            )
            job_id = job.id
        # the job carries its own days_back
        return await _advance(job_id, body, None)

    @app.get("/scour/status")
    def scour_status():
        job_id = runner.resolve_job_id(request.args.get("jobId"))
        if not job_id:
            raise JobNotFoundError("no scour job has been started")
        return jsonify({"job": job_view(runner.jobs.get_job(job_id))})

    @app.post("/sources/<source_id>/scour")
    async def scour_one(source_id: str):
        body = request.get_json(silent=True) or {}
        res = await runner.scour_source(
            source_id,
            timeout_s=_ms_to_s(body.get("timeoutMs")),
            days_back=_opt_int(body.get("daysBack")),
            quota=quota(),
        )
        return jsonify({"result": result_view(res)})

    @app.get("/sources/<source_id>/scour-stats")
    def scour_stats(source_id: str):
        if runner.stores.sources.get(source_id) is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        return jsonify({"stats": camelize(runner.health.get(source_id))})

    @app.post("/trends/process-alert/<incident_id>")
    async def process_alert(incident_id: str):
        trend = await runner.trends.process_incident(incident_id, quota=quota())
        out: Dict[str, Any] = {"matched": trend is not None}
        if trend is not None:
            out["trendId"] = trend.id
        return jsonify(out)

    @app.post("/trends/create-from-unmatched")
    async def create_from_unmatched():
        created = await runner.trends.create_trends_from_unmatched(quota=quota())
        return jsonify({"created": len(created), "trendIds": [t.id for t in created]})

    @app.post("/alerts/<incident_id>/<action>")
    async def alert_transition(incident_id: str, action: str):
        incident, trend = await runner.set_incident_status(incident_id, action, quota=quota())
        out: Dict[str, Any] = {"alert": camelize(incident), "matched": trend is not None}
        if trend is not None:
            out["trendId"] = trend.id
        return jsonify(out)

    return app
