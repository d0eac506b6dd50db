# portal/app.py
from flask import Flask, jsonify, request

# --- Standard libs & typing ---
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from werkzeug.exceptions import RequestEntityTooLarge

from portal import ocr_worker
from portal.contracts import (
    FORM_TRUE,
    validate_analyze_payload,
    validate_pipeline_payload,
    validate_upload_form,
)
from safemeals import ai_client
from safemeals.allergy_classifier import (
    DEFAULT_TIMEOUT_SECONDS,
    ClassificationMode,
    classify_items,
)
from safemeals.menu_normalize import normalize_menu_names
from safemeals.menu_pipeline import DEFAULT_STAGES, PIPELINE_STAGES, run_pipeline
from safemeals.ocr_cleansing import cleanse_ocr_text
from safemeals.ocr_types import OcrFragment, UserSafetyContext
from safemeals.quick_analysis import (
    merge_overall_status,
    ocr_confidence_level,
    perform_quick_analysis,
)
from storage.job_store import JobStoreError, get_job_store
from storage.scan_jobs import (
    JobCoordinator,
    JobNotFoundError,
    JobStateError,
    JobStatus,
)

# --- Paths ---
ROOT = Path(__file__).resolve().parents[1]

# --- Load .env (API key, job store, Tesseract paths) ---
load_dotenv(ROOT / ".env")

log = logging.getLogger(__name__)

# ------------------------
# App & Config
# ------------------------
app = Flask(__name__)

app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("MAX_CONTENT_LENGTH") or 20 * 1024 * 1024)  # ~20 MB
# Tests flip this so analysis jobs run on the request thread.
app.config["SCAN_JOBS_INLINE"] = False

CLASSIFIER_TIMEOUT = float(os.getenv("SAFEMEALS_CLASSIFIER_TIMEOUT") or DEFAULT_TIMEOUT_SECONDS)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _ms_since(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 1)


def _bad_request(message: str):
    return jsonify({"success": False, "message": message}), 400


# ------------------------
# Job coordinator (process default)
# ------------------------
_coordinator: Optional[JobCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator() -> JobCoordinator:
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            _coordinator = JobCoordinator(get_job_store())
        return _coordinator


def set_coordinator(coordinator: Optional[JobCoordinator]) -> None:
    global _coordinator
    with _coordinator_lock:
        _coordinator = coordinator


# ------------------------
# Background analysis
# ------------------------
def run_analysis_job(
    coordinator: JobCoordinator,
    job_id: str,
    context: UserSafetyContext,
    fragments: Optional[List[OcrFragment]] = None,
    image_bytes: Optional[bytes] = None,
    detailed: bool = False,
) -> None:
    """
    OCR (uploads only) -> cleanse -> normalize -> quick result -> classify.

    OCR and unexpected pipeline failures end in fail_job. A failing quick
    pass is logged and skipped; classifier failures already come back as
    DANGER items.
    """
    started = time.perf_counter()
    timings: Dict[str, float] = {}
    try:
        if image_bytes is not None:
            t = time.perf_counter()
            try:
                fragments = ocr_worker.run_ocr(image_bytes)
            except ocr_worker.OcrError as e:
                timings["ocrMs"] = _ms_since(t)
                coordinator.fail_job(job_id, f"OCR failed: {e}", timings)
                return
            timings["ocrMs"] = _ms_since(t)
        fragments = fragments or []

        t = time.perf_counter()
        cleansed = cleanse_ocr_text(fragments)
        timings["cleanseMs"] = _ms_since(t)

        t = time.perf_counter()
        normalized = normalize_menu_names(cleansed)
        timings["normalizeMs"] = _ms_since(t)

        quick = None
        t = time.perf_counter()
        try:
            ocr_text = " ".join(f.text for f in fragments)
            quick = perform_quick_analysis(
                ocr_text,
                context.allergy_tokens,
                context.diet_tokens,
                ocr_confidence=ocr_confidence_level(fragments),
                ocr_failed=image_bytes is not None and not fragments,
            )
            coordinator.record_quick_result(job_id, quick)
        except (JobNotFoundError, JobStateError):
            raise
        except Exception as e:
            log.warning("Quick result skipped for job_id=%s: %s", job_id, e)
            quick = None
        timings["quickMs"] = _ms_since(t)

        mode = ClassificationMode.DETAILED if detailed else ClassificationMode.FAST
        t = time.perf_counter()
        classified = classify_items(
            normalized,
            context,
            mode,
            ai_client.get_generator(),
            timeout=CLASSIFIER_TIMEOUT,
        )
        timings["classifyMs"] = _ms_since(t)
        timings["totalMs"] = _ms_since(started)

        coordinator.complete_job(
            job_id,
            classified,
            timings,
            overall_status=merge_overall_status(quick, classified),
        )
    except (JobNotFoundError, JobStateError) as e:
        log.warning("Job job_id=%s vanished or already finished: %r", job_id, e)
    except Exception as e:
        log.exception("Analysis failed for job_id=%s", job_id)
        timings["totalMs"] = _ms_since(started)
        try:
            coordinator.fail_job(job_id, f"Analysis failed: {e}", timings)
        except (JobNotFoundError, JobStateError, JobStoreError) as inner:
            log.error("Could not mark job_id=%s as failed: %s", job_id, inner)


def _start_job(*args, **kwargs) -> None:
    if app.config.get("SCAN_JOBS_INLINE"):
        run_analysis_job(*args, **kwargs)
        return
    t = threading.Thread(target=run_analysis_job, args=args, kwargs=kwargs, daemon=True)
    t.start()


# ------------------------
# Health
# ------------------------
@app.get("/health")
def health():
    return jsonify({"status": "ok", "time": _now_iso()})


@app.get("/ocr/health")
def ocr_health_route():
    info = ocr_worker.tesseract_health()
    status = "ok" if info.get("version") else "unavailable"
    return jsonify({"status": status, "tesseract": info})


# ------------------------
# OCR pipeline (synchronous)
# ------------------------
@app.get("/api/ocr-pipeline")
def ocr_pipeline_info():
    return jsonify({
        "status": "ok",
        "availableStages": list(PIPELINE_STAGES),
        "defaultStages": list(DEFAULT_STAGES),
        "message": "OCR pipeline API is running",
    })


@app.post("/api/ocr-pipeline")
def ocr_pipeline():
    payload = request.get_json(silent=True)
    ok, err = validate_pipeline_payload(payload)
    if not ok:
        return _bad_request(f"Invalid input: {err}")

    fragments = [OcrFragment.from_dict(f) for f in payload["ocrResults"]]
    stages = payload.get("stages")
    context = None
    if stages and "classify" in stages:
        context = UserSafetyContext.build(
            payload.get("allergies"), payload.get("diets"), payload.get("language")
        )
    mode = ClassificationMode.DETAILED if payload.get("detailed") else ClassificationMode.FAST

    try:
        result = run_pipeline(
            fragments,
            stages,
            context=context,
            generator=ai_client.get_generator() if context else None,
            mode=mode,
            timeout=CLASSIFIER_TIMEOUT,
        )
    except ValueError as e:
        return _bad_request(str(e))
    except Exception as e:
        app.logger.exception("OCR pipeline error")
        return jsonify({"success": False, "message": f"Pipeline error: {e}"}), 500

    return jsonify({key: [r.to_dict() for r in records] for key, records in result.items()})


# ------------------------
# Scan analysis (async job + polling)
# ------------------------
def _analyze_args_from_request():
    """(context, fragments, image_bytes, detailed) or an error response."""
    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return None, _bad_request("Empty filename")
        if not allowed_file(file.filename):
            return None, _bad_request("Unsupported file type. Allowed: jpg, jpeg, png, webp")
        form = request.form
        ok, err = validate_upload_form(form)
        if not ok:
            return None, _bad_request(f"Invalid input: {err}")
        context = UserSafetyContext.build(
            form.getlist("allergies"), form.getlist("diets"), form.get("language")
        )
        detailed = (form.get("detailed") or "").strip().lower() in FORM_TRUE
        return (context, None, file.read(), detailed), None

    payload = request.get_json(silent=True)
    ok, err = validate_analyze_payload(payload)
    if not ok:
        return None, _bad_request(f"Invalid input: {err}")
    context = UserSafetyContext.build(
        payload.get("allergies"), payload.get("diets"), payload.get("language")
    )
    fragments = [OcrFragment.from_dict(f) for f in payload["ocrResults"]]
    return (context, fragments, None, bool(payload.get("detailed"))), None


@app.post("/api/scan/analyze")
def scan_analyze():
    try:
        args, error = _analyze_args_from_request()
    except RequestEntityTooLarge:
        return jsonify({"success": False, "message": "File too large. Try a smaller image."}), 413
    if error is not None:
        return error
    context, fragments, image_bytes, detailed = args

    coordinator = get_coordinator()
    try:
        job_id = coordinator.create_job()
    except JobStoreError as e:
        app.logger.error("Job store unavailable: %s", e)
        return jsonify({"success": False, "message": "Job store unavailable", "code": "JOB_STORE_ERROR"}), 500

    _start_job(
        coordinator,
        job_id,
        context,
        fragments=fragments,
        image_bytes=image_bytes,
        detailed=detailed,
    )
    app.logger.info("Scan job accepted job_id=%s detailed=%s", job_id, detailed)
    return jsonify({"success": True, "jobId": job_id, "status": JobStatus.PENDING.value}), 202


@app.get("/api/scan/result")
def scan_result():
    job_id = (request.args.get("jobId") or "").strip()
    if not job_id:
        return _bad_request("jobId parameter is required")

    try:
        job = get_coordinator().get_job(job_id)
    except JobStoreError as e:
        app.logger.error("Job lookup failed job_id=%s: %s", job_id, e)
        return jsonify({
            "success": False,
            "message": "Could not read job status. Try again shortly.",
            "code": "JOB_STORE_ERROR",
        }), 500

    if job is None:
        return jsonify({
            "success": False,
            "message": "Job not found. It may have expired or never existed.",
            "code": "JOB_NOT_FOUND",
        }), 404

    body: Dict[str, Any] = {"success": job.status is not JobStatus.ERROR, **job.to_dict()}
    if job.status is JobStatus.PENDING:
        body["message"] = "Analysis in progress. Poll again shortly."
    elif job.status is JobStatus.ERROR:
        body["message"] = job.error_message or "Analysis failed."
    return jsonify(body)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.run(host="0.0.0.0", port=int(os.getenv("PORT") or 5000), debug=True)
