from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from creative_evaluator.approvals import ApprovalStore
from creative_evaluator.auth.flow import AWAITING_CODE
from creative_evaluator.auth.otp import OTPService
from creative_evaluator.batch import PLATFORMS
from creative_evaluator.config import settings
from creative_evaluator.errors import CreativeEvaluatorError, ValidationError
from creative_evaluator.mailer import get_mailer
from creative_evaluator.notifier import FeedbackNotifier
from creative_evaluator.rendering import environment
from creative_evaluator.schemas import (
    ApprovalLookupRequest,
    ApprovalRequest,
    CsvExportRequest,
    FeedbackRequest,
    OTPRequest,
    ScoreRequest,
)
from creative_evaluator.scoring.csv_export import csv_filename, decode_csv
from creative_evaluator.scoring.pipeline import ScoringPipeline
from creative_evaluator.session import SessionContext, SessionRegistry
from creative_evaluator.staging import StagedImage, encode_all

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Finish logins whose user row was never written.
    try:
        await asyncio.to_thread(OTPService().replay_pending_logins)
    except CreativeEvaluatorError as exc:
        logger.warning("Skipped login replay: %s", exc.message)
    except Exception:
        logger.exception("Login replay failed; continuing startup")
    yield


app = FastAPI(title="creative_evaluator", lifespan=lifespan)

templates = Jinja2Templates(env=environment)

sessions = SessionRegistry()

PROFILE_CATEGORIES = {"logos", "tone_images", "pre_approved"}


# --- Dependencies -----------------------------------------------------------


def get_pipeline() -> ScoringPipeline:
    return ScoringPipeline()


def get_otp_service() -> OTPService:
    return OTPService()


def get_notifier() -> FeedbackNotifier:
    return FeedbackNotifier(get_mailer())


def get_approval_store() -> ApprovalStore:
    return ApprovalStore()


def get_session(request: Request) -> SessionContext:
    return request.state.session


@app.middleware("http")
async def attach_session(request: Request, call_next):
    # The cookie has no max-age, so it lives as long as the browser session.
    cookie_name = settings.session_cookie_name
    sid = request.cookies.get(cookie_name)
    ctx = sessions.get_or_create(sid)
    request.state.session = ctx
    response = await call_next(request)
    if sid != ctx.session_id and sessions.get(ctx.session_id) is not None:
        response.set_cookie(cookie_name, ctx.session_id, httponly=True, samesite="lax")
    return response


@app.exception_handler(CreativeEvaluatorError)
async def app_error_handler(request: Request, exc: CreativeEvaluatorError):
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = first.get("msg", "invalid value")
    return JSONResponse({"error": f"Invalid request: {where} {msg}".strip()}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def _parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


async def _read_uploads(files: list[UploadFile]) -> list[tuple[str, bytes]]:
    # Browsers send an empty part when no file was chosen.
    out: list[tuple[str, bytes]] = []
    for f in files:
        if not f.filename:
            continue
        content = await f.read()
        if content:
            out.append((f.filename, content))
    return out


# --- JSON API ---------------------------------------------------------------


@app.post("/api/score-creatives")
async def score_creatives(body: ScoreRequest, pipeline: ScoringPipeline = Depends(get_pipeline)):
    results = await pipeline.score(body.bip, body.creatives)
    return results.to_wire()


@app.post("/api/send-otp")
def send_otp(
    body: OTPRequest,
    ctx: SessionContext = Depends(get_session),
    otp: OTPService = Depends(get_otp_service),
):
    if not body.email.strip():
        raise ValidationError("Email is required")
    if body.action == "send":
        otp.send(body.email)
        return {"success": True, "message": "OTP sent successfully"}
    if body.action == "verify":
        if not body.otp:
            raise ValidationError("OTP is required")
        otp.verify(body.email, body.otp)
        ctx.auth.email = body.email.strip().lower()
        ctx.auth.authenticated_email = ctx.auth.email
        return {"success": True, "message": "Email verified successfully"}
    raise ValidationError("Invalid action")


@app.post("/api/send-feedback")
async def send_feedback(body: FeedbackRequest, notifier: FeedbackNotifier = Depends(get_notifier)):
    if body.creative is None or not body.emails:
        raise ValidationError("Missing required fields: creative and emails")
    await notifier.send_feedback(
        body.creative,
        body.emails,
        image=body.creative_image or None,
        comments=body.additional_comments,
    )
    return {"success": True, "message": "Feedback sent successfully to all recipients"}


@app.post("/api/approvals")
def save_approval(
    body: ApprovalRequest,
    ctx: SessionContext = Depends(get_session),
    store: ApprovalStore = Depends(get_approval_store),
):
    creative_hash = store.save(ctx.session_id, body.filename, body.image_data, body.is_approved)
    return {"success": True, "creativeHash": creative_hash}


@app.post("/api/approvals/lookup")
def lookup_approvals(
    body: ApprovalLookupRequest,
    ctx: SessionContext = Depends(get_session),
    store: ApprovalStore = Depends(get_approval_store),
):
    approved = store.load(ctx.session_id, [(c.filename, c.image_data) for c in body.creatives])
    return {"approved": sorted(approved)}


def _csv_response(csv_data: str) -> Response:
    return Response(
        content=decode_csv(csv_data),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{csv_filename()}"'},
    )


@app.post("/api/export-csv")
def export_csv(body: CsvExportRequest):
    if not body.csv_data:
        raise ValidationError("csv_data is required")
    return _csv_response(body.csv_data)


# --- Pages ------------------------------------------------------------------


def _login_page(request: Request, ctx: SessionContext, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request=request,
        name="login.html",
        context={"auth": ctx.auth, "awaiting_code": ctx.auth.state == AWAITING_CODE},
        status_code=status_code,
    )


def _workspace_page(request: Request, ctx: SessionContext, error: str = "", status_code: int = 200) -> HTMLResponse:
    flash, ctx.flash = ctx.flash, ""
    return templates.TemplateResponse(
        request=request,
        name="index.html",
        context={
            "session": ctx,
            "profile": ctx.profile,
            "profile_saved": ctx.profile_json is not None,
            "batch": ctx.batch,
            "platforms": PLATFORMS,
            "can_score": ctx.profile_json is not None and len(ctx.batch) > 0,
            "error": error,
            "flash": flash,
        },
        status_code=status_code,
    )


def _results_page(request: Request, ctx: SessionContext, error: str = "", status_code: int = 200) -> HTMLResponse:
    flash, ctx.flash = ctx.flash, ""
    return templates.TemplateResponse(
        request=request,
        name="results.html",
        context={
            "results": ctx.results,
            "approved": ctx.approved,
            "comments": ctx.comments,
            "error": error,
            "flash": flash,
        },
        status_code=status_code,
    )


def _to_login() -> RedirectResponse:
    return RedirectResponse(url="/login", status_code=303)


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, ctx: SessionContext = Depends(get_session)):
    if ctx.auth.authenticated:
        return RedirectResponse(url="/", status_code=303)
    return _login_page(request, ctx)


@app.post("/login", response_class=HTMLResponse)
def login_send_code(request: Request, email: str = Form(""), ctx: SessionContext = Depends(get_session)):
    try:
        ctx.auth.send_code(email)
    except CreativeEvaluatorError as exc:
        return _login_page(request, ctx, status_code=exc.status_code)
    return _to_login()


@app.post("/login/verify", response_class=HTMLResponse)
def login_verify(request: Request, otp: str = Form(""), ctx: SessionContext = Depends(get_session)):
    if ctx.auth.state != AWAITING_CODE:
        return _to_login()
    try:
        ctx.auth.verify(otp)
    except CreativeEvaluatorError as exc:
        return _login_page(request, ctx, status_code=exc.status_code)
    return RedirectResponse(url="/", status_code=303)


@app.post("/login/reset")
def login_reset(ctx: SessionContext = Depends(get_session)):
    ctx.auth.use_different_email()
    return _to_login()


@app.post("/logout")
def logout(ctx: SessionContext = Depends(get_session)):
    sessions.end(ctx.session_id)
    resp = _to_login()
    resp.delete_cookie(settings.session_cookie_name)
    return resp


@app.get("/", response_class=HTMLResponse)
def workspace(request: Request, ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    return _workspace_page(request, ctx)


@app.post("/profile", response_class=HTMLResponse)
async def save_profile(
    request: Request,
    logos: list[UploadFile] = File([]),
    tone_images: list[UploadFile] = File([]),
    pre_approved: list[UploadFile] = File([]),
    tone_mode: str = Form("text"),
    tone_text: str = Form(""),
    target_audience: str = Form(""),
    offering_description: str = Form(""),
    ctx: SessionContext = Depends(get_session),
):
    if not ctx.auth.authenticated:
        return _to_login()
    profile = ctx.profile
    try:
        profile.set_tone_mode(tone_mode)
        # Stage every upload before touching the profile so a bad file adds nothing.
        staged_logos = await _stage(logos)
        staged_tone = await _stage(tone_images)
        staged_approved = await _stage(pre_approved)
        profile.logos.extend(staged_logos)
        profile.tone_images.extend(staged_tone)
        profile.pre_approved.extend(staged_approved)
        profile.tone_of_voice_text = tone_text
        profile.target_audience = target_audience
        profile.offering_description = offering_description
        ctx.profile_json = profile.to_json()
    except CreativeEvaluatorError as exc:
        ctx.profile_json = None
        return _workspace_page(request, ctx, error=exc.message, status_code=exc.status_code)
    ctx.flash = "Brand profile saved."
    return RedirectResponse(url="/", status_code=303)


async def _stage(files: list[UploadFile]) -> list[StagedImage]:
    return await encode_all(await _read_uploads(files))


@app.post("/profile/{category}/{image_id}/remove")
def remove_profile_image(category: str, image_id: str, ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    if category in PROFILE_CATEGORIES:
        getattr(ctx.profile, category).remove(image_id)
        # Any change invalidates the saved document until it is saved again.
        ctx.profile_json = None
    return RedirectResponse(url="/", status_code=303)


@app.post("/creatives", response_class=HTMLResponse)
async def upload_creatives(
    request: Request,
    files: list[UploadFile] = File([]),
    ctx: SessionContext = Depends(get_session),
):
    if not ctx.auth.authenticated:
        return _to_login()
    try:
        added = await ctx.batch.add_files(await _read_uploads(files))
    except CreativeEvaluatorError as exc:
        return _workspace_page(request, ctx, error=exc.message, status_code=exc.status_code)
    logger.info("Added %d creative(s) to %s", len(added), ctx.session_id)
    return RedirectResponse(url="/", status_code=303)


@app.post("/creatives/{draft_id}", response_class=HTMLResponse)
def update_creative(
    request: Request,
    draft_id: str,
    filename: str = Form(""),
    platform: str = Form(""),
    is_ecommerce: str | None = Form(None),
    highlighted_product: str = Form(""),
    ctx: SessionContext = Depends(get_session),
):
    if not ctx.auth.authenticated:
        return _to_login()
    try:
        ctx.batch.update(
            draft_id,
            filename=filename,
            platform=platform or None,
            is_ecommerce=_parse_bool(is_ecommerce),
            highlighted_product=highlighted_product,
        )
    except KeyError:
        return RedirectResponse(url="/", status_code=303)
    except CreativeEvaluatorError as exc:
        return _workspace_page(request, ctx, error=exc.message, status_code=exc.status_code)
    return RedirectResponse(url="/", status_code=303)


@app.post("/creatives/{draft_id}/product-image", response_class=HTMLResponse)
async def upload_product_image(
    request: Request,
    draft_id: str,
    file: UploadFile = File(...),
    ctx: SessionContext = Depends(get_session),
):
    if not ctx.auth.authenticated:
        return _to_login()
    uploads = await _read_uploads([file])
    if uploads:
        try:
            ctx.batch.set_product_image(draft_id, *uploads[0])
        except KeyError:
            pass
        except CreativeEvaluatorError as exc:
            return _workspace_page(request, ctx, error=exc.message, status_code=exc.status_code)
    return RedirectResponse(url="/", status_code=303)


@app.post("/creatives/{draft_id}/remove")
def remove_creative(draft_id: str, ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    ctx.batch.remove(draft_id)
    return RedirectResponse(url="/", status_code=303)


@app.post("/score", response_class=HTMLResponse)
async def score_batch(
    request: Request,
    ctx: SessionContext = Depends(get_session),
    pipeline: ScoringPipeline = Depends(get_pipeline),
    store: ApprovalStore = Depends(get_approval_store),
):
    if not ctx.auth.authenticated:
        return _to_login()
    if ctx.profile_json is None or not len(ctx.batch):
        return _workspace_page(request, ctx, error="Save a brand profile and add at least one creative first.", status_code=400)
    try:
        results = await pipeline.score(ctx.profile_json, ctx.batch.to_inputs())
    except CreativeEvaluatorError as exc:
        return _workspace_page(request, ctx, error=exc.message, status_code=exc.status_code)
    ctx.set_results(results)

    try:
        approved = store.load(ctx.session_id, [(c.filename, c.image_data or "") for c in results.creatives])
    except CreativeEvaluatorError as exc:
        logger.warning("Could not load approvals for %s: %s", ctx.session_id, exc.message)
        ctx.flash = "Saved approvals could not be loaded."
    except Exception:
        logger.exception("Approval lookup failed for %s", ctx.session_id)
        ctx.flash = "Saved approvals could not be loaded."
    else:
        ctx.approved = set(approved)
    return RedirectResponse(url="/results", status_code=303)


@app.get("/results", response_class=HTMLResponse)
def results_page(request: Request, ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    if ctx.results is None:
        return RedirectResponse(url="/", status_code=303)
    return _results_page(request, ctx)


def _persist_approval(store: ApprovalStore, session_id: str, filename: str, image_data: str) -> None:
    try:
        store.save(session_id, filename, image_data, True)
    except CreativeEvaluatorError as exc:
        logger.error("Approval for %s was not persisted: %s", filename, exc.message)
    except Exception:
        logger.exception("Approval for %s was not persisted", filename)


@app.post("/results/{index}/approve")
def approve_creative(
    index: int,
    background: BackgroundTasks,
    ctx: SessionContext = Depends(get_session),
    store: ApprovalStore = Depends(get_approval_store),
):
    if not ctx.auth.authenticated:
        return _to_login()
    results = ctx.results
    if results is None or not 0 <= index < len(results.creatives):
        return RedirectResponse(url="/results", status_code=303)
    # One-directional: once approved, the page offers no way back.
    if index not in ctx.approved:
        ctx.approved.add(index)
        creative = results.creatives[index]
        background.add_task(_persist_approval, store, ctx.session_id, creative.filename, creative.image_data or "")
    return RedirectResponse(url="/results", status_code=303)


@app.post("/results/{index}/comment")
def save_comment(index: int, comment: str = Form(""), ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    if ctx.results is not None and 0 <= index < len(ctx.results.creatives):
        ctx.comments[index] = comment
    return RedirectResponse(url="/results", status_code=303)


@app.post("/results/share", response_class=HTMLResponse)
async def share_results(
    request: Request,
    emails: str = Form(""),
    ctx: SessionContext = Depends(get_session),
):
    if not ctx.auth.authenticated:
        return _to_login()
    if ctx.results is None:
        return RedirectResponse(url="/", status_code=303)
    try:
        notifier = get_notifier()
        await notifier.send_bulk(ctx.results.creatives, emails, ctx.comments)
    except CreativeEvaluatorError as exc:
        return _results_page(request, ctx, error=exc.message, status_code=exc.status_code)
    count = len(ctx.results.creatives)
    ctx.flash = f"Feedback sent successfully to all recipients for {count} creative(s)!"
    return RedirectResponse(url="/results", status_code=303)


@app.get("/results/csv")
def download_csv(ctx: SessionContext = Depends(get_session)):
    if not ctx.auth.authenticated:
        return _to_login()
    if ctx.results is None or not ctx.results.csv_data:
        return RedirectResponse(url="/results", status_code=303)
    return _csv_response(ctx.results.csv_data)
