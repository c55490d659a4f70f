from flask import Blueprint, redirect, render_template, request, session, url_for

from app.edulink.constants import THEMES

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.post("/theme/toggle")
def theme_toggle():
    """Flip light/dark; kept in the session cookie so it survives logout."""
    current = session.get("theme") if session.get("theme") in THEMES else "light"
    session["theme"] = "light" if current == "dark" else "dark"
    referrer = request.referrer
    if referrer and referrer.startswith(request.host_url):
        return redirect(referrer)
    return redirect(url_for("routes.index"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
