# main.py
import uuid
from time import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from reunite.scripts.logging_config import get_logger, set_request_id, setup_logging

# 1) logging first
setup_logging(json_fmt=settings.LOG_JSON)
logger = get_logger(__name__)

# 2) Firebase (only needed for the firestore backend)
if settings.STORE_BACKEND.lower() == "firestore":
    from reunite.services.firestore_store import init_firebase
    try:
        if not init_firebase():
            logger.warning("Firebase credentials not found. Firestore backend will fail on first use.")
    except Exception as e:
        logger.exception("Firebase initialization failed: %s", e)

# 3) app
app = FastAPI(title="Reunite Lost & Found API")


# 4) request logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_id(rid)

    start = time()
    path = request.url.path
    method = request.method
    query = request.url.query
    user = request.headers.get("X-User-Id", "-")
    client_ip = request.client.host if request.client else "-"

    if query:
        logger.info("REQ start %s %s?%s user=%s ip=%s", method, path, query, user, client_ip)
    else:
        logger.info("REQ start %s %s user=%s ip=%s", method, path, user, client_ip)

    status = "NA"
    try:
        response = await call_next(request)
        status = response.status_code
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        duration = (time() - start) * 1000
        logger.info("REQ end %s %s status=%s %.1fms", method, path, status, duration)


# 5) CORS
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "https://localhost:3000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 6) routers
from reunite.api import matches, notifications, reports  # noqa: E402
from reunite.services.engine import get_engine  # noqa: E402

app.include_router(reports.router)
app.include_router(matches.router)
app.include_router(notifications.router)


# 7) endpoints
@app.get("/")
def root():
    return {"message": "Reunite lost & found matching service", "routes": [
        "/reports",
        "/reports/{report_id}/matches",
        "/reports/{report_id}/potential-matches",
        "/matches",
        "/matches/{match_id}/confirm",
        "/matches/{match_id}/reject",
        "/notifications",
        "/admin/rescan",
    ]}


@app.post("/admin/rescan")
def admin_rescan():
    created = get_engine().matcher.rescan_open_reports()
    logger.info("Admin rescan requested: new_matches=%d policy=%s", created, settings.SCORING_POLICY)
    return {"new_matches": created, "policy": settings.SCORING_POLICY}
