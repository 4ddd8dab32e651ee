import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Cookie, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.reports_api import db
from src.reports_api import operations as ops
from src.reports_api.auth_utils import optional_auth, report_bypass_auth, require_auth, require_role
from src.reports_api.config import ConfigurationError, get_settings
from src.reports_api.errors import (
    Conflict,
    ConnectionUnavailable,
    Forbidden,
    NotFound,
    Unauthorized,
    validation_message,
)
from src.reports_api.logging_config import configure_logging, get_logger
from src.reports_api.query_adapter import run
from src.reports_api.schemas import (
    APIMessage,
    AttendMemberRequest,
    DocumentRequest,
    HealthStatus,
    HighValueReportRequest,
    IssueRequest,
    KeywordSearch,
    LoginRequest,
    MembersReportRequest,
    ProgrammeSlotRequest,
    RefreshRequest,
    RegisterMemberRequest,
    SchemesRequest,
    TokenData,
    TokenResponse,
    UserCreateRequest,
    UserRightRequest,
    UserRightTransferRequest,
    public_user,
)
from src.reports_api.tokens import REFRESH, InvalidToken, dummy_verify, get_token_service, hash_password, verify_password

logger = get_logger(__name__)

REFRESH_COOKIE = "refreshToken"
INVALID_LOGIN = "Invalid username or password"

openapi_tags = [
    {"name": "Health", "description": "Service health checks."},
    {"name": "Auth", "description": "Login, token refresh and current user."},
    {"name": "Users", "description": "User listing and administration."},
    {"name": "Lookups", "description": "Branches, sections, schemes and the report menu."},
    {"name": "Reports", "description": "Audit and complaint reports backed by stored routines."},
    {"name": "Documents", "description": "Issues, documents and keyword search."},
    {"name": "Registrations", "description": "Programme time slots and member registrations."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pool on startup and close it on shutdown."""
    db.init_db_pool()
    yield
    db.close_db_pool()


app = FastAPI(
    lifespan=lifespan,
    title="Reports API",
    description=(
        "Backend API for the branch reporting portal. "
        "Includes auth, lookups, audit reports, documents and member registrations.\n\n"
        "Auth: Use the `Authorization: Bearer <token>` header for protected routes."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
)

# Restrict via CORS_ALLOW_ORIGINS env (comma separated).
allow_origins = [
    o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = validation_message(exc.errors())
    logger.info("Rejected %s %s: %s", request.method, request.url.path, detail)
    return JSONResponse(status_code=400, content={"detail": detail})


def _session_claims(user: Dict[str, Any]) -> Dict[str, Any]:
    return public_user(user).model_dump(by_alias=True)


def _authenticate(payload: LoginRequest) -> Dict[str, Any]:
    """Return the active user row for the credentials, or raise 401."""
    rows = run(ops.FIND_USER_BY_NAME, payload)
    user = rows[0] if rows else None
    if user is None:
        dummy_verify()
        logger.warning("Failed login for unknown user %r", payload.username)
        raise Unauthorized(INVALID_LOGIN)
    if not verify_password(payload.password, user.get("user_password")):
        logger.warning("Failed login for %r: wrong password", payload.username)
        raise Unauthorized(INVALID_LOGIN)
    if str(user.get("user_availability_status") or "").upper() != "YES":
        logger.warning("Failed login for %r: account inactive", payload.username)
        raise Unauthorized(INVALID_LOGIN)
    return user


@app.get("/api/health", response_model=HealthStatus, tags=["Health"], summary="Health check")
def health_check() -> HealthStatus:
    """Report process liveness and the current pool state. Never touches the database."""
    return HealthStatus(
        server="running",
        database=db.pool_state().value,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# =========================
# Auth
# =========================

@app.post("/api/login", tags=["Auth"], summary="Login (legacy)")
def legacy_login(payload: LoginRequest) -> Dict[str, Any]:
    """Authenticate and return the user record without its password hash."""
    user = _authenticate(payload)
    safe_user = {k: v for k, v in user.items() if k != "user_password"}
    logger.info("User %r logged in", payload.username)
    return {"success": True, "message": "Login successful", "user": safe_user}


@app.post("/api/auth/login", response_model=TokenResponse, tags=["Auth"], summary="Login")
def login(payload: LoginRequest, response: Response) -> TokenResponse:
    """Authenticate, return an access token and set the refresh token cookie."""
    user = _authenticate(payload)
    claims = _session_claims(user)
    tokens = get_token_service()
    access_token = tokens.issue_access(claims)
    refresh_token = tokens.issue_refresh(claims)

    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        httponly=True,
        secure=get_settings().cookie_secure,
        samesite="strict",
        max_age=int(tokens.refresh_ttl.total_seconds()),
    )
    logger.info("User %r logged in", payload.username)
    return TokenResponse(
        message="Login successful",
        data=TokenData(access_token=access_token, user=public_user(user)),
    )


@app.post("/api/auth/logout", response_model=APIMessage, tags=["Auth"], summary="Logout")
def logout(response: Response) -> APIMessage:
    """Clear the refresh token cookie. Issued tokens stay valid until they expire."""
    response.delete_cookie(REFRESH_COOKIE, httponly=True, samesite="strict", secure=get_settings().cookie_secure)
    return APIMessage(message="Logged out successfully")


@app.post("/api/auth/refresh", tags=["Auth"], summary="Refresh access token")
def refresh(
    payload: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
) -> Dict[str, Any]:
    """Issue a new access token from the refresh cookie, or `refreshToken` in the body."""
    token = refresh_cookie or (payload.refresh_token if payload else None)
    if not token:
        raise Unauthorized("Refresh token required")
    tokens = get_token_service()
    try:
        claims = tokens.verify(token, kind=REFRESH)
    except InvalidToken:
        raise Forbidden("Invalid refresh token")
    return {
        "success": True,
        "message": "Token refreshed successfully",
        "data": {"accessToken": tokens.issue_access(claims)},
    }


@app.get("/api/auth/me", tags=["Auth"], summary="Get current user")
def me(user: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
    """Return the current user, if still active."""
    rows = run(ops.FIND_ACTIVE_USER_BY_ID, {"user_id": user["userId"]})
    if not rows:
        raise NotFound("User not found")
    return {"success": True, "data": {"user": _session_claims(rows[0])}}


# =========================
# Users
# =========================

@app.get("/api/users", tags=["Users"], summary="List user names")
@app.get("/api/Users", include_in_schema=False)
def list_users(_: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
    return run(ops.LIST_USER_NAMES)


@app.post("/api/usercreatapi", response_model=APIMessage, tags=["Users"], summary="Create user")
def create_user(payload: UserCreateRequest, admin: Dict[str, Any] = Depends(require_role("admin"))) -> APIMessage:
    """
    Admin: create a user with a hashed password.

    Requires an admin access token; earlier clients called this without one.
    """
    if run(ops.USER_EXISTS, payload):
        raise Conflict("User already exists")

    values = payload.model_dump()
    values["password_hash"] = hash_password(payload.user_password)
    try:
        result = run(ops.CREATE_USER, values)
    except Conflict:
        # Lost a race with a concurrent insert of the same name.
        raise Conflict("User already exists")
    logger.info("User %r created by %r", payload.user_name, admin.get("username"))
    return APIMessage(message=result["message"])


# =========================
# Lookups
# =========================

@app.get("/api/branches", tags=["Lookups"], summary="List branches")
def list_branches() -> Dict[str, Any]:
    return run(ops.LIST_BRANCHES)


@app.get("/api/sections", tags=["Lookups"], summary="List scheme sections")
def list_sections() -> Dict[str, Any]:
    return run(ops.LIST_SECTIONS)


@app.post("/api/schemes", tags=["Lookups"], summary="List schemes in a section")
def list_schemes(payload: SchemesRequest) -> Dict[str, Any]:
    return run(ops.LIST_SCHEMES, payload)


@app.get("/api/reports/menu", tags=["Lookups"], summary="Active report menu")
def report_menu() -> Dict[str, Any]:
    """Active menu items, ordered by their configured position."""
    return run(ops.REPORT_MENU)


# =========================
# Reports
# =========================

@app.post("/api/high-value-trans", tags=["Reports"], summary="High value transactions")
@app.post("/api/reports/high-value", include_in_schema=False)
def high_value_transactions(
    payload: HighValueReportRequest, _: Dict[str, Any] = Depends(report_bypass_auth)
) -> Dict[str, Any]:
    """Transactions in a branch/section/scheme between two amounts and dates."""
    return run(ops.HIGH_VALUE_TRANSACTIONS, payload)


@app.post("/api/complaint-report", tags=["Reports"], summary="Complaint register")
def complaint_report(_: Dict[str, Any] = Depends(report_bypass_auth)) -> Any:
    return run(ops.COMPLAINT_REGISTER)


@app.post("/api/userright", tags=["Reports"], summary="User rights")
def user_rights(payload: UserRightRequest, _: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
    return run(ops.USER_RIGHTS, payload)


@app.post("/api/userright-transfer", tags=["Reports"], summary="User right transfers")
def user_right_transfers(
    payload: UserRightTransferRequest, _: Dict[str, Any] = Depends(require_auth)
) -> Dict[str, Any]:
    return run(ops.USER_RIGHT_TRANSFERS, payload)


# =========================
# Issues & documents
# =========================

@app.post("/api/issues", tags=["Documents"], summary="Log an issue")
def create_issue(payload: IssueRequest, user: Optional[Dict[str, Any]] = Depends(optional_auth)) -> Dict[str, Any]:
    result = run(ops.INSERT_ISSUE, payload)
    logger.info(
        "Issue logged for %s by %s",
        payload.cmp_code,
        user.get("username") if user else payload.reported_by,
    )
    return result


@app.post("/api/document", tags=["Documents"], summary="Save a document")
def create_document(payload: DocumentRequest, _: Dict[str, Any] = Depends(report_bypass_auth)) -> Dict[str, Any]:
    return run(ops.INSERT_DOCUMENT, payload)


@app.get("/api/keywords", tags=["Documents"], summary="Search document keywords")
def search_keywords(
    search: Optional[str] = Query(None, max_length=253, description="Substring to match"),
) -> Dict[str, Any]:
    return run(ops.SEARCH_KEYWORDS, KeywordSearch(search=search))


@app.get("/api/document/{document_id}", tags=["Documents"], summary="Get document")
def get_document(document_id: int) -> Dict[str, Any]:
    return run(ops.GET_DOCUMENT, {"id": document_id})


# =========================
# Member registrations
# =========================

@app.get("/api/programme-names", tags=["Registrations"], summary="List programme names")
@app.get("/api/ProgrammeName", include_in_schema=False)
def programme_names() -> Dict[str, Any]:
    return run(ops.LIST_PROGRAMME_NAMES)


@app.get("/api/time-slots", tags=["Registrations"], summary="List time slots")
@app.get("/api/TimeSlots", include_in_schema=False)
def time_slots() -> Dict[str, Any]:
    return run(ops.LIST_TIME_SLOTS)


@app.get("/api/timeslots-for-registration", tags=["Registrations"], summary="Time slots open for registration")
def registration_time_slots() -> Dict[str, Any]:
    """Every time slot except the `ALL` pseudo-slot."""
    return run(ops.LIST_REGISTRATION_TIME_SLOTS)


@app.post("/api/reportdocument", tags=["Registrations"], summary="Registered members")
def registered_members(payload: ProgrammeSlotRequest) -> Dict[str, Any]:
    return run(ops.REGISTERED_MEMBERS, payload)


@app.post("/api/regMembersReport", tags=["Registrations"], summary="Registered members report")
def members_report(payload: MembersReportRequest) -> Dict[str, Any]:
    return run(ops.MEMBERS_REPORT, payload)


@app.post("/api/updateAttendMember", tags=["Registrations"], summary="Record attendance")
def update_attend_member(payload: AttendMemberRequest) -> Dict[str, Any]:
    return run(ops.UPDATE_ATTEND_MEMBER, payload)


@app.post("/api/register-member", tags=["Registrations"], summary="Register a member")
def register_member(payload: RegisterMemberRequest) -> Dict[str, Any]:
    return run(ops.REGISTER_MEMBER, payload)


# PUBLIC_INTERFACE
def run_server() -> None:
    """
    Console entry point.

    Validates configuration and connects to the database before binding the
    listener; exits with status 1 if either fails.
    """
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        configure_logging()
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    configure_logging(settings.log_level)
    try:
        db.init_db_pool()
    except ConnectionUnavailable:
        logger.critical("Database connection failed - server NOT starting")
        sys.exit(1)

    logger.info("Starting server on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
