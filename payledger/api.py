from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .config import Settings
from .exceptions import (
    AuthenticationError,
    DuplicateEmailError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LedgerServiceError,
    MissingEvidenceError,
    NotFoundError,
    ProtectedAdminError,
    RestrictedFieldError,
    UploadTooLargeError,
)
from .logconfig import configure_logging
from .models import (
    BalanceAdjustRequest,
    CardPaymentRequest,
    CreateUserRequest,
    DeleteUserRequest,
    LoginRequest,
    Role,
    SignupRequest,
    SubmissionActionRequest,
    UpdateUserRequest,
    UsdtPaymentRequest,
    User,
)
from .portal import Portal
from .sessions import (
    ADMIN_COOKIE,
    USER_COOKIE,
    Identity,
    client_ip,
    get_portal,
    require_admin,
    require_user,
)
from .stats import compute_stats
from .storage import Collection

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateEmailError, status.HTTP_409_CONFLICT),
    (ProtectedAdminError, status.HTTP_403_FORBIDDEN),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (UploadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (InvalidAmountError, status.HTTP_400_BAD_REQUEST),
    (InsufficientBalanceError, status.HTTP_400_BAD_REQUEST),
    (RestrictedFieldError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateTransitionError, status.HTTP_400_BAD_REQUEST),
    (MissingEvidenceError, status.HTTP_400_BAD_REQUEST),
)


def _http_error(exc: LedgerServiceError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _public(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password"}


router = APIRouter()


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "payledger"}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.post("/signup", status_code=status.HTTP_201_CREATED, tags=["Users"])
def signup(payload: SignupRequest, response: Response, portal: Portal = Depends(get_portal)):
    try:
        user_id = portal.users.create(User(name=payload.name, email=payload.email, password=payload.password))
    except LedgerServiceError as e:
        raise _http_error(e)
    response.set_cookie(USER_COOKIE, user_id, max_age=portal.settings.user_cookie_max_age, httponly=True)
    return {"success": True, "userId": user_id}


@router.post("/login", tags=["Users"])
def login(payload: LoginRequest, response: Response, portal: Portal = Depends(get_portal)):
    try:
        user_id, user = portal.users.authenticate(payload.email, payload.password)
    except AuthenticationError as e:
        raise _http_error(e)
    if user.get("role") == Role.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin users must login at /admin-login")
    response.set_cookie(USER_COOKIE, user_id, max_age=portal.settings.user_cookie_max_age, httponly=True)
    return {"success": True, "userId": user_id}


@router.post("/logout", tags=["Users"])
def logout(response: Response):
    response.delete_cookie(USER_COOKIE)
    return {"success": True}


@router.get("/api/user", tags=["Users"])
def current_user(identity: Identity = Depends(require_user)):
    return {**_public(identity.record), "id": identity.id}


@router.get("/api/user/transactions", tags=["Users"])
def current_user_transactions(identity: Identity = Depends(require_user), portal: Portal = Depends(get_portal)):
    return portal.ledger.history(identity.id)


# ---------------------------------------------------------------------------
# Activation payments
# ---------------------------------------------------------------------------

@router.post("/activation-payment/giftcard", tags=["Payments"])
def pay_with_gift_card(
    request: Request,
    front_image: Optional[UploadFile] = File(default=None, alias="frontImage"),
    back_image: Optional[UploadFile] = File(default=None, alias="backImage"),
    identity: Identity = Depends(require_user),
    portal: Portal = Depends(get_portal),
):
    if front_image is None or back_image is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Both images are required")
    saved = []
    try:
        saved.append(portal.uploads.save(front_image))
        saved.append(portal.uploads.save(back_image))
        submission, _ = portal.submissions.submit_gift_card(identity.id, saved[0], saved[1], client_ip(request))
    except LedgerServiceError as e:
        portal.uploads.discard(*saved)
        raise _http_error(e)
    return {
        "success": True,
        "submissionId": submission["timestamp"],
        "activationFee": submission["activationFee"],
        "message": "Payment submitted. Your account will be activated after verification.",
    }


@router.post("/activation-payment/usdt", tags=["Payments"])
def pay_with_usdt(
    payload: UsdtPaymentRequest,
    request: Request,
    identity: Identity = Depends(require_user),
    portal: Portal = Depends(get_portal),
):
    try:
        _, transaction = portal.submissions.submit_usdt(identity.id, payload.transaction_id, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "success": True,
        "transaction": transaction,
        "message": "Payment completed successfully. Your account is now activated.",
    }


@router.post("/activation-payment/card", tags=["Payments"])
def pay_with_card(
    payload: CardPaymentRequest,
    request: Request,
    identity: Identity = Depends(require_user),
    portal: Portal = Depends(get_portal),
):
    try:
        _, transaction = portal.submissions.submit_card(identity.id, payload, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "success": True,
        "transaction": transaction,
        "message": "Payment completed successfully. Your account is now activated.",
    }


# ---------------------------------------------------------------------------
# Admin session
# ---------------------------------------------------------------------------

@router.post("/admin-login", tags=["Admin"])
def admin_login(payload: LoginRequest, request: Request, response: Response, portal: Portal = Depends(get_portal)):
    try:
        admin_id, _ = portal.users.authenticate(payload.email, payload.password, role=Role.ADMIN)
    except AuthenticationError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin credentials")
    response.set_cookie(ADMIN_COOKIE, admin_id, max_age=portal.settings.admin_cookie_max_age, httponly=True)
    portal.audit.record("login", admin_id, {"email": payload.email}, client_ip(request))
    return {"success": True, "adminId": admin_id}


@router.post("/admin-logout", tags=["Admin"])
def admin_logout(request: Request, response: Response, portal: Portal = Depends(get_portal)):
    admin_id = request.cookies.get(ADMIN_COOKIE)
    portal.audit.record("logout", admin_id, {}, client_ip(request))
    response.delete_cookie(ADMIN_COOKIE)
    return {"success": True}


# ---------------------------------------------------------------------------
# Admin reads
# ---------------------------------------------------------------------------

@router.get("/api/admin/stats", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_stats(portal: Portal = Depends(get_portal)):
    return compute_stats(
        portal.store.load(Collection.USERS),
        portal.store.load(Collection.TRANSACTIONS),
        portal.store.load(Collection.GIFT_CARD_SUBMISSIONS),
    )


@router.get("/api/admin/users", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_users(search: str = "", portal: Portal = Depends(get_portal)):
    return portal.users.search(search)


@router.get("/api/admin/transactions", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_transactions(limit: int = 50, portal: Portal = Depends(get_portal)):
    return portal.ledger.recent(limit)


@router.get("/api/admin/logs", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_logs(portal: Portal = Depends(get_portal)):
    return portal.audit.recent(100)


@router.get("/api/admin/gift-card-submissions", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_gift_card_submissions(portal: Portal = Depends(get_portal)):
    return portal.submissions.recent(50)


@router.get("/api/admin/find-user-by-email", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_find_user_by_email(email: str = "", portal: Portal = Depends(get_portal)):
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")
    found = portal.users.find_by_email(email)
    if found is None:
        return {"success": True, "found": False, "error": "User not found"}
    user_id, user = found
    return {
        "success": True,
        "found": True,
        "id": user_id,
        "name": user.get("name"),
        "email": user.get("email"),
        "balance": user.get("balance"),
        "role": user.get("role"),
        "activated": bool(user.get("activated", False)),
    }


@router.get("/uploads/{filename}", tags=["Admin"], dependencies=[Depends(require_admin)])
def admin_upload(filename: str, portal: Portal = Depends(get_portal)):
    path = portal.uploads.path_for(filename)
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return FileResponse(path)


# ---------------------------------------------------------------------------
# Admin actions
# ---------------------------------------------------------------------------

@router.post("/api/admin/add-balance", tags=["Admin"])
def admin_add_balance(
    payload: BalanceAdjustRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        user_id, user = portal.users.require_by_email(payload.email)
        update = portal.ledger.credit(user_id, payload.amount, payload.note, admin.id, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "success": True,
        "newBalance": update.new_balance,
        "user": {"id": user_id, "name": user.get("name"), "email": user.get("email")},
        "message": f"Added ${update.transaction['amount']:.2f} to {user.get('name')}'s account ({user.get('email')})",
    }


@router.post("/api/admin/deduct-balance", tags=["Admin"])
def admin_deduct_balance(
    payload: BalanceAdjustRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        user_id, _ = portal.users.require_by_email(payload.email)
        update = portal.ledger.debit(user_id, payload.amount, payload.note, admin.id, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {"success": True, "newBalance": update.new_balance, "transaction": update.transaction}


@router.post("/api/admin/update-user", tags=["Admin"])
def admin_update_user(
    payload: UpdateUserRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        user_id, user = portal.users.require_by_email(payload.email)
        old_value = portal.users.update_field(user_id, payload.field, payload.value)
    except LedgerServiceError as e:
        raise _http_error(e)
    portal.audit.record("update_user", admin.id, {
        "targetUser": user_id,
        "targetUserName": user.get("name"),
        "targetUserEmail": user.get("email"),
        "field": payload.field,
        "oldValue": old_value,
        "newValue": payload.value,
    }, client_ip(request))
    return {"success": True, "message": "User updated successfully"}


@router.post("/api/admin/create-user", status_code=status.HTTP_201_CREATED, tags=["Admin"])
def admin_create_user(
    payload: CreateUserRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        initial_balance = float(payload.initial_balance or 0)
    except (TypeError, ValueError):
        initial_balance = 0.0

    candidate = User(
        name=payload.name,
        email=payload.email,
        password=payload.password,
        balance=initial_balance,
        role=payload.role,
        created_by=admin.id,
        activated=payload.role == Role.ADMIN,
    )
    try:
        user_id = portal.users.create(candidate, id_prefix="admin_created_")
    except LedgerServiceError as e:
        raise _http_error(e)

    portal.audit.record("create_user", admin.id, {
        "userId": user_id,
        "name": payload.name,
        "email": payload.email,
        "initialBalance": initial_balance,
        "role": payload.role.value,
    }, client_ip(request))
    return {
        "success": True,
        "userId": user_id,
        "user": _public(portal.users.get(user_id)),
        "message": f"User {payload.name} created successfully",
    }


@router.post("/api/admin/delete-user", tags=["Admin"])
def admin_delete_user(
    payload: DeleteUserRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        user_id, _ = portal.users.require_by_email(payload.email)
        deleted = portal.users.delete(user_id, admin.id)
    except LedgerServiceError as e:
        raise _http_error(e)
    portal.audit.record("delete_user", admin.id, {
        "deletedUser": user_id,
        "userName": deleted.get("name"),
        "userEmail": deleted.get("email"),
        "balance": deleted.get("balance"),
    }, client_ip(request))
    return {"success": True, "message": f"User {deleted.get('name')} ({deleted.get('email')}) deleted successfully"}


@router.post("/api/admin/approve-giftcard", tags=["Admin"])
def admin_approve_gift_card(
    payload: SubmissionActionRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        submission = portal.submissions.approve(payload.submission_id, admin.id, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {
        "success": True,
        "submission": submission,
        "message": "Gift card payment approved and user activated successfully!",
    }


@router.post("/api/admin/reject-giftcard", tags=["Admin"])
def admin_reject_gift_card(
    payload: SubmissionActionRequest,
    request: Request,
    admin: Identity = Depends(require_admin),
    portal: Portal = Depends(get_portal),
):
    try:
        submission = portal.submissions.reject(payload.submission_id, payload.reason, admin.id, client_ip(request))
    except LedgerServiceError as e:
        raise _http_error(e)
    return {"success": True, "submission": submission, "message": "Gift card payment rejected!"}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    portal: Portal = app.state.portal
    portal.startup()
    try:
        yield
    finally:
        portal.shutdown()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Activation Payment Portal API",
        description="Flat-file user ledger with admin balance adjustments and activation-payment review",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.portal = Portal(settings)

    origins = ["http://localhost:3000", "http://localhost:5173"]
    if settings.frontend_origin and settings.frontend_origin != "*":
        origins.append(settings.frontend_origin)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
