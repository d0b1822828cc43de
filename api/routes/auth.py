"""
api/routes/auth.py -- Registration and login REST endpoints.

Routes:
  POST /api/register      -- create account; 201 + session token
  POST /api/login         -- email/password login
  POST /api/google-login  -- Google ID token login (never auto-registers)
  POST /api/check-user    -- does an account exist for this email?

All business rules live in AuthService (app.state.auth_service). Handlers only
translate between the wire models and the service. Failures are raised by the
service as AuthFlowError subclasses and rendered by the exception handler in
api/main.py.

Security:
  Cache-Control: no-store on every response that carries a token.
  Login answers unknown email and wrong password with the same 401 body.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from api.models import (
    CheckUserRequest,
    CheckUserResponse,
    GoogleLoginRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UserData,
)
from auth.service import AuthService, LoginResult

# Auth policy: every route in this module is public -- these are the routes
# that hand out credentials in the first place.
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _login_response(result: LoginResult) -> LoginResponse:
    user = result.user
    return LoginResponse(
        user_id=user.id,
        token=result.token,
        user_data=UserData.model_validate(user.profile()),
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, response: Response, body: RegisterRequest) -> RegisterResponse:
    """Register a new user.

    Uniqueness check and insert share one database transaction; a concurrent
    registration with the same email or phone gets 409, never a duplicate.
    """
    result = await _service(request).register(
        email=body.email,
        phone=body.phone,
        fname=body.fname,
        lname=body.lname,
        password=body.password,
        trx_pin=body.trx_pin,
        date_of_birth=body.date_of_birth,
    )
    response.headers["Cache-Control"] = "no-store"
    return RegisterResponse(user_id=result.user_id, token=result.token)


@router.post("/login", response_model=LoginResponse)
async def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password."""
    result = await _service(request).login(email=body.email, password=body.password)
    response.headers["Cache-Control"] = "no-store"
    return _login_response(result)


@router.post("/google-login", response_model=LoginResponse)
async def google_login(request: Request, response: Response, body: GoogleLoginRequest) -> LoginResponse:
    """Authenticate with a Google ID token obtained by the client."""
    result = await _service(request).google_login(id_token=body.id_token)
    response.headers["Cache-Control"] = "no-store"
    return _login_response(result)


@router.post("/check-user", response_model=CheckUserResponse)
async def check_user(request: Request, body: CheckUserRequest) -> CheckUserResponse:
    """Report whether an account exists for the given email."""
    exists = await _service(request).user_exists(body.email)
    return CheckUserResponse(exists=exists)
