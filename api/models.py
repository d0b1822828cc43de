"""
API request and response models for the Cryptify REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: JSON keys are camelCase (userId, dateOfBirth, idToken) except
trx_pin, which existing clients already send in snake_case. Python attribute
names stay snake_case; aliases carry the wire names.

Request fields are all Optional on purpose. A missing field is a business
validation failure that AuthService reports with its own message and a 400,
not a schema failure.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _RequestModel(BaseModel):
    # Phone numbers and PINs often arrive as JSON numbers.
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")


class RegisterRequest(_RequestModel):
    """Request body for POST /api/register."""

    email: Optional[str] = None
    phone: Optional[str] = None
    fname: Optional[str] = None
    lname: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=255)
    trx_pin: Optional[str] = Field(default=None, max_length=255)
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")


class LoginRequest(_RequestModel):
    """Request body for POST /api/login."""

    email: Optional[str] = None
    password: Optional[str] = Field(default=None, max_length=255)


class GoogleLoginRequest(_RequestModel):
    """Request body for POST /api/google-login."""

    id_token: Optional[str] = Field(default=None, alias="idToken")


class CheckUserRequest(_RequestModel):
    """Request body for POST /api/check-user."""

    email: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _ResponseModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class HealthResponse(_ResponseModel):
    """Response for GET /."""

    is_responding: bool = Field(default=True, alias="isResponding")
    message: str = "Cryptify server up and running"


class RegisterResponse(_ResponseModel):
    """Response for POST /api/register (201)."""

    success: bool = True
    user_id: str = Field(alias="userId")
    token: str


class UserData(_ResponseModel):
    """Profile view embedded in both login responses."""

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str
    phone_number: str = Field(alias="phoneNumber")


class LoginResponse(_ResponseModel):
    """Response for POST /api/login and POST /api/google-login."""

    success: bool = True
    user_id: str = Field(alias="userId")
    token: str
    user_data: UserData = Field(alias="userData")


class CheckUserResponse(_ResponseModel):
    """Response for POST /api/check-user."""

    exists: bool


class BalanceResponse(_ResponseModel):
    """Response for GET /api/get-balance/{userId}. Amounts are decimal strings."""

    success: bool = True
    balances: dict[str, str]


class DbTimeResponse(_ResponseModel):
    """Response for GET /api/test (debug only)."""

    current_time: str = Field(alias="currentTime")


class ErrorResponse(_ResponseModel):
    """Envelope for every error response."""

    status: int
    message: str
    is_new_user: Optional[bool] = Field(default=None, alias="isNewUser")
