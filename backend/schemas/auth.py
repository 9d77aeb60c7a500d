from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Contact values are checked and canonicalized by the account service;
# here only their size is bounded
ContactStr = Annotated[str, Field(min_length=3, max_length=255)]
CodeStr = Annotated[str, Field(min_length=1, max_length=12)]

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=256)
    contact: ContactStr

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)

class VerifyContactRequest(BaseModel):
    contact: ContactStr
    code: CodeStr

class RequestPasswordResetRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: CodeStr
    new_password: str = Field(..., max_length=256)

class ContactChangeRequest(BaseModel):
    new_contact: ContactStr

class ChangeContactRequest(BaseModel):
    new_contact: ContactStr
    code: CodeStr

class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    contact_verified: bool
    requires_verification: bool

class CodeSentResponse(BaseModel):
    success: bool = True
    message: str
    masked_contact: Optional[str] = None

class MessageResponse(BaseModel):
    success: bool = True
    message: str

class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    contact: Optional[str] = None
    contact_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
