"""Command envelope schemas — canonical contract between device clients and the gateway.

Version: v1
Request:  {"id": <u64>, "method": <str>, "token": <str>, "params": {...}}
Response: {"id": <u64 echoed>, "method": <str echoed>, "code": <i32>, "result": {...}}

The method set is closed: every accepted method has a command model in
COMMANDS. Anything else is answered with UNKNOWN_METHOD.
"""
from enum import Enum, IntEnum
from typing import Annotated, Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, BeforeValidator, Field

U64_MAX = 2**64 - 1

U64 = Annotated[int, Field(strict=True, ge=0, le=U64_MAX)]

# Clients that hold no credential may send null instead of ""
Token = Annotated[str, BeforeValidator(lambda v: "" if v is None else v)]

# Keepalive frames bypass the JSON protocol entirely
PING_FRAME = "ping"
PONG_FRAME = "pong"


class Method(str, Enum):
    GET_NONCE = "getNonce"
    REGISTER_DEVICE = "registerDevice"
    LOGIN = "login"


class ResponseCode(IntEnum):
    OK = 0
    MALFORMED_FRAME = 400
    UNAUTHORIZED = 401
    UNKNOWN_METHOD = 404
    NONCE_REPLAY = 409
    SERVER_ERROR = 500
    UNAVAILABLE = 503


# ---- Envelopes ----

class RequestEnvelope(BaseModel):
    """Untyped request as received. params validated per method later."""
    id: U64
    method: str
    token: Token = ""
    params: Dict[str, Any] = Field(default_factory=dict)


class ResponseEnvelope(BaseModel):
    id: U64 = 0
    method: str = ""
    code: int = ResponseCode.OK
    result: Dict[str, Any] = Field(default_factory=dict)


# =====================================================
#  Params
# =====================================================

class GetNonceParams(BaseModel):
    user_id: str


class RegisterDeviceParams(BaseModel):
    device_name: str
    mac: str
    # Set to re-register (rename) a device the caller holds a credential for
    device_id: Optional[str] = None


class LoginParams(BaseModel):
    user_id: str
    device_id: str
    nonce: U64
    signature: str  # "0x" + hex


# =====================================================
#  Results
# =====================================================

class NonceResult(BaseModel):
    nonce: str  # decimal


class RegisterDeviceResult(BaseModel):
    device_id: str


class LoginResult(BaseModel):
    token: str


class ErrorResult(BaseModel):
    message: str
    retryable: bool = False


# =====================================================
#  Commands (one variant per method)
# =====================================================

class GetNonceCommand(BaseModel):
    id: U64
    method: Literal["getNonce"] = "getNonce"
    token: Token = ""
    params: GetNonceParams


class RegisterDeviceCommand(BaseModel):
    id: U64
    method: Literal["registerDevice"] = "registerDevice"
    token: Token = ""
    params: RegisterDeviceParams


class LoginCommand(BaseModel):
    id: U64
    method: Literal["login"] = "login"
    token: Token = ""
    params: LoginParams


Command = Union[GetNonceCommand, RegisterDeviceCommand, LoginCommand]

COMMANDS: Dict[str, Type[BaseModel]] = {
    Method.GET_NONCE.value: GetNonceCommand,
    Method.REGISTER_DEVICE.value: RegisterDeviceCommand,
    Method.LOGIN.value: LoginCommand,
}
