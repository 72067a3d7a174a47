"""Command dispatcher — decodes inbound text frames, routes, encodes replies.

"ping" is answered with "pong" before any JSON parsing. Every other
non-blank frame gets exactly one response envelope: a result with code 0,
or an error result with a non-zero code. A bad frame never closes the
connection.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from auth.login import LoginHandshake
from auth.nonce_store import NonceStore
from auth.tokens import validate_token
from core.exceptions import (
    AuthError,
    GatewayError,
    InternalError,
    MalformedFrameError,
    UnknownMethodError,
)
from devices.allocator import DeviceIdAllocator
from devices.registry import DeviceRegistry
from observability.audit_log import log_audit_event
from observability.redaction import redact_dict
from schemas.audit import AuditEventType
from schemas.commands import (
    COMMANDS,
    PING_FRAME,
    PONG_FRAME,
    U64_MAX,
    ErrorResult,
    GetNonceCommand,
    LoginCommand,
    LoginResult,
    Method,
    NonceResult,
    RegisterDeviceCommand,
    RegisterDeviceResult,
    RequestEnvelope,
    ResponseCode,
    ResponseEnvelope,
)
from schemas.device import DeviceRecord

logger = logging.getLogger(__name__)

AuditFn = Callable[..., Awaitable[Any]]


@dataclass
class SessionContext:
    """Per-connection facts handlers may need."""
    conn_id: str
    peer: str = ""


def _echo_id(data: dict) -> int:
    value = data.get("id")
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= U64_MAX:
        return value
    return 0


def _echo_method(data: dict) -> str:
    value = data.get("method")
    return value if isinstance(value, str) else ""


def _error_envelope(request_id: int, method: str, error: GatewayError) -> str:
    return ResponseEnvelope(
        id=request_id,
        method=method,
        code=error.wire_code,
        result=ErrorResult(message=error.message, retryable=error.retryable).model_dump(),
    ).model_dump_json()


class CommandDispatcher:
    def __init__(
        self,
        nonces: NonceStore,
        registry: DeviceRegistry,
        allocator: Optional[DeviceIdAllocator] = None,
        handshake: Optional[LoginHandshake] = None,
        audit: AuditFn = log_audit_event,
    ):
        self.nonces = nonces
        self.registry = registry
        self.allocator = allocator or DeviceIdAllocator(registry)
        self.handshake = handshake or LoginHandshake(nonces, registry)
        self.audit = audit
        self._handlers: Dict[str, Callable[[Any, SessionContext], Awaitable[BaseModel]]] = {
            Method.GET_NONCE.value: self._handle_get_nonce,
            Method.REGISTER_DEVICE.value: self._handle_register_device,
            Method.LOGIN.value: self._handle_login,
        }

    async def dispatch(self, raw: str, ctx: SessionContext) -> Optional[str]:
        """Handle one text frame. Returns the reply text, or None for blank frames."""
        text = raw.strip()
        if not text:
            logger.debug("Blank frame dropped: conn=%s", ctx.conn_id)
            return None
        if text == PING_FRAME:
            return PONG_FRAME

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Unparseable frame: conn=%s error=%s", ctx.conn_id, str(e))
            return _error_envelope(0, "", MalformedFrameError(f"Invalid JSON: {e.msg}"))
        except RecursionError:
            logger.warning("Frame nested too deeply: conn=%s length=%d", ctx.conn_id, len(text))
            return _error_envelope(0, "", MalformedFrameError("Invalid JSON: nesting too deep"))
        if not isinstance(data, dict):
            logger.warning("Frame is not a JSON object: conn=%s", ctx.conn_id)
            return _error_envelope(0, "", MalformedFrameError("Frame must be a JSON object"))

        request_id, method = _echo_id(data), _echo_method(data)
        try:
            envelope = RequestEnvelope.model_validate(data)
            logger.info(
                "Command: conn=%s id=%d method=%s params=%s",
                ctx.conn_id, envelope.id, envelope.method, redact_dict(envelope.params),
            )
            command_model = COMMANDS.get(envelope.method)
            if command_model is None:
                raise UnknownMethodError(envelope.method)
            command = command_model.model_validate(data)
            result = await self._handlers[envelope.method](command, ctx)
        except ValidationError as e:
            logger.warning("Malformed command: conn=%s id=%d method=%s errors=%d",
                           ctx.conn_id, request_id, method, e.error_count())
            return _error_envelope(request_id, method, MalformedFrameError(_describe(e)))
        except GatewayError as e:
            log = logger.error if e.retryable else logger.warning
            log("Command failed: conn=%s id=%d method=%s code=%s error=%s",
                ctx.conn_id, request_id, method, e.code, e.message)
            return _error_envelope(request_id, method, e)
        except Exception as e:
            logger.error("Command crashed: conn=%s id=%d method=%s error=%s",
                         ctx.conn_id, request_id, method, str(e), exc_info=True)
            return _error_envelope(request_id, method, InternalError())

        return ResponseEnvelope(
            id=request_id,
            method=method,
            code=ResponseCode.OK,
            result=result.model_dump(),
        ).model_dump_json()

    # ---- handlers ----

    async def _handle_get_nonce(self, command: GetNonceCommand, ctx: SessionContext) -> NonceResult:
        nonce = await self.nonces.get(command.params.user_id)
        return NonceResult(nonce=str(nonce))

    async def _handle_register_device(
        self, command: RegisterDeviceCommand, ctx: SessionContext,
    ) -> RegisterDeviceResult:
        params = command.params
        if params.device_id is not None:
            return await self._reregister_device(command, ctx)

        async def claim(device_id: str) -> bool:
            return await self.registry.insert_if_absent(DeviceRecord(
                device_id=device_id,
                device_name=params.device_name,
                mac=params.mac,
            ))

        device_id = await self.allocator.allocate(claim)
        logger.info("Device registered: conn=%s device=%s name=%s", ctx.conn_id, device_id, params.device_name)
        await self._audit(AuditEventType.DEVICE_REGISTERED, ctx, details={
            "device_id": device_id, "device_name": params.device_name, "mac": params.mac,
        })
        return RegisterDeviceResult(device_id=device_id)

    async def _reregister_device(
        self, command: RegisterDeviceCommand, ctx: SessionContext,
    ) -> RegisterDeviceResult:
        params = command.params
        claims = validate_token(command.token)
        if claims.device_id != params.device_id:
            raise AuthError("Token was not issued for this device")

        existing = await self.registry.get(params.device_id)
        if existing is None:
            raise AuthError(f"Device not registered: {params.device_id}")

        await self.registry.upsert(existing.model_copy(update={
            "device_name": params.device_name,
            "mac": params.mac,
        }))
        logger.info("Device updated: conn=%s device=%s user=%s", ctx.conn_id, params.device_id, claims.user_id)
        await self._audit(AuditEventType.DEVICE_UPDATED, ctx, user_id=claims.user_id, details={
            "device_id": params.device_id, "device_name": params.device_name, "mac": params.mac,
        })
        return RegisterDeviceResult(device_id=params.device_id)

    async def _handle_login(self, command: LoginCommand, ctx: SessionContext) -> LoginResult:
        params = command.params
        try:
            token = await self.handshake.login(
                params.user_id, params.device_id, params.nonce, params.signature,
            )
        except GatewayError as e:
            await self._audit(AuditEventType.LOGIN_FAILURE, ctx, user_id=params.user_id, details={
                "device_id": params.device_id, "nonce": params.nonce, "reason": e.code,
            })
            raise
        await self._audit(AuditEventType.LOGIN_SUCCESS, ctx, user_id=params.user_id, details={
            "device_id": params.device_id, "nonce": params.nonce,
        })
        return LoginResult(token=token)

    async def _audit(self, event_type: AuditEventType, ctx: SessionContext, **kwargs) -> None:
        try:
            await self.audit(event_type, conn_id=ctx.conn_id, **kwargs)
        except Exception as e:
            logger.warning("Audit write failed: conn=%s event=%s error=%s", ctx.conn_id, event_type.value, str(e))


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid field '{location}': {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")
