"""
HTTP surface for aclgate.

Routes:
- POST   /request-token        temporary token bound to an alias
- POST   /register             [temp token] credential + self-owned ACL record
- POST   /authenticate         alias + password -> access/refresh pair
- POST   /refresh-token        refresh token -> new pair
- POST   /add-write-access     [bearer] owner-signed grant
- POST   /remove-write-access  [bearer] owner-signed revoke
- POST   /acl                  does an alias have credentials
- POST   /fetch-data           records under a path prefix
- POST   /update-data          [bearer, ACL] mutable or content-addressed write
- DELETE /update-data          [bearer] delete mutable records under a prefix
- GET    /health
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, config
from .errors import AuthError, GatewayError, RefreshRejected
from .logging_config import configure_logging, set_request_id
from .models import (AccessChangeBody, AliasBody, AuthenticateBody, PathBody, Payload,
                     RefreshBody, RegisterBody, RequestTokenBody, UpdateDataBody)
from .paths import StorePath
from .services import Services
from .session import ACCESS, TEMPORARY, TokenClaims

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================
# Dependencies
# ============================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization:
        raise AuthError("Access denied. No token provided.")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Access denied. No token provided.")
    return token.strip()


def current_user(token: str = Depends(bearer_token),
                 services: Services = Depends(get_services)) -> TokenClaims:
    return services.tokens.verify(token, ACCESS)


def temporary_user(token: str = Depends(bearer_token),
                   services: Services = Depends(get_services)) -> TokenClaims:
    return services.tokens.verify(token, TEMPORARY)


# ============================================================
# Session / identity
# ============================================================

@router.post("/request-token")
def request_token(req: RequestTokenBody, services: Services = Depends(get_services)):
    return {"token": services.identity.request_token(req.alias)}


@router.post("/register")
async def register(req: RegisterBody, temp: TokenClaims = Depends(temporary_user),
                   services: Services = Depends(get_services)):
    pair = await services.identity.register(temp, req.alias, req.publicKey, req.hashedPassword)
    return {"message": "User registered successfully", "token": pair.access_token, **pair.to_dict()}


@router.post("/authenticate")
async def authenticate(req: AuthenticateBody, services: Services = Depends(get_services)):
    pair = await services.identity.authenticate(req.alias, req.password)
    return {"message": "Authentication successful", **pair.to_dict()}


@router.post("/refresh-token")
def refresh_token(req: RefreshBody, services: Services = Depends(get_services)):
    try:
        pair = services.identity.refresh(req.refreshToken)
    except AuthError as e:
        raise RefreshRejected("Invalid refresh token") from e
    return pair.to_dict()


@router.post("/acl")
async def acl_exists(req: AliasBody, services: Services = Depends(get_services)):
    if await services.identity.credential_exists(req.alias):
        return {"exists": True}
    return JSONResponse(status_code=404, content={
        "exists": False, "err": "No user credentials found for the user."})


# ============================================================
# ACL mutation
# ============================================================

@router.post("/add-write-access")
async def add_write_access(req: AccessChangeBody, user: TokenClaims = Depends(current_user),
                           services: Services = Depends(get_services)):
    result = await services.acl.grant_write(StorePath.parse(req.path), req.publicKey,
                                            req.signature, user.public_key, raw_path=req.path)
    return result.to_dict()


@router.post("/remove-write-access")
async def remove_write_access(req: AccessChangeBody, user: TokenClaims = Depends(current_user),
                              services: Services = Depends(get_services)):
    result = await services.acl.revoke_write(StorePath.parse(req.path), req.publicKey,
                                             req.signature, user.public_key, raw_path=req.path)
    return result.to_dict()


# ============================================================
# Data
# ============================================================

@router.post("/fetch-data")
async def fetch_data(req: PathBody, services: Services = Depends(get_services)):
    return await services.gateway.fetch(req.path)


@router.post("/update-data")
async def update_data(req: UpdateDataBody, user: TokenClaims = Depends(current_user),
                      services: Services = Depends(get_services)):
    path = StorePath.parse(req.path)
    await services.acl.check_write(path, user.public_key)
    result = await services.gateway.write(path, Payload.from_wire(req.value))
    return JSONResponse(status_code=201 if result.immutable else 200, content=result.to_dict())


@router.delete("/update-data")
async def delete_data(req: PathBody, user: TokenClaims = Depends(current_user),
                      services: Services = Depends(get_services)):
    if services.check_deletes:
        await services.acl.check_write(StorePath.parse(req.path), user.public_key)
    result = await services.gateway.delete_mutable(req.path)
    return result.to_dict()


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    return {"status": "ok", "version": __version__, "outbox": await services.outbox.stats()}


# ============================================================
# Application
# ============================================================

def create_app(services: Optional[Services] = None, background: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built components; built from the environment at startup when omitted
        background: Start the outbox worker and keep-alive task
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services or Services.from_config()
        app.state.services = svc
        await svc.start(background=background)
        try:
            yield
        finally:
            await svc.stop()

    app = FastAPI(title="aclgate", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > config.MAX_BODY_BYTES:
            return JSONResponse(status_code=413, content={"err": "Request body too large", "code": "TOO_LARGE"})
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={
            "err": "Malformed or missing fields",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        })

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"err": "Server error", "code": "SERVER_ERROR"})

    app.include_router(router)
    return app


app = create_app()


def main():
    """Run the gateway with uvicorn."""
    import uvicorn

    configure_logging(level=config.LOG_LEVEL, json_format=config.LOG_JSON)
    problems = config.validate_config()
    for problem in problems:
        logger.warning("config: %s", problem)
    if problems and config.is_production():
        raise SystemExit("refusing to start with invalid production config")

    uvicorn.run("aclgate.main:app", host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
