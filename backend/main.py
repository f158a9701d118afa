import logging
import math
import os
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from pydantic import BaseModel

try:
    from backend import app_context
    from backend.app.routes.billing import router as billing_router
    from backend.app.services.billing import report_limit_discrepancies
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from app.routes.billing import router as billing_router  # type: ignore[no-redef]
    from app.services.billing import report_limit_discrepancies  # type: ignore[no-redef]


load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("promptsgo")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "postgres"),
    user=os.getenv("DB_USER", "postgres"),
    password=os.getenv("DB_PASSWORD", "postgres"),
    sslmode=os.getenv("DB_SSLMODE", "prefer"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET") or None
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
JWT_ALGORITHM = "HS256"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

if not SUPABASE_JWT_SECRET:
    logger.warning("SUPABASE_JWT_SECRET is not set; every authenticated request will be rejected")


class AuthenticatedUser(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    access_token: str


def get_conn():
    return psycopg2.connect(**DB_CFG)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user_from_access_token(access_token: str) -> Optional[AuthenticatedUser]:
    if not SUPABASE_JWT_SECRET:
        logger.error("SUPABASE_JWT_SECRET is not set; rejecting access token")
        return None
    try:
        payload = jwt.decode(
            access_token,
            SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    return AuthenticatedUser(
        id=str(subject),
        email=payload.get("email"),
        role=payload.get("role"),
        access_token=access_token,
    )


def get_current_user(authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_access_token(token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

app = FastAPI(title="PromptsGo API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)


@app.on_event("startup")
async def check_plan_catalog() -> None:
    report_limit_discrepancies()


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}
