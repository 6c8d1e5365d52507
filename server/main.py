"""Section Highlight FastAPI server: § formatting code annotation."""

from __future__ import annotations

import logging
import os
import socket
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, model_validator

from section_codes import annotate, literal_context, palette_dict

logger = logging.getLogger(__name__)

app = FastAPI(title="Section Highlight", version="1.0.0")
_security = HTTPBearer()


def env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    return value if value > 0 else fallback


TOKEN = os.environ.get("SH_TOKEN", "changeme")
MAX_TEXT = env_int("SH_MAX_TEXT", 65536)
MAX_BATCH = env_int("SH_MAX_BATCH", 500)
RATE_LIMIT = env_int("SH_RATE_LIMIT", 20)

if TOKEN == "changeme":
    import sys

    print(
        "\n\033[1;31mFATAL: SH_TOKEN is set to 'changeme'.\033[0m\n"
        "Generate a secure token:  python3 -c \"import secrets; print(secrets.token_urlsafe(32))\"\n"
        "Then set it:  export SH_TOKEN=<your-token>\n",
        file=sys.stderr,
    )
    sys.exit(1)


def _verify(creds: HTTPAuthorizationCredentials = Depends(_security)) -> str:
    if creds.credentials != TOKEN:
        logger.warning("Rejected request with invalid token")
        raise HTTPException(status_code=401, detail="Invalid token")
    return creds.credentials


class LiteralRequest(BaseModel):
    text: str
    heredoc: Optional[bool] = None
    offset: int = Field(default=0, ge=0)


class BatchRequest(BaseModel):
    literals: list[LiteralRequest]

    @model_validator(mode="after")
    def not_empty(self):
        if not self.literals:
            raise ValueError("Provide at least one literal")
        return self


class _RateLimiter:
    """Simple in-memory sliding-window rate limiter."""

    def __init__(self, max_per_sec: int = 20):
        self._max = max_per_sec
        self._timestamps: list[float] = []

    def check(self) -> None:
        now = time.monotonic()
        self._timestamps = [t for t in self._timestamps if now - t < 1.0]
        if len(self._timestamps) >= self._max:
            logger.warning("Batch rate limit of %d/s exceeded", self._max)
            raise HTTPException(status_code=429, detail="Rate limit exceeded")
        self._timestamps.append(now)


_batch_limiter = _RateLimiter(max_per_sec=RATE_LIMIT)


def _annotate_one(body: LiteralRequest) -> dict:
    if len(body.text) > MAX_TEXT:
        logger.warning("Rejected literal of %d chars", len(body.text))
        raise HTTPException(status_code=413, detail=f"Literal exceeds {MAX_TEXT} characters")

    heredoc = body.heredoc
    if heredoc is None:
        heredoc, _ = literal_context(body.text)
    annotations = annotate(body.text, heredoc, body.offset)
    return {
        "offset": body.offset,
        "heredoc": heredoc,
        "annotations": [ann.to_dict() for ann in annotations],
    }


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "hostname": socket.gethostname(),
    }


@app.get("/palette")
async def palette(_: str = Depends(_verify)):
    return palette_dict()


@app.post("/annotate")
def post_annotate(
    body: LiteralRequest,
    _: str = Depends(_verify),
):
    return _annotate_one(body)


@app.post("/annotate/batch")
def post_annotate_batch(
    body: BatchRequest,
    _: str = Depends(_verify),
):
    _batch_limiter.check()
    if len(body.literals) > MAX_BATCH:
        raise HTTPException(status_code=413, detail=f"Batch exceeds {MAX_BATCH} literals")
    return {"results": [_annotate_one(lit) for lit in body.literals]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8787)
