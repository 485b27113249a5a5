# /// script
# requires-python = ">=3.8"
# dependencies = [
#   "fastapi",
#   "uvicorn",
#   "aiohttp[speedups]",
#   "beautifulsoup4",
#   "lxml",
#   "cryptography",
#   "PyYAML",
# ]
# ///

import uvicorn
from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from novelpull.models import log, AcquisitionOptions, ExhaustionPolicy, listing_to_dict
from novelpull.errors import (
    ResultKind, NotFoundError, ParseError, RateLimitedError, TransportError, BatchExhaustedError
)
from novelpull.core.session import get_session, HttpClient
from novelpull.core.profiles import ProfileManager
from novelpull.core.job import AcquisitionJob

app = FastAPI()

@app.middleware("http")
async def log_requests(request, call_next):
    log.info(f"Incoming request: {request.method} {request.url}")
    response = await call_next(request)
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Chapter failures mapped to HTTP statuses
STATUS_FOR_KIND = {
    ResultKind.NOT_FOUND: 404,
    ResultKind.ENDPOINT_NOT_FOUND: 404,
    ResultKind.PARSE_ERROR: 422,
    ResultKind.DECRYPT_ERROR: 422,
    ResultKind.RATE_LIMITED: 502,
    ResultKind.TRANSPORT_ERROR: 502,
}

class ChaptersRequest(BaseModel):
    url: str
    retain_partial: bool = False

class ChapterRequest(BaseModel):
    url: str
    source_url: Optional[str] = None

def new_job(session, url: str, options: Optional[AcquisitionOptions] = None) -> AcquisitionJob:
    profile = ProfileManager.get_instance().get_profile(url)
    client = HttpClient(session, headers=profile.headers if profile else None)
    return AcquisitionJob(client, options=options, profile=profile)

@app.get("/ping")
async def ping(): return {"status": "ok"}

@app.post("/chapters")
async def chapters(req: ChaptersRequest):
    options = AcquisitionOptions(
        exhaustion_policy=ExhaustionPolicy.RETAIN if req.retain_partial else ExhaustionPolicy.DISCARD
    )
    try:
        async with get_session() as session:
            job = new_job(session, req.url, options)
            listing = await job.acquire(req.url)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ParseError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (RateLimitedError, BatchExhaustedError, TransportError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    log.info(f"Listed {len(listing.chapters)} chapters for {req.url}")
    return listing_to_dict(listing)

@app.post("/chapter")
async def chapter(req: ChapterRequest):
    try:
        async with get_session() as session:
            job = new_job(session, req.source_url or req.url)
            result = await job.decode(req.url)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if not result.is_ok:
        raise HTTPException(status_code=STATUS_FOR_KIND.get(result.kind, 500),
                            detail=f"{result.kind.value}: {result.message}")
    return {"paragraphs": list(result.value.paragraphs), "html": result.value.html}

if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
