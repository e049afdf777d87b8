"""
Form Endpoints
Public feedback and abuse-report submissions.
"""

import json
import random
from typing import Literal, Optional, Type

import pydantic
import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field, field_validator

from apirelay.proxy.errors import RateLimited, ValidationError

router = APIRouter()
logger = structlog.get_logger(__name__)

FORM_TIERS = ("burst", "feedback")


class FeedbackSubmission(BaseModel):
    """Input model for user feedback."""

    message: str = Field(..., min_length=1, max_length=2000)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v.strip()

    @field_validator("email")
    @classmethod
    def email_shape(cls, v: Optional[str]) -> Optional[str]:
        if v and "@" not in v:
            raise ValueError("email is not a valid address")
        return v or None


class ReportSubmission(BaseModel):
    """Input model for an abuse report against a target URL."""

    target_url: str = Field(..., min_length=1, max_length=2048)
    reason: Literal["spam", "illegal", "abuse", "copyright", "other"]
    description: Optional[str] = Field(None, max_length=1000)
    reporter_email: Optional[str] = Field(None, max_length=255)

    @field_validator("target_url")
    @classmethod
    def http_url(cls, v: str) -> str:
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("target_url must be an http(s) URL")
        return v

    @field_validator("reporter_email")
    @classmethod
    def email_shape(cls, v: Optional[str]) -> Optional[str]:
        if v and "@" not in v:
            raise ValueError("reporter_email is not a valid address")
        return v or None


async def _submit(request: Request, kind: str, model: Type[BaseModel], message: str) -> dict:
    """
    Shared submission flow: deny check, form rate limits, validation,
    persistence.
    """
    gateway = request.app.state.gateway
    client_ip = gateway.client_ip(request)

    decision = await gateway.check_form_client(request)
    if decision.blocked:
        logger.warning("blocked_form_submission", client_ip=client_ip, kind=kind)
        # Same shape as a stored submission so the block stays invisible
        return {"success": True, "message": message, "id": random.randint(1, 99999)}

    limiter = gateway.state.rate_limiter
    for tier in FORM_TIERS:
        result = await limiter.admit(tier, client_ip)
        if not result.allowed:
            raise RateLimited(
                "Too many submissions, please try again later",
                headers=result.headers(limiter.now()),
                retryAfterSeconds=result.retry_after_seconds,
            )

    try:
        payload = json.loads(await request.body() or b"null")
        submission = model.model_validate(payload)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be JSON", error="invalid_body")
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Submission failed validation",
            error="validation_failed",
            details=[err["msg"] for err in e.errors()],
        )

    record = submission.model_dump()
    record["client_ip"] = client_ip
    submission_id = await gateway.state.store.save_submission(kind, record)

    logger.info("form_submission_saved", kind=kind, id=submission_id, client_ip=client_ip)
    return {"success": True, "message": message, "id": submission_id}


@router.post("/feedback")
async def submit_feedback(request: Request):
    """Accept a feedback message."""
    return await _submit(
        request,
        "feedback",
        FeedbackSubmission,
        "Feedback received, thank you!",
    )


@router.post("/report")
async def submit_report(request: Request):
    """Accept an abuse report about a target URL."""
    return await _submit(
        request,
        "report",
        ReportSubmission,
        "Report received, we will review it shortly",
    )
