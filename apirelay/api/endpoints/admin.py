"""
Admin Endpoints
Deny-list and domain whitelist management for operators.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from apirelay.domain.value_objects.client_identity import ClientIdentity
from apirelay.proxy.errors import RateLimited
from apirelay.proxy.whitelist import normalize_domain

logger = structlog.get_logger(__name__)

STRICT_TIER = "strict"


async def enforce_strict_limit(request: Request, response: Response) -> None:
    """Count an admin call against the ``strict`` tier."""
    gateway = request.app.state.gateway
    limiter = gateway.state.rate_limiter
    result = await limiter.admit(STRICT_TIER, gateway.client_ip(request))
    headers = result.headers(limiter.now())
    if not result.allowed:
        raise RateLimited(
            "Too many requests, please try again later",
            headers=headers,
            retryAfterSeconds=result.retry_after_seconds,
        )
    response.headers.update(headers)


router = APIRouter(dependencies=[Depends(enforce_strict_limit)])


class BlacklistEntryInput(BaseModel):
    """Input model for a manual deny-list entry."""

    ip_address: Optional[str] = Field(None, max_length=64)
    user_agent_hash: Optional[str] = Field(None, max_length=64)
    device_fingerprint: Optional[str] = Field(None, max_length=64)
    reason: str = Field(..., min_length=1, max_length=500)
    duration: Optional[int] = Field(
        None,
        gt=0,
        description="Block lifetime in seconds; omit for a permanent entry",
    )


class WhitelistDomainInput(BaseModel):
    """Input model for an allowed domain."""

    domain: str = Field(..., min_length=1, max_length=253)


def _operator(request: Request) -> str:
    return getattr(request.state, "operator", "admin")


# =============================================================================
# Deny-list
# =============================================================================


@router.get("/blacklist")
async def list_blacklist(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """
    List active deny-list entries, newest first.

    Returns:
        Entries with status, summary stats and pagination
    """
    return await request.app.state.gateway.state.blacklist.list_entries(page, limit)


@router.post("/blacklist", status_code=201)
async def add_blacklist_entry(request: Request, body: BlacklistEntryInput):
    """Add a permanent or temporary entry for an IP, user agent hash or fingerprint."""
    identity = ClientIdentity(
        ip=body.ip_address or None,
        user_agent_hash=body.user_agent_hash or None,
        device_fingerprint=body.device_fingerprint or None,
    )
    if identity.is_empty():
        raise HTTPException(
            status_code=400,
            detail="At least one of ip_address, user_agent_hash or device_fingerprint is required",
        )

    blacklist = request.app.state.gateway.state.blacklist
    entry = await blacklist.add(
        identity,
        reason=body.reason,
        added_by=_operator(request),
        duration=body.duration,
    )
    return {"success": True, "entry": entry.to_dict(blacklist.now())}


@router.delete("/blacklist/{entry_id}")
async def remove_blacklist_entry(request: Request, entry_id: int):
    """Delete a deny-list entry by id."""
    removed = await request.app.state.gateway.state.blacklist.remove(entry_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Entry not found")
    return {"success": True, "id": entry_id}


# =============================================================================
# Whitelist
# =============================================================================


@router.get("/whitelist")
async def list_whitelist(request: Request):
    whitelist = request.app.state.gateway.state.whitelist
    domains = await whitelist.list_domains()
    return {
        "enabled": whitelist.enabled,
        "domains": domains,
        "count": len(domains),
    }


@router.post("/whitelist", status_code=201)
async def add_whitelist_domain(request: Request, body: WhitelistDomainInput):
    whitelist = request.app.state.gateway.state.whitelist
    try:
        added = await whitelist.add_domain(body.domain, _operator(request))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not added:
        raise HTTPException(status_code=409, detail="Domain already whitelisted")
    return {"success": True, "domain": normalize_domain(body.domain)}


@router.delete("/whitelist/{domain}")
async def remove_whitelist_domain(request: Request, domain: str):
    removed = await request.app.state.gateway.state.whitelist.remove_domain(domain)
    if not removed:
        raise HTTPException(status_code=404, detail="Domain not found")
    return {"success": True, "domain": domain}
