"""Certificate monitoring API."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.certificate import (
    CertificateAcknowledgeRequest,
    CertificateCreate,
    CertificateResponse,
    CertificateSummaryResponse,
    CertificateUpdate,
    DiscoveryResponse,
    IssueRequest,
)
from ..services.certbot import CertbotUnavailableError, IssuanceError
from ..services.certificates import CertificateInspector, certificate_inspector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ssl", tags=["ssl"])


def get_certificate_inspector() -> CertificateInspector:
    """Dependency returning the shared inspector."""
    return certificate_inspector


@router.get("", response_model=List[CertificateResponse])
async def list_certificates(
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """All monitored certificates."""
    return await inspector.list_all(db)


@router.post("", response_model=CertificateResponse, status_code=201)
async def add_certificate(
    request: CertificateCreate,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Add a domain to certificate monitoring and check it right away."""
    try:
        return await inspector.register(db, request.domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/check-all", response_model=List[CertificateResponse])
async def check_all_certificates(
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Refresh every monitored certificate."""
    return await inspector.check_all(db)


@router.post("/discover", response_model=DiscoveryResponse)
async def discover_certificates(
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Sweep all hosted domains and record every certificate found."""
    result = await inspector.discover(db)
    return DiscoveryResponse(
        checked=[CertificateResponse.model_validate(state) for state in result.checked],
        skipped=result.skipped,
    )


@router.post("/check/{domain}", response_model=CertificateResponse)
async def check_certificate(
    domain: str,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Refresh one domain's certificate state."""
    try:
        return await inspector.check(db, domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/generate/{domain}", response_model=CertificateResponse)
async def generate_certificate(
    domain: str,
    request: Optional[IssueRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Issue (or renew) a certificate for a domain."""
    try:
        return await inspector.issue(db, domain, email=request.email if request else None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CertbotUnavailableError as e:
        raise HTTPException(status_code=503, detail={"domain": e.domain, "error": e.message})
    except IssuanceError as e:
        logger.error(f"Certificate issuance failed for {e.domain}: {e.message}")
        raise HTTPException(status_code=502, detail={"domain": e.domain, "error": e.message})


@router.post("/renew/{domain}", response_model=CertificateResponse)
async def renew_certificate(
    domain: str,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Renew a monitored certificate now."""
    try:
        state = await inspector.renew(db, domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CertbotUnavailableError as e:
        raise HTTPException(status_code=503, detail={"domain": e.domain, "error": e.message})
    except IssuanceError as e:
        logger.error(f"Certificate renewal failed for {e.domain}: {e.message}")
        raise HTTPException(status_code=502, detail={"domain": e.domain, "error": e.message})
    if state is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return state


@router.get("/stats/summary", response_model=CertificateSummaryResponse)
async def certificate_summary(
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Certificate counts per status and certbot availability."""
    summary = await inspector.summary(db)
    return CertificateSummaryResponse.model_validate(summary)


@router.post("/{domain}/acknowledge", response_model=CertificateResponse)
async def acknowledge_certificate_alarm(
    domain: str,
    request: Optional[CertificateAcknowledgeRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Acknowledge the expiry alarm of a domain. No-op when there is none."""
    try:
        state = await inspector.acknowledge(db, domain, actor=request.actor if request else None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if state is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return state


@router.get("/{domain}", response_model=CertificateResponse)
async def get_certificate(
    domain: str,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Stored certificate state of one domain."""
    try:
        state = await inspector.get(db, domain)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if state is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return state


@router.put("/{domain}", response_model=CertificateResponse)
async def update_certificate(
    domain: str,
    request: CertificateUpdate,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Change auto-renewal settings of one certificate."""
    try:
        state = await inspector.update_settings(
            db,
            domain,
            auto_renew=request.auto_renew,
            renewal_threshold_days=request.renewal_threshold_days,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if state is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return state


@router.delete("/{domain}", status_code=204)
async def delete_certificate(
    domain: str,
    db: AsyncSession = Depends(get_db),
    inspector: CertificateInspector = Depends(get_certificate_inspector),
):
    """Remove a domain from certificate monitoring."""
    if not await inspector.remove(db, domain):
        raise HTTPException(status_code=404, detail="Certificate not found")
