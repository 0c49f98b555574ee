"""
Issue routes

Public:         GET /issues/public, GET /issues/{issue_id}
Citizen:        POST /issues, GET /issues/my
Head authority: GET /issues/authority, PATCH /issues/{issue_id}/status,
                PATCH /issues/{issue_id}/reassign, DELETE /issues/{issue_id},
                POST /issues/bulk-delete
"""
from fastapi import APIRouter, Depends, Response
from typing import Any, Dict, List, Optional
import logging

from civiclens.core.database import get_issue_service
from civiclens.core.permissions import require_citizen, require_head_authority
from civiclens.models.issue_model import (
    BulkDeleteRequest,
    CreateIssueRequest,
    ReassignIssueRequest,
    UpdateStatusRequest,
)
from civiclens.services.issue_service import IssueService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/issues")


# Fixed paths are registered before /{issue_id} so they are not captured by it

@router.get("/public")
async def get_public_issues(service: IssueService = Depends(get_issue_service)) -> List[Dict[str, Any]]:
    """Transparency wall: every issue, newest first, no login required."""
    return await service.list_public_issues()


@router.post("", status_code=201)
async def create_issue(
    payload: CreateIssueRequest,
    current_user: Dict[str, Any] = Depends(require_citizen),
    service: IssueService = Depends(get_issue_service),
) -> Dict[str, Any]:
    logger.info(f"📥 Create issue request from {current_user.get('email')}")
    return await service.create_issue(payload, current_user)


@router.get("/my")
async def get_my_issues(
    current_user: Dict[str, Any] = Depends(require_citizen),
    service: IssueService = Depends(get_issue_service),
) -> List[Dict[str, Any]]:
    return await service.list_my_issues(current_user)


@router.get("/authority")
async def get_authority_issues(
    limit: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(require_head_authority),
    service: IssueService = Depends(get_issue_service),
) -> List[Dict[str, Any]]:
    return await service.list_authority_issues(limit)


@router.post("/bulk-delete", status_code=204)
async def bulk_delete_issues(
    payload: BulkDeleteRequest,
    current_user: Dict[str, Any] = Depends(require_head_authority),
    service: IssueService = Depends(get_issue_service),
) -> Response:
    logger.info(f"🗑️ Bulk delete of {len(payload.issueIds)} issues by {current_user.get('email')}")
    await service.bulk_delete_issues(payload.issueIds)
    return Response(status_code=204)


@router.get("/{issue_id}")
async def get_issue(issue_id: str, service: IssueService = Depends(get_issue_service)) -> Dict[str, Any]:
    return await service.get_issue(issue_id)


@router.patch("/{issue_id}/status")
async def update_issue_status(
    issue_id: str,
    payload: UpdateStatusRequest,
    current_user: Dict[str, Any] = Depends(require_head_authority),
    service: IssueService = Depends(get_issue_service),
) -> Dict[str, Any]:
    return await service.update_status(
        issue_id, payload.status, payload.resolved_image_url, current_user
    )


@router.patch("/{issue_id}/reassign")
async def reassign_issue(
    issue_id: str,
    payload: ReassignIssueRequest,
    current_user: Dict[str, Any] = Depends(require_head_authority),
    service: IssueService = Depends(get_issue_service),
) -> Dict[str, Any]:
    return await service.reassign_issue(issue_id, payload.assigned_authority)


@router.delete("/{issue_id}", status_code=204)
async def delete_issue(
    issue_id: str,
    current_user: Dict[str, Any] = Depends(require_head_authority),
    service: IssueService = Depends(get_issue_service),
) -> Response:
    logger.info(f"🗑️ Delete issue {issue_id} by {current_user.get('email')}")
    await service.delete_issue(issue_id)
    return Response(status_code=204)
