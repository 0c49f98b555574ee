import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from postgrest.exceptions import APIError as PostgrestAPIError

from civiclens.core.errors import APIError, AuthenticationError, NotFoundError, ValidationError
from civiclens.models.issue_model import (
    KNOWN_DEPARTMENTS,
    VALID_STATUSES,
    CreateIssueRequest,
    IssueStatus,
)
from civiclens.services.ai_service import IssueClassifier
from civiclens.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_limit(value: Any) -> Optional[int]:
    """Leading integer of a ?limit= value, or None when it is not numeric."""
    if value is None:
        return None
    if isinstance(value, int):
        number = value
    else:
        match = _LEADING_INT.match(str(value))
        if not match:
            return None
        number = int(match.group(1))
    return number if number >= 0 else None


def _is_filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _db_details(error: Exception) -> Optional[str]:
    return getattr(error, "message", None) or str(error) or None


class IssueService:
    """Issue CRUD, classification on create, and status audit logging."""

    def __init__(self, supabase: SupabaseService, classifier: IssueClassifier):
        self.supabase = supabase
        self.classifier = classifier

    async def create_issue(self, payload: CreateIssueRequest, user: Dict[str, Any]) -> Dict[str, Any]:
        citizen_id = user.get("id")
        if not citizen_id:
            logger.error("Validation Error: no citizen id on the authenticated user")
            raise AuthenticationError("User session invalid")

        logger.info(f"📸 Running AI classification for citizen {citizen_id}")
        ai_result = await self.classifier.classify(payload.image_url, payload.description)

        if ai_result.get("error"):
            logger.info(f"🚫 AI determined not a civic issue: {ai_result['error']}")
            raise ValidationError(
                "Submission not related to civic issues", details=ai_result["error"]
            )

        final_department = (
            payload.manual_department
            if _is_filled(payload.manual_department)
            else ai_result.get("assigned_authority")
        )
        final_issue_type = (
            payload.manual_issue_type
            if _is_filled(payload.manual_issue_type)
            else ai_result.get("issue_type")
        )
        is_manual = bool(
            payload.is_manual_submission is True
            or _is_filled(payload.manual_department)
            or _is_filled(payload.manual_issue_type)
        )

        issue_data = {
            "citizen_id": citizen_id,
            "image_url": payload.image_url,
            "description": payload.description,
            "location_lat": float(payload.location_lat),
            "location_lng": float(payload.location_lng),
            "issue_type": final_issue_type,
            "assigned_authority": final_department,
            "department": final_department,
            "ai_analysis": {**ai_result, "is_manual": is_manual},
            "status": IssueStatus.REPORTED.value,
        }

        try:
            rows = await self.supabase.insert_issue(issue_data)
        except PostgrestAPIError as e:
            logger.error(f"❌ Supabase insert error: {e}")
            raise ValidationError(
                "Database insert failed",
                details=_db_details(e),
                hint=getattr(e, "hint", None),
                code=getattr(e, "code", None),
            )
        except Exception as e:
            logger.error(f"❌ Create issue error: {e}", exc_info=True)
            raise APIError("Failed to report issue", details=str(e) or "Internal Server Error")

        if not rows:
            raise APIError("Failed to report issue", details="Failed to save issue - no data returned")

        issue = rows[0]
        logger.info(
            f"✅ Issue {issue.get('id')} reported: {final_issue_type} -> {final_department} (manual={is_manual})"
        )
        return issue

    async def list_my_issues(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return await self.supabase.list_issues(citizen_id=user.get("id"))
        except Exception as e:
            logger.error(f"❌ Error fetching issues for {user.get('id')}: {e}")
            raise APIError("Failed to fetch issues")

    async def list_authority_issues(self, limit: Any = None) -> List[Dict[str, Any]]:
        try:
            return await self.supabase.list_issues(limit=parse_limit(limit))
        except Exception as e:
            logger.error(f"❌ Error fetching authority issues: {e}")
            raise APIError("Failed to fetch issues")

    async def list_public_issues(self) -> List[Dict[str, Any]]:
        try:
            return await self.supabase.list_issues()
        except Exception as e:
            logger.error(f"❌ Error fetching transparency wall: {e}")
            raise APIError("Failed to fetch transparency wall issues")

    async def get_issue(self, issue_id: str) -> Dict[str, Any]:
        try:
            issue = await self.supabase.get_issue(issue_id)
        except Exception as e:
            logger.error(f"❌ Error fetching issue {issue_id}: {e}")
            raise APIError("Database error", details=_db_details(e))

        if not issue:
            raise NotFoundError("Issue not found")
        return issue

    async def update_status(
        self,
        issue_id: str,
        status: Optional[str],
        resolved_image_url: Optional[str],
        user: Dict[str, Any],
    ) -> Dict[str, Any]:
        if status not in VALID_STATUSES:
            raise ValidationError("Invalid status")

        try:
            old_issue = await self.supabase.get_issue(issue_id)
        except Exception as e:
            logger.error(f"❌ Error loading issue {issue_id}: {e}")
            old_issue = None
        if not old_issue:
            raise NotFoundError("Issue not found")

        update_data: Dict[str, Any] = {"status": status}
        resolved_with_image = status == IssueStatus.RESOLVED.value and bool(resolved_image_url)
        if resolved_with_image:
            update_data["resolved_image_url"] = resolved_image_url
            update_data["resolved_at"] = datetime.now(pytz.utc).isoformat()

        try:
            rows = await self.supabase.update_issue(issue_id, update_data)
        except Exception as e:
            logger.error(f"❌ Status update failed for {issue_id}: {e}")
            raise APIError("Database update failed", message=_db_details(e))

        if not rows:
            raise NotFoundError("Issue not found")

        log_entry = {
            "issue_id": issue_id,
            "old_status": old_issue.get("status"),
            "new_status": status,
            "changed_by": user.get("id"),
        }
        if resolved_with_image:
            log_entry["resolved_image_url"] = resolved_image_url

        try:
            await self.supabase.insert_issue_log(log_entry)
        except Exception as e:
            logger.warning(f"⚠️ Failed to write status log for {issue_id}: {e}")

        logger.info(f"✅ Issue {issue_id} status {old_issue.get('status')} -> {status}")
        return rows[0]

    async def reassign_issue(self, issue_id: str, assigned_authority: str) -> Dict[str, Any]:
        if assigned_authority not in KNOWN_DEPARTMENTS:
            logger.warning(f"Reassigning issue {issue_id} to unlisted department '{assigned_authority}'")

        try:
            rows = await self.supabase.update_issue(
                issue_id,
                {"assigned_authority": assigned_authority, "department": assigned_authority},
            )
        except Exception as e:
            logger.error(f"❌ Reassign failed for {issue_id}: {e}")
            raise APIError("Failed to reassign issue", details=_db_details(e) or "Internal Server Error")

        if not rows:
            raise NotFoundError("Issue not found")

        logger.info(f"🔁 Issue {issue_id} reassigned to {assigned_authority}")
        return rows[0]

    async def delete_issue(self, issue_id: str) -> None:
        try:
            await self.supabase.delete_issue(issue_id)
        except Exception as e:
            logger.error(f"❌ Supabase delete error for {issue_id}: {e}")
            raise APIError("Database error", details=_db_details(e))
        logger.info(f"🗑️ Issue {issue_id} deleted")

    async def bulk_delete_issues(self, issue_ids: List[str]) -> None:
        if not isinstance(issue_ids, list) or not issue_ids:
            raise ValidationError("Invalid or empty array of issue IDs provided")

        try:
            await self.supabase.delete_issues(issue_ids)
        except Exception as e:
            logger.error(f"❌ Supabase bulk delete error: {e}")
            raise APIError("Database error", details=_db_details(e))
        logger.info(f"🗑️ {len(issue_ids)} issues deleted")
