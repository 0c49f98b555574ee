from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum


class IssueStatus(str, Enum):
    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class IssueCategory(str, Enum):
    POTHOLE = "pothole"
    GARBAGE = "garbage"
    DAMAGE_STREETLIGHT = "damagestreetlight"
    WATERLOG = "waterlog"
    OTHER = "other"


class Department(str, Enum):
    DRAINAGE = "drainage"
    STREETLIGHT = "streetlight"
    ROAD = "road"
    GARBAGE = "garbage"
    HEAD = "head"


class Role(str, Enum):
    CITIZEN = "citizen"
    HEAD_AUTHORITY = "head_authority"


VALID_STATUSES = [status.value for status in IssueStatus]
KNOWN_DEPARTMENTS = [department.value for department in Department]

# Deterministic routing table, also embedded in the classification prompt
DEPARTMENT_BY_CATEGORY: Dict[str, str] = {
    IssueCategory.WATERLOG.value: Department.DRAINAGE.value,
    IssueCategory.DAMAGE_STREETLIGHT.value: Department.STREETLIGHT.value,
    IssueCategory.POTHOLE.value: Department.ROAD.value,
    IssueCategory.GARBAGE.value: Department.GARBAGE.value,
    IssueCategory.OTHER.value: Department.HEAD.value,
}


class CreateIssueRequest(BaseModel):
    """Citizen issue submission. Field order decides which missing field is reported first."""
    image_url: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    location_lat: float
    location_lng: float
    manual_department: Optional[str] = None
    manual_issue_type: Optional[str] = None
    is_manual_submission: Optional[bool] = None


class UpdateStatusRequest(BaseModel):
    status: Optional[str] = None
    resolved_image_url: Optional[str] = None


class ReassignIssueRequest(BaseModel):
    assigned_authority: str = Field(..., min_length=1)


class BulkDeleteRequest(BaseModel):
    issueIds: List[str] = Field(default=None, validate_default=True)

    @field_validator("issueIds", mode="before")
    @classmethod
    def _require_non_empty_list(cls, value: Any) -> List[str]:
        if not isinstance(value, list) or len(value) == 0:
            raise ValueError("Invalid or empty array of issue IDs provided")
        return [str(item) for item in value]
