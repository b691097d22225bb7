"""
Data models for the top-ads collector
Session snapshots, challenge bookkeeping, pagination and ad records
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Cookie(BaseModel):
    """Single browser cookie as Playwright reports it"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float = -1
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: Optional[str] = Field(default=None, alias="sameSite")

    def to_playwright(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OriginStorage(BaseModel):
    """localStorage snapshot for a single origin"""

    model_config = ConfigDict(populate_by_name=True)

    origin: str
    local_storage: Dict[str, str] = Field(default_factory=dict, alias="localStorage")

    @field_validator("local_storage", mode="before")
    @classmethod
    def _accept_playwright_list(cls, value: Any) -> Any:
        # Playwright's storage_state() emits [{"name": .., "value": ..}]
        if isinstance(value, list):
            return {
                str(item.get("name")): str(item.get("value", ""))
                for item in value
                if isinstance(item, dict) and item.get("name") is not None
            }
        return value or {}


class SessionState(BaseModel):
    """Serialized authenticated browser state (the session file)"""

    model_config = ConfigDict(populate_by_name=True)

    cookies: List[Cookie] = Field(default_factory=list)
    origins: List[OriginStorage] = Field(default_factory=list)

    def distinct_origins(self) -> List[OriginStorage]:
        """Origins in file order, first entry wins for repeated origins."""
        seen: set[str] = set()
        result: List[OriginStorage] = []
        for entry in self.origins:
            if entry.origin in seen:
                continue
            seen.add(entry.origin)
            result.append(entry)
        return result

    def to_file_dict(self) -> dict:
        return {
            "cookies": [cookie.model_dump(by_alias=True, exclude_none=True) for cookie in self.cookies],
            "origins": [
                {"origin": entry.origin, "localStorage": dict(entry.local_storage)}
                for entry in self.origins
            ],
        }


class ChallengeKind(str, Enum):
    CAPTCHA = "captcha"
    EMAIL_CODE = "email-code"


class ChallengeDetectionResult(BaseModel):
    """Outcome of a single challenge probe. Never persisted."""

    present: bool
    kind: Optional[ChallengeKind] = None
    locator: Optional[str] = None
    artifact: Optional[str] = None

    @classmethod
    def absent(cls) -> "ChallengeDetectionResult":
        return cls(present=False)


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SOLVED = "solved"
    FAILED = "failed"


class ResolutionMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class VerificationAttempt(BaseModel):
    """One try at clearing a challenge during a login sequence"""

    kind: ChallengeKind
    attempt_number: int
    started_at: datetime = Field(default_factory=_utc_now)
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    resolution_mode: ResolutionMode = ResolutionMode.AUTOMATIC
    detail: Optional[str] = None


class PaginationState(BaseModel):
    """Server pagination block: {page, total_count, size}"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_page: int = Field(default=0, alias="page")
    total_items: int = Field(default=0, alias="total_count")
    page_size: int = Field(default=0, alias="size")
    has_more: Optional[bool] = None


class AdRecord(BaseModel):
    """Ad as stored. Identity is (id, creative_id); never updated after insert."""

    id: str
    source_region: str = ""
    creative_id: str
    advertiser_id: str = ""
    advertiser_name: str = ""
    media: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)

    def __str__(self) -> str:
        return f"{self.id} ({self.advertiser_name or 'unknown advertiser'})"
