from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from reunite.domain.report_schema import DESCRIPTION_MAX_LEN, NOTIFICATION_TYPES, TITLE_MAX_LEN

ReportKind = Literal["lost", "found"]
ReportStatus = Literal["unresolved", "found", "matched", "returned"]
MatchStatus = Literal["pending", "confirmed", "rejected"]
MatchOrigin = Literal["auto", "claim"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GeoPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


def normalize_location(raw: Any) -> Optional[GeoPoint]:
    """Coerce the loosely typed location field into a GeoPoint.

    Accepts a GeoPoint, a dict (latitude/longitude or lat/lon keys), a JSON
    string of such a dict, or None. Anything without both coordinates is None.
    """
    if raw is None or isinstance(raw, GeoPoint):
        return raw
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    lat = raw.get("latitude", raw.get("lat"))
    lon = raw.get("longitude", raw.get("lon", raw.get("lng")))
    if lat is None or lon is None:
        return None
    return GeoPoint(latitude=float(lat), longitude=float(lon))


def coerce_attributes(raw: Any) -> Any:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items() if v is not None}
    return raw


class Report(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    kind: ReportKind
    title: str
    description: str
    category: str
    attributes: Dict[str, str] = Field(default_factory=dict)
    location: Optional[GeoPoint] = None
    occurred_at: datetime = Field(default_factory=utcnow)
    text_embedding: Optional[List[float]] = None
    image_embeddings: List[List[float]] = Field(default_factory=list)
    status: ReportStatus = "unresolved"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("location", mode="before")
    @classmethod
    def _coerce_location(cls, v):
        return normalize_location(v)

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, v):
        return coerce_attributes(v)

    @field_validator("occurred_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ScoreBreakdown(BaseModel):
    time_score: float
    distance_score: float
    text_score: float
    text_source: Literal["semantic", "lexical", "embedding"] = "lexical"
    category_score: Optional[float] = None
    attribute_similarity: Optional[float] = None
    embedding_similarity: Optional[float] = None
    image_similarity: Optional[float] = None
    policy: str = "semantic"


class Match(BaseModel):
    id: str = Field(default_factory=new_id)
    lost_report_id: str
    found_report_id: str
    lost_owner_id: str
    found_owner_id: str
    confidence: float = Field(ge=0, le=100)
    breakdown: ScoreBreakdown
    status: MatchStatus = "pending"
    confirmed_by_lost_user: bool = False
    confirmed_by_found_user: bool = False
    proof_details: Optional[str] = None
    origin: MatchOrigin = "auto"
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def involves(self, report_id: str) -> bool:
        return report_id in (self.lost_report_id, self.found_report_id)

    def role_of(self, user_id: str) -> Optional[str]:
        if user_id == self.lost_owner_id:
            return "lost"
        if user_id == self.found_owner_id:
            return "found"
        return None


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    type: str
    title: str
    body: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        if v not in NOTIFICATION_TYPES:
            raise ValueError(f"unknown notification type: {v}")
        return v


class ScoreResult(BaseModel):
    composite: float
    breakdown: ScoreBreakdown


class PotentialMatch(BaseModel):
    report: Report
    score: float
    breakdown: ScoreBreakdown


class ReportCreation(BaseModel):
    report: Report
    matches: List[Match] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ReportCreate(BaseModel):
    """Owner-supplied fields of a new report; everything else is derived."""
    kind: ReportKind
    title: str = Field(min_length=1, max_length=TITLE_MAX_LEN)
    description: str = Field(min_length=1, max_length=DESCRIPTION_MAX_LEN)
    category: str = Field(min_length=1)
    attributes: Dict[str, str] = Field(default_factory=dict)
    location: Optional[GeoPoint] = None
    occurred_at: Optional[datetime] = None
    images: List[str] = Field(default_factory=list)  # base64

    @field_validator("title", "description", "category", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("location", mode="before")
    @classmethod
    def _coerce_location(cls, v):
        return normalize_location(v)

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, v):
        return coerce_attributes(v)
