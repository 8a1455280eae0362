from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reunite.api.deps import current_user, engine, translate_errors
from reunite.models.reports import GeoPoint, Match, Report, ReportCreate, ScoreBreakdown
from reunite.services.engine import Engine

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportOut(BaseModel):
    id: str
    owner_id: str
    kind: str
    title: str
    description: str
    category: str
    attributes: Dict[str, str]
    location: Optional[GeoPoint] = None
    occurred_at: datetime
    status: str
    has_text_embedding: bool
    image_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_report(cls, r: Report) -> "ReportOut":
        data = r.model_dump(exclude={"text_embedding", "image_embeddings"})
        return cls(**data, has_text_embedding=bool(r.text_embedding), image_count=len(r.image_embeddings))


class CreateReportResponse(BaseModel):
    report: ReportOut
    matches: List[Match]
    warnings: List[str]


class ListReportsResponse(BaseModel):
    owner_id: str
    reports: List[ReportOut]


class StatusUpdateRequest(BaseModel):
    status: str


class DeleteReportResponse(BaseModel):
    id: str
    deleted: bool
    matches_removed: int


class PotentialMatchOut(BaseModel):
    report: ReportOut
    score: float
    breakdown: ScoreBreakdown


@router.post("", response_model=CreateReportResponse, status_code=201)
def create_report(req: ReportCreate, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        result = eng.reports.create_report(user_id, req)
    return CreateReportResponse(report=ReportOut.from_report(result.report),
                                matches=result.matches, warnings=result.warnings)


@router.get("", response_model=ListReportsResponse)
def list_reports(kind: Optional[str] = None, status: Optional[str] = None,
                 user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        reports = eng.reports.list_reports(user_id, kind=kind, status=status)
    return ListReportsResponse(owner_id=user_id, reports=[ReportOut.from_report(r) for r in reports])


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return ReportOut.from_report(eng.reports.get_report(report_id, user_id))


@router.patch("/{report_id}/status", response_model=ReportOut)
def update_status(report_id: str, req: StatusUpdateRequest,
                  user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return ReportOut.from_report(eng.reports.update_status(report_id, user_id, req.status))


@router.delete("/{report_id}", response_model=DeleteReportResponse)
def delete_report(report_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        removed = eng.reports.delete_report(report_id, user_id)
    return DeleteReportResponse(id=report_id, deleted=True, matches_removed=removed)


@router.get("/{report_id}/matches", response_model=List[Match])
def report_matches(report_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return eng.claims.matches_for_report(report_id, user_id)


@router.get("/{report_id}/potential-matches", response_model=List[PotentialMatchOut])
def potential_matches(report_id: str, limit: Optional[int] = None,
                      user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        ranked = eng.matcher.potential_matches(report_id, user_id, limit=limit)
    return [PotentialMatchOut(report=ReportOut.from_report(p.report), score=p.score, breakdown=p.breakdown)
            for p in ranked]
