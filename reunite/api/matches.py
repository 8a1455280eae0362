from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from reunite.api.deps import current_user, engine, translate_errors
from reunite.models.reports import Match
from reunite.services.engine import Engine

router = APIRouter(prefix="/matches", tags=["matches"])


class ClaimRequest(BaseModel):
    lost_report_id: str
    found_report_id: str


class ConfirmRequest(BaseModel):
    proof_details: Optional[str] = None


class MatchStatusResponse(BaseModel):
    match: Match
    user_role: str
    both_confirmed: bool
    is_resolved: bool


@router.post("", response_model=Match, status_code=201)
def claim(req: ClaimRequest, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return eng.claims.claim(req.lost_report_id, req.found_report_id, user_id)


@router.get("/{match_id}/status", response_model=MatchStatusResponse)
def match_status(match_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return MatchStatusResponse(**eng.claims.match_status(match_id, user_id))


@router.post("/{match_id}/confirm", response_model=Match)
def confirm(match_id: str, req: Optional[ConfirmRequest] = None,
            user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    proof = req.proof_details if req else None
    with translate_errors():
        return eng.claims.confirm(match_id, user_id, proof_details=proof)


@router.post("/{match_id}/reject", response_model=Match)
def reject(match_id: str, user_id: str = Depends(current_user), eng: Engine = Depends(engine)):
    with translate_errors():
        return eng.claims.reject(match_id, user_id)
