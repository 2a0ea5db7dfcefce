import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from config import configure_logging, get_settings
from domain import (
    ReallocationReport,
    Slot,
    Token,
    TokenSource,
    TokenStatus,
    dynamic_priority,
    wait_minutes,
)
from engine import TokenEngine
from errors import EngineError, ErrorKind

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_title, docs_url=None)
engine = TokenEngine(relaxed_time=settings.relaxed_time)

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CAPACITY_EXHAUSTED: 409,
    ErrorKind.NO_ELIGIBLE_SLOT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.INVALID_REQUEST: 400,
}


class CreateSlotRequest(BaseModel):
    doctor_id: str = Field(min_length=1)
    doctor_name: str = Field(min_length=1)
    department: Optional[str] = None
    start_time: datetime
    end_time: datetime
    max_capacity: int = Field(ge=1)
    notes: Optional[str] = None


class AdjustCapacityRequest(BaseModel):
    new_capacity: int = Field(ge=0)


class AllocateTokenRequest(BaseModel):
    patient_id: str = Field(min_length=1)
    patient_name: str = Field(min_length=1)
    doctor_id: str = Field(min_length=1)
    source: TokenSource
    preferred_time: datetime
    notes: Optional[str] = None


class EmergencyTokenRequest(BaseModel):
    patient_id: str = Field(min_length=1)
    patient_name: str = Field(min_length=1)
    doctor_id: str = Field(min_length=1)
    notes: Optional[str] = None


class SlotResponse(BaseModel):
    slot_id: str
    doctor_id: str
    doctor_name: str
    department: Optional[str]
    start_time: datetime
    end_time: datetime
    max_capacity: int
    current_occupancy: int
    remaining_capacity: int
    utilization_percentage: float
    is_active: bool
    notes: Optional[str]


class TokenResponse(BaseModel):
    token_id: str
    token_number: int
    patient_id: str
    patient_name: str
    doctor_id: str
    slot_id: str
    source: TokenSource
    status: TokenStatus
    created_at: datetime
    checked_in_at: Optional[datetime]
    consultation_started_at: Optional[datetime]
    consultation_completed_at: Optional[datetime]
    notes: Optional[str]
    reallocated_count: int
    dynamic_priority: float
    wait_minutes: int


class TokenMoveResponse(BaseModel):
    token_id: str
    token_number: int
    from_slot_id: str
    to_slot_id: str


class ReallocationFailedResponse(BaseModel):
    token_id: str
    token_number: int
    slot_id: str
    reason: str


class ReallocationResponse(BaseModel):
    slot_id: str
    overflow: int
    moved: List[TokenMoveResponse]
    failed: List[ReallocationFailedResponse]
    remaining_overflow: int
    resolved: bool


class AllocationResponse(BaseModel):
    token: TokenResponse
    slot_id: str
    reallocation: Optional[ReallocationResponse] = None


class CapacityResponse(BaseModel):
    slot: SlotResponse
    previous_capacity: int
    reallocation: Optional[ReallocationResponse] = None


class DoctorResponse(BaseModel):
    doctor_id: str
    doctor_name: str
    department: Optional[str]


class StatisticsResponse(BaseModel):
    total_tokens: int
    active_tokens: int
    completed_tokens: int
    cancelled_tokens: int
    no_show_tokens: int
    emergency_tokens: int
    total_slots: Optional[int] = None
    average_utilization: Optional[float] = None


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    logger.info("%s %s -> %d (%s)", request.method, request.url.path, status_code, exc.kind.value)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
    )


def to_slot_response(s: Slot) -> SlotResponse:
    return SlotResponse(
        slot_id=s.slot_id,
        doctor_id=s.doctor_id,
        doctor_name=s.doctor_name,
        department=s.department,
        start_time=s.start_time,
        end_time=s.end_time,
        max_capacity=s.max_capacity,
        current_occupancy=s.current_occupancy,
        remaining_capacity=s.remaining_capacity,
        utilization_percentage=s.utilization_percentage(),
        is_active=s.is_active,
        notes=s.notes,
    )


def to_token_response(t: Token, now: Optional[datetime] = None) -> TokenResponse:
    now = now or engine.now()
    return TokenResponse(
        token_id=t.token_id,
        token_number=t.token_number,
        patient_id=t.patient_id,
        patient_name=t.patient_name,
        doctor_id=t.doctor_id,
        slot_id=t.slot_id,
        source=t.source,
        status=t.status,
        created_at=t.created_at,
        checked_in_at=t.checked_in_at,
        consultation_started_at=t.consultation_started_at,
        consultation_completed_at=t.consultation_completed_at,
        notes=t.notes,
        reallocated_count=t.reallocated_count,
        dynamic_priority=dynamic_priority(t, now),
        wait_minutes=wait_minutes(t, now),
    )


def to_reallocation_response(r: Optional[ReallocationReport]) -> Optional[ReallocationResponse]:
    if r is None:
        return None
    return ReallocationResponse(
        slot_id=r.slot_id,
        overflow=r.overflow,
        moved=[TokenMoveResponse(**vars(m)) for m in r.moved],
        failed=[ReallocationFailedResponse(**vars(f)) for f in r.failed],
        remaining_overflow=r.remaining_overflow,
        resolved=r.resolved,
    )


# Slots ---------------------------------------------------------------------


@app.post("/slots", response_model=SlotResponse, status_code=201)
def create_slot(body: CreateSlotRequest) -> SlotResponse:
    slot = engine.create_slot(
        doctor_id=body.doctor_id,
        doctor_name=body.doctor_name,
        department=body.department,
        start_time=body.start_time,
        end_time=body.end_time,
        max_capacity=body.max_capacity,
        notes=body.notes,
    )
    return to_slot_response(slot)


@app.get("/slots", response_model=List[SlotResponse])
def list_slots() -> List[SlotResponse]:
    return [to_slot_response(s) for s in engine.get_all_slots()]


@app.get("/slots/{slot_id}", response_model=SlotResponse)
def get_slot(slot_id: str) -> SlotResponse:
    return to_slot_response(engine.get_slot(slot_id))


@app.put("/slots/{slot_id}/capacity", response_model=CapacityResponse)
def adjust_capacity(slot_id: str, body: AdjustCapacityRequest) -> CapacityResponse:
    result = engine.adjust_capacity(slot_id, body.new_capacity)
    return CapacityResponse(
        slot=to_slot_response(result.slot),
        previous_capacity=result.previous_capacity,
        reallocation=to_reallocation_response(result.reallocation),
    )


# Doctors -------------------------------------------------------------------


@app.get("/doctors", response_model=List[DoctorResponse])
def list_doctors() -> List[DoctorResponse]:
    return [DoctorResponse(**vars(d)) for d in engine.list_doctors()]


@app.get("/doctors/{doctor_id}/slots", response_model=List[SlotResponse])
def get_doctor_slots(doctor_id: str) -> List[SlotResponse]:
    return [to_slot_response(s) for s in engine.get_doctor_slots(doctor_id)]


@app.get("/doctors/{doctor_id}/queue", response_model=List[TokenResponse])
def get_doctor_queue(doctor_id: str) -> List[TokenResponse]:
    now = engine.now()
    return [to_token_response(t, now) for t in engine.doctor_queue(doctor_id, now)]


# Tokens --------------------------------------------------------------------


@app.post("/tokens", response_model=AllocationResponse, status_code=201)
def allocate_token(body: AllocateTokenRequest) -> AllocationResponse:
    result = engine.allocate(
        patient_id=body.patient_id,
        patient_name=body.patient_name,
        doctor_id=body.doctor_id,
        source=body.source,
        preferred_time=body.preferred_time,
        notes=body.notes,
    )
    return AllocationResponse(
        token=to_token_response(result.token),
        slot_id=result.slot_id,
        reallocation=to_reallocation_response(result.reallocation),
    )


@app.post("/tokens/emergency", response_model=AllocationResponse, status_code=201)
def allocate_emergency_token(body: EmergencyTokenRequest) -> AllocationResponse:
    result = engine.allocate_emergency(
        patient_id=body.patient_id,
        patient_name=body.patient_name,
        doctor_id=body.doctor_id,
        notes=body.notes,
    )
    return AllocationResponse(
        token=to_token_response(result.token),
        slot_id=result.slot_id,
        reallocation=to_reallocation_response(result.reallocation),
    )


@app.get("/tokens", response_model=List[TokenResponse])
def list_tokens() -> List[TokenResponse]:
    now = engine.now()
    return [to_token_response(t, now) for t in engine.get_all_tokens()]


@app.get("/tokens/{token_id}", response_model=TokenResponse)
def get_token(token_id: str) -> TokenResponse:
    return to_token_response(engine.get_token(token_id))


@app.post("/tokens/{token_id}/check-in", response_model=TokenResponse)
def check_in(token_id: str) -> TokenResponse:
    return to_token_response(engine.check_in(token_id))


@app.post("/tokens/{token_id}/start-consultation", response_model=TokenResponse)
def start_consultation(token_id: str) -> TokenResponse:
    return to_token_response(engine.start_consultation(token_id))


@app.post("/tokens/{token_id}/complete-consultation", response_model=TokenResponse)
def complete_consultation(token_id: str) -> TokenResponse:
    return to_token_response(engine.complete_consultation(token_id))


@app.post("/tokens/{token_id}/no-show", response_model=TokenResponse)
def mark_no_show(token_id: str) -> TokenResponse:
    return to_token_response(engine.mark_no_show(token_id))


@app.delete("/tokens/{token_id}", response_model=TokenResponse)
def cancel_token(token_id: str) -> TokenResponse:
    return to_token_response(engine.cancel(token_id))


@app.get("/statistics", response_model=StatisticsResponse)
def get_statistics(doctor_id: Optional[str] = None) -> StatisticsResponse:
    return StatisticsResponse(**engine.statistics(doctor_id).as_dict())


@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui() -> object:
    """
    Serve Swagger UI with the engine's own page title.
    Also hides version/OAS badges.
    """
    resp = get_swagger_ui_html(
        openapi_url=app.openapi_url,
        title=settings.app_title,
    )
    html = resp.body.decode("utf-8")
    css = """
<style>
  .swagger-ui .info .title small { display: none !important; }
  .swagger-ui .info .title .version-stamp { display: none !important; }
</style>
""".strip()
    html = html.replace("</head>", f"{css}</head>", 1)
    headers = dict(resp.headers)
    headers.pop("content-length", None)
    return HTMLResponse(html, status_code=resp.status_code, headers=headers)
