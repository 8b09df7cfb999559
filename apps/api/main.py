# apps/api/main.py
import uuid
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from apps.api.auth import API_KEY_HEADER, ApiKeyError, check_api_key
from schlichter.config import Settings, ensure_directories
from schlichter.errors import (
    FindingNotFound,
    MalformedResponse,
    OperationFailed,
    PreconditionError,
    SchlichterError,
    TransportError,
)
from schlichter.findings import FindingMeta, LocalOnlyFinding
from schlichter.resolution import ResolutionStatus, parse_status
from schlichter.service import IssueService, build_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_directories()
    settings = Settings.load()
    app.state.settings = settings
    app.state.service = build_service(settings)
    try:
        yield
    finally:
        await app.state.service.aclose()


app = FastAPI(title="Schlichter API", version="0.1.0", lifespan=lifespan)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> IssueService:
    return request.app.state.service


def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[str | None, Header(alias=API_KEY_HEADER)] = None,
) -> None:
    try:
        check_api_key(x_api_key, settings.api_key)
    except ApiKeyError as exc:
        raise HTTPException(exc.status_code, exc.message) from exc


# Fachliche Fehler -> HTTP
_STATUS_BY_ERROR: list[tuple[type[SchlichterError], int]] = [
    (PreconditionError, 404),
    (FindingNotFound, 404),
    (MalformedResponse, 502),
    (TransportError, 502),
    (OperationFailed, 502),
]


@app.exception_handler(SchlichterError)
async def schlichter_error_handler(request: Request, exc: SchlichterError) -> JSONResponse:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    return JSONResponse({"detail": exc.message, "kind": exc.kind}, status_code=status)


class StatusOut(BaseModel):
    name: str
    title: str
    description: str

    @classmethod
    def of(cls, status: ResolutionStatus) -> "StatusOut":
        return cls(name=status.name, title=status.title, description=status.description)


class PermissionIn(BaseModel):
    connection_id: str
    issue_key: str


class PermissionOut(BaseModel):
    permitted: bool
    reason: str | None = None
    allowed_statuses: list[StatusOut] = []


class ChangeStatusIn(BaseModel):
    scope_id: str
    issue_key: str
    new_status: str  # "ACCEPT" | "WONT_FIX" | "FALSE_POSITIVE" or wire code
    is_taint: bool = False


class CommentIn(BaseModel):
    scope_id: str
    issue_key: str
    text: str = Field(min_length=1)


class ReopenIn(BaseModel):
    scope_id: str
    issue_id: str
    is_taint: bool = False


class ReopenFileIn(BaseModel):
    scope_id: str
    file_path: str


class ReopenOut(BaseModel):
    success: bool


class LocalOnlyFindingIn(BaseModel):
    id: uuid.UUID | None = None  # generated when missing
    file_path: str = Field(min_length=1)
    rule_key: str = Field(min_length=1)
    message: str = ""
    line: int | None = None
    line_hash: str | None = None


class LocalOnlyFindingsIn(BaseModel):
    findings: list[LocalOnlyFindingIn]


class RecordedOut(BaseModel):
    ids: list[str]


class ServerFindingIn(BaseModel):
    key: str = Field(min_length=1)
    rule_key: str
    resolved: bool = False
    taint: bool = False


class ServerFindingsIn(BaseModel):
    findings: list[ServerFindingIn]


class ServerFindingsOut(BaseModel):
    connection_id: str
    project_key: str
    count: int


ServiceDep = Annotated[IssueService, Depends(get_service)]


@app.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    return "ok"


@app.post("/issues/permission", dependencies=[Depends(verify_api_key)])
async def check_permission(body: PermissionIn, service: ServiceDep) -> PermissionOut:
    outcome = await service.check_permission(body.connection_id, body.issue_key)
    return PermissionOut(
        permitted=outcome.permitted,
        reason=outcome.reason,
        allowed_statuses=[StatusOut.of(s) for s in outcome.allowed_statuses],
    )


@app.post("/issues/status", dependencies=[Depends(verify_api_key)])
async def change_status(body: ChangeStatusIn, service: ServiceDep) -> dict[str, bool]:
    try:
        new_status = parse_status(body.new_status)
    except ValueError as exc:
        raise HTTPException(422, str(exc)) from exc
    await service.change_status(body.scope_id, body.issue_key, new_status, body.is_taint)
    return {"ok": True}


@app.post("/issues/comment", dependencies=[Depends(verify_api_key)])
async def add_comment(body: CommentIn, service: ServiceDep) -> dict[str, bool]:
    await service.add_comment(body.scope_id, body.issue_key, body.text)
    return {"ok": True}


@app.post("/issues/reopen", dependencies=[Depends(verify_api_key)])
async def reopen(body: ReopenIn, service: ServiceDep) -> ReopenOut:
    outcome = await service.reopen(body.scope_id, body.issue_id, body.is_taint)
    return ReopenOut(success=outcome.success)


@app.post("/issues/reopen-file", dependencies=[Depends(verify_api_key)])
async def reopen_file(body: ReopenFileIn, service: ServiceDep) -> ReopenOut:
    outcome = await service.reopen_all(body.scope_id, body.file_path)
    return ReopenOut(success=outcome.success)


@app.get("/scopes/{scope_id:path}/anticipated-support", dependencies=[Depends(verify_api_key)])
async def anticipated_support(scope_id: str, service: ServiceDep) -> dict[str, bool]:
    supported = await service.check_anticipated_resolution_supported(scope_id)
    return {"supported": supported}


@app.post("/scopes/{scope_id:path}/resync", dependencies=[Depends(verify_api_key)])
async def resync(scope_id: str, service: ServiceDep) -> dict[str, bool]:
    return {"resynced": await service.resync_scope(scope_id)}


@app.post("/scopes/{scope_id:path}/local-only-findings", dependencies=[Depends(verify_api_key)])
async def record_local_only(scope_id: str, body: LocalOnlyFindingsIn, service: ServiceDep) -> RecordedOut:
    findings = [
        LocalOnlyFinding(
            id=f.id or uuid.uuid4(),
            scope_id=scope_id,
            file_path=f.file_path,
            rule_key=f.rule_key,
            message=f.message,
            line=f.line,
            line_hash=f.line_hash,
        )
        for f in body.findings
    ]
    stored = await service.record_local_only(scope_id, findings)
    return RecordedOut(ids=[str(f.id) for f in stored])


@app.put("/scopes/{scope_id:path}/server-findings", dependencies=[Depends(verify_api_key)])
async def replace_server_findings(scope_id: str, body: ServerFindingsIn, service: ServiceDep) -> ServerFindingsOut:
    metas = [FindingMeta(key=f.key, rule_key=f.rule_key, resolved=f.resolved, taint=f.taint) for f in body.findings]
    binding = await service.replace_server_findings(scope_id, metas)
    return ServerFindingsOut(
        connection_id=binding.connection_id,
        project_key=binding.project_key,
        count=len(metas),
    )
