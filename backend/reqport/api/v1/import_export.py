"""
API endpoints for import sessions and exports.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, Response, status

from reqport.api.deps import get_session_registry, get_store
from reqport.config import settings
from reqport.core.errors import (
    ConflictUnresolvedError,
    DetectionError,
    ExecutionError,
    ExportError,
    MissingExportScopeError,
    ParseError,
    SessionStateError,
    StoreError,
)
from reqport.schemas.import_export import (
    ConflictOut,
    DetectionOut,
    ExecuteRequest,
    ExecutionOut,
    FormatOut,
    ImportCounts,
    ResolutionsUpdate,
    SessionOut,
    WarningOut,
)
from reqport.services.detection import detect_format
from reqport.services.executor import ImportOptions
from reqport.services.exporter import Exporter, ExportResult
from reqport.services.ir import DetectionResult, RawDocument, SourceFormat
from reqport.services.parsers import supported_formats
from reqport.services.session import ImportSession, ImportSessionRegistry, SessionStage, check_extension
from reqport.services.store import Store

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Helpers ──

async def _read_document(file: UploadFile) -> RawDocument:
    data = await file.read()
    if len(data) > settings.MAX_IMPORT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.MAX_IMPORT_BYTES} bytes",
        )
    return RawDocument.from_bytes(data, file.filename)


def _detection_out(detection: DetectionResult | None) -> DetectionOut | None:
    if detection is None:
        return None
    return DetectionOut(
        format=detection.format.value if detection.format else None,
        version=detection.version,
        is_valid=detection.is_valid,
        confidence=detection.confidence,
    )


def _warnings_out(warnings) -> list[WarningOut]:
    return [WarningOut(code=w.code, message=w.message, item_name=w.item_name) for w in warnings]


def _session_out(session: ImportSession) -> SessionOut:
    ir = session.ir
    decisions = session.decisions
    return SessionOut(
        id=session.id,
        stage=session.stage.value,
        filename=session.filename,
        detection=_detection_out(session.detection),
        collection_name=ir.collection.name if ir and ir.collection else None,
        counts=ImportCounts(**ir.stats()) if ir else None,
        tree=session.tree.to_dict() if session.tree and ir and ir.collection else None,
        environments=[env.display_name for env in ir.environments] if ir else [],
        warnings=_warnings_out(session.warnings),
        conflicts=[
            ConflictOut(
                entity_name=c.entity_name,
                existing_id=c.existing_id,
                incoming_display_name=c.incoming.display_name,
                incoming_variable_count=len(c.incoming.variables),
                resolution=decisions.get(c.entity_name),
            )
            for c in session.conflicts
        ],
        can_commit=session.can_commit,
    )


def _get_session(registry: ImportSessionRegistry, session_id: str) -> ImportSession:
    try:
        return registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Import session not found")


def _export_response(result: ExportResult) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{result.filename}"'}
    if result.warnings:
        headers["X-Export-Warnings"] = json.dumps([w.code for w in result.warnings])
    return Response(content=result.content, media_type=result.media_type, headers=headers)


# ── Formats & detection ──

@router.get("/formats", response_model=list[FormatOut])
async def list_formats():
    """List the import formats the engine understands."""
    return supported_formats()


@router.post("/detect", response_model=DetectionOut)
async def detect(file: UploadFile = File(...)):
    """Detect the format of an uploaded file without importing it."""
    document = await _read_document(file)
    return _detection_out(detect_format(document.content, document.filename))


# ── Import sessions ──

@router.post("/import/sessions", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def create_import_session(
    file: UploadFile = File(...),
    source: str = Form("picker"),
    format: str | None = Form(None),
    store: Store = Depends(get_store),
    registry: ImportSessionRegistry = Depends(get_session_registry),
):
    """Upload a document and get its preview: detection, tree, warnings and conflicts."""
    if source not in ("picker", "drop"):
        raise HTTPException(status_code=400, detail="source must be 'picker' or 'drop'")
    forced = None
    if format:
        try:
            forced = SourceFormat(format)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown format: {format}")

    document = await _read_document(file)
    if source == "picker":
        try:
            check_extension(document.filename)
        except DetectionError as e:
            raise HTTPException(status_code=400, detail=str(e))

    session = registry.create()
    try:
        await session.load(document, store, forced)
    except DetectionError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "detection": _detection_out(e.detection).model_dump() if e.detection else None},
        )
    except ParseError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": str(e), "faults": [{"code": f.code, "message": f.message} for f in e.faults]},
        )
    except StoreError as e:
        raise HTTPException(status_code=502, detail=f"Could not read existing environments: {e}")
    finally:
        # Only a previewable session outlives the upload request
        if session.stage != SessionStage.PREVIEW:
            registry.remove(session.id)

    return _session_out(session)


@router.get("/import/sessions/{session_id}", response_model=SessionOut)
async def get_import_session(
    session_id: str,
    registry: ImportSessionRegistry = Depends(get_session_registry),
):
    return _session_out(_get_session(registry, session_id))


@router.put("/import/sessions/{session_id}/resolutions", response_model=SessionOut)
async def update_resolutions(
    session_id: str,
    payload: ResolutionsUpdate,
    registry: ImportSessionRegistry = Depends(get_session_registry),
):
    """Record skip/overwrite/rename decisions for conflicting environments."""
    session = _get_session(registry, session_id)
    for item in payload.resolutions:
        try:
            session.decide(item.name, item.resolution)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"No conflict named '{item.name}'")
        except SessionStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
    return _session_out(session)


@router.post("/import/sessions/{session_id}/execute", response_model=ExecutionOut)
async def execute_import(
    session_id: str,
    payload: ExecuteRequest | None = None,
    store: Store = Depends(get_store),
    registry: ImportSessionRegistry = Depends(get_session_registry),
):
    """Commit the previewed document to the workspace."""
    session = _get_session(registry, session_id)
    payload = payload or ExecuteRequest()
    options = ImportOptions(
        environment_mode=payload.environment_mode,
        duplicate_handling=payload.duplicate_handling,
        include_disabled=payload.include_disabled,
    )
    try:
        result = await session.commit(store, options)
    except ConflictUnresolvedError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "unresolved": e.unresolved})
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ExecutionError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "stage": e.stage, "committed": e.committed},
        )
    except StoreError as e:
        raise HTTPException(status_code=502, detail=f"Could not read existing environments: {e}")

    registry.remove(session.id)
    return ExecutionOut(
        collection_id=result.collection_id,
        folder_count=result.folder_count,
        request_count=result.request_count,
        environment_count=result.environment_count,
        warnings=_warnings_out(result.warnings),
    )


@router.delete("/import/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_import_session(
    session_id: str,
    registry: ImportSessionRegistry = Depends(get_session_registry),
):
    session = _get_session(registry, session_id)
    try:
        session.cancel()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    registry.remove(session.id)


# ── Export ──

@router.get("/export/collections/{collection_id}")
async def export_collection(
    collection_id: str,
    format: str = "native",
    store: Store = Depends(get_store),
):
    """Export a collection as a native document or a Postman v2.1 collection."""
    try:
        result = await Exporter(store).export_collection(collection_id, format)
    except MissingExportScopeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExportError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _export_response(result)


@router.get("/export/environments")
async def export_environments(
    format: str = "native",
    ids: str | None = None,
    store: Store = Depends(get_store),
):
    """Export environments; ``ids`` is a comma-separated list, all when omitted.

    Formats: native, env, postman-environment, json-environment.
    """
    id_list = [i.strip() for i in ids.split(",") if i.strip()] if ids else None
    try:
        result = await Exporter(store).export_environments(id_list, format)
    except MissingExportScopeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExportError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _export_response(result)
