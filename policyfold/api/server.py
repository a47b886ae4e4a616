from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from starlette.requests import Request

from policyfold.api.middleware import ConversionTraceMiddleware
from policyfold.api.models import ConvertOut, InspectOut
from policyfold.core.config import ConversionOptions, env_int
from policyfold.core.errors import ConversionError
from policyfold.core.pipeline import convert_policy_set
from policyfold.core.policy_set import describe_policy_set, load_policy_set
from policyfold.core.runtime import ConversionContext
from policyfold.utils.json_safe import to_jsonable

log = logging.getLogger("policyfold.api")


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Configuration for the API service.

    Security notes:
    - Uploads are held in memory; max_upload_bytes bounds that.

    """

    max_upload_bytes: int = 10 * 1024 * 1024
    defaults: ConversionOptions = ConversionOptions()


def _conversion_failed(exc: ConversionError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"error": exc.__class__.__name__, "message": str(exc)},
    )


def create_app() -> FastAPI:
    """Create the FastAPI app."""

    cfg = ServiceConfig(
        max_upload_bytes=env_int("POLICYFOLD_MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        defaults=ConversionOptions.from_env(),
    )

    log.setLevel(os.environ.get("POLICYFOLD_LOG_LEVEL", "INFO").upper())

    app = FastAPI(title="policyfold API", version="0.1")
    app.state.cfg = cfg

    # Request and conversion correlation + access logs.
    app.add_middleware(ConversionTraceMiddleware)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "max_policy_bytes": cfg.defaults.max_policy_bytes}

    def _read_upload(upload: UploadFile) -> str:
        """Read an uploaded policy set as UTF-8 text.

        Security notes:
        - Reads in chunks and stops at max_upload_bytes (413).
        - The client filename is never used.

        """

        chunks = []
        total = 0
        while True:
            chunk = upload.file.read(1024 * 1024)
            if not chunk:
                break
            total += len(chunk)
            if total > cfg.max_upload_bytes:
                raise HTTPException(status_code=413, detail="upload_too_large")
            chunks.append(chunk)
        try:
            return b"".join(chunks).decode("utf-8-sig")
        except UnicodeDecodeError:
            raise HTTPException(
                status_code=422,
                detail={"error": "StructuralError", "message": "Policy set is not valid UTF-8"},
            )

    @app.post("/inspect", response_model=InspectOut)
    def inspect_endpoint(file: UploadFile = File(...)) -> InspectOut:
        """Describe an uploaded policy set without converting it."""

        text = _read_upload(file)
        try:
            tree = load_policy_set(text)
        except ConversionError as e:
            raise _conversion_failed(e)
        return InspectOut(**to_jsonable(describe_policy_set(tree)))

    @app.post("/convert", response_model=ConvertOut)
    def convert_endpoint(
        request: Request,
        file: UploadFile = File(...),
        remove_unreferenced_objects: Optional[bool] = Form(default=None),
        tokenize_tenant_id: Optional[bool] = Form(default=None),
        max_policy_bytes: Optional[int] = Form(default=None),
        tenant_domain: Optional[str] = Form(default=None),
    ) -> ConvertOut:
        """Convert an uploaded user-flow export.

        Form fields left out fall back to the server's POLICYFOLD_* defaults.
        Conversion errors come back as 422 with the error class name.
        """

        text = _read_upload(file)
        defaults = cfg.defaults
        options = ConversionOptions(
            remove_unreferenced_objects=(
                defaults.remove_unreferenced_objects
                if remove_unreferenced_objects is None
                else remove_unreferenced_objects
            ),
            tokenize_tenant_id=defaults.tokenize_tenant_id if tokenize_tenant_id is None else tokenize_tenant_id,
            max_policy_bytes=defaults.max_policy_bytes if max_policy_bytes is None else max_policy_bytes,
            tenant_domain=tenant_domain or defaults.tenant_domain,
        )

        context = ConversionContext(operation_name="API:convert")
        request.state.conversion_id = context.context_id
        try:
            result = convert_policy_set(text, options, context=context)
        except ConversionError as e:
            request.state.event_counts = context.event_counts()
            log.warning("conversion_failed", extra={"conversion_id": context.context_id, "error": str(e)})
            raise _conversion_failed(e)

        report = to_jsonable(result.report())
        request.state.event_counts = report["event_counts"]
        return ConvertOut(
            context_id=report["context_id"],
            xml=result.to_xml(),
            policies=report["policies"],
            removed_objects=report["removed_objects"],
            event_counts=report["event_counts"],
            events=report["events"],
        )

    return app
