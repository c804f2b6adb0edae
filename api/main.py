from __future__ import annotations

import asyncio
import functools
import logging
import math
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd
from fastapi import FastAPI, File, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.schemas import DashboardFiltersModel, MetaListResponse, MetaOptionsResponse, UploadResponse
from opportunity_core.data import IngestError, load_dashboard_data, prepare_context, validate_filename
from opportunity_core.filters import DashboardFilters, booking_records, normalize_filters, pipeline_records, reachable_sub_segments, status_codes
from opportunity_core.metrics_bookings import compute_bookings
from opportunity_core.metrics_insights import compute_insights
from opportunity_core.metrics_opportunities import compute_opportunities, export_frame
from opportunity_core.metrics_pipeline import compute_pipeline
from opportunity_core.metrics_rankings import compute_rankings
from opportunity_core.metrics_service_lines import compute_service_lines
from opportunity_core.schema import STATUS_BOOKED


app = FastAPI(title="Opportunity Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
UPLOAD_TIMEOUT_SECONDS = 30.0

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The dataset of the running session; replaced wholesale on every upload.
_STATE: Dict[str, Any] = {"data_ctx": None, "filename": None}


class DatasetNotLoadedError(Exception):
    pass


class UnknownPageError(Exception):
    pass


def _data_ctx() -> Dict[str, Any]:
    data_ctx = _STATE.get("data_ctx")
    if data_ctx is None:
        raise DatasetNotLoadedError("No dataset loaded: upload an Excel file first")
    return data_ctx


def reset_dataset() -> None:
    _STATE["data_ctx"] = None
    _STATE["filename"] = None


def _filters_from_model(model: DashboardFiltersModel, *, data_ctx: Dict[str, Any]) -> DashboardFilters:
    raw = model.model_dump()
    return normalize_filters(raw, sub_segment_map=data_ctx.get("sub_segment_map"))


def _error(status_code: int, exc: Exception) -> JSONResponse:
    message = getattr(exc, "message", None) or str(exc)
    return JSONResponse(status_code=status_code, content={"error": message, "type": type(exc).__name__})


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                type(pd.NaT): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


@app.post("/upload", response_model=UploadResponse)
async def upload(file: UploadFile = File(...), strict: bool = Query(default=False)):
    try:
        validate_filename(file.filename or "")
        content = await asyncio.wait_for(file.read(), timeout=UPLOAD_TIMEOUT_SECONDS)
        # decode runs in a worker thread, bounded like the read
        data_ctx = await asyncio.wait_for(
            asyncio.get_running_loop().run_in_executor(None, functools.partial(load_dashboard_data, content, strict=strict)),
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
    except IngestError as exc:
        logger.warning("upload of %s rejected: %s", file.filename, exc.message)
        return _error(400, exc)
    except asyncio.TimeoutError as exc:
        logger.warning("upload of %s timed out", file.filename)
        return JSONResponse(status_code=400, content={"error": "Timed out reading or decoding the uploaded file", "type": type(exc).__name__})
    except Exception as exc:
        logger.exception("upload failed")
        return _error(500, exc)

    _STATE["data_ctx"] = data_ctx
    _STATE["filename"] = file.filename
    return _json(
        {
            "filename": file.filename,
            "rows": data_ctx["rows"],
            "service_lines": data_ctx["service_lines"],
            "years": data_ctx["years"],
        }
    )


@app.get("/meta/options", response_model=MetaOptionsResponse)
def meta_options():
    try:
        data_ctx = _data_ctx()
        return _json({**data_ctx["options"], "sub_segment_map": data_ctx["sub_segment_map"]})
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("meta_options failed")
        return _error(500, exc)


@app.get("/meta/sub-segments", response_model=MetaListResponse)
def meta_sub_segments(codes: Optional[List[str]] = Query(default=None)):
    try:
        data_ctx = _data_ctx()
        return _json({"values": reachable_sub_segments(data_ctx["sub_segment_map"], codes or [])})
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("meta_sub_segments failed")
        return _error(500, exc)


@app.post("/pipeline")
def pipeline(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_pipeline(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("pipeline failed")
        return _error(500, exc)


@app.post("/bookings")
def bookings(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_bookings(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("bookings failed")
        return _error(500, exc)


@app.post("/service-lines")
def service_lines(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_service_lines(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("service_lines failed")
        return _error(500, exc)


@app.post("/rankings")
def rankings(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_rankings(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("rankings failed")
        return _error(500, exc)


@app.post("/insights")
def insights(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_insights(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("insights failed")
        return _error(500, exc)


@app.post("/opportunities")
def opportunities(filters: DashboardFiltersModel):
    try:
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        return _json(compute_opportunities(f, ctx))
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("opportunities failed")
        return _error(500, exc)


def _booked(df: pd.DataFrame) -> pd.DataFrame:
    return df[status_codes(df) == STATUS_BOOKED]


EXPORT_FRAMES: Dict[str, Callable[[pd.DataFrame], pd.DataFrame]] = {
    "pipeline": pipeline_records,
    "bookings": booking_records,
    "service-lines": lambda df: df,
    "rankings": _booked,
    "insights": lambda df: df,
    "opportunities": lambda df: df,
}


@app.post("/export/{page}")
def export_page(page: str, filters: DashboardFiltersModel):
    try:
        select = EXPORT_FRAMES.get(page)
        if select is None:
            raise UnknownPageError(f"Unknown export page: {page}")
        data_ctx = _data_ctx()
        f = _filters_from_model(filters, data_ctx=data_ctx)
        ctx = prepare_context(f, data_ctx)
        export_df = export_frame(select(ctx["filtered"]), use_net=f.use_net_revenue)
    except UnknownPageError as exc:
        return _error(404, exc)
    except DatasetNotLoadedError as exc:
        return _error(409, exc)
    except Exception as exc:
        logger.exception("export failed")
        return _error(500, exc)

    filename = f"{page}.csv"
    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
