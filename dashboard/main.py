"""FastAPI app serving the generated files to the browser dashboard."""
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from pipeline.orchestrator import OUTPUT_KEYS
from shared.schemas import RunResult
from storage.blob_store import BlobStore, content_type_for

NO_CACHE = "no-cache, no-store, must-revalidate"

app = FastAPI(title="Limitless Tracker Dashboard")
# The dashboard frontend is hosted separately and only reads
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"])

# Shared instances (set by runner.py)
_store: BlobStore | None = None
_last_result: RunResult | None = None


def set_store(store: BlobStore):
    global _store
    _store = store


def set_last_result(result: RunResult | None):
    global _last_result
    _last_result = result


def _get_store() -> BlobStore:
    if _store is None:
        raise RuntimeError("Blob store not initialized")
    return _store


@app.get("/api/status")
async def api_status():
    last_run = None
    if _last_result is not None:
        last_run = _last_result.model_dump(mode="json", by_alias=True)
    return {"status": "running", "lastRun": last_run}


@app.get("/api/files")
async def api_files():
    return {"files": list(OUTPUT_KEYS)}


@app.get("/api/files/{key}")
async def api_file(key: str):
    if key not in OUTPUT_KEYS:
        raise HTTPException(status_code=404, detail=f"Unknown file {key}")
    data = await _get_store().get(key)
    if data is None:
        raise HTTPException(status_code=404, detail=f"{key} not generated yet")
    return Response(
        content=data,
        media_type=content_type_for(key),
        headers={"Cache-Control": NO_CACHE},
    )
