"""REST API for gltf-optimizer service."""

from __future__ import annotations

import asyncio
import shutil
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from gltf_optimizer.batch import SCENE_EXTENSIONS
from gltf_optimizer.config import ServiceSettings, merge_output_config
from gltf_optimizer.document import TrimeshIO
from gltf_optimizer.errors import ConfigurationError, OptimizerError
from gltf_optimizer.lod import LODGenerator, distance_threshold, levels_for_complexity, save_lods
from gltf_optimizer.output import resolve_outputs, write_outputs
from gltf_optimizer.pipeline import Pipeline
from gltf_optimizer.stages import default_stages
from gltf_optimizer.textures import TextureStrategyResolver
from gltf_optimizer.transforms import TrimeshEngine

# =========================================================================
# Models
# =========================================================================

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobResponse(BaseModel):
    """Response for job creation."""
    job_id: str
    status: JobStatus
    message: str
    created_at: datetime


class JobStatusResponse(BaseModel):
    """Response for job status query."""
    job_id: str
    status: JobStatus
    progress: float = 0.0
    outputs: list[str] = Field(default_factory=list)
    lod_index: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class LODLevelResponse(BaseModel):
    level: float
    distance_threshold: int


class AnalysisResponse(BaseModel):
    """Response for scene analysis."""
    vertex_count: int
    triangle_count: int
    geometry_count: int
    material_count: int
    suggested_lods: list[LODLevelResponse]


class TextureStrategyResponse(BaseModel):
    strategy: str
    priority: str
    original_size: tuple[int, int]
    target_size: tuple[int, int]
    was_optimal: bool


# =========================================================================
# In-memory job store (replace with Redis/DB in production)
# =========================================================================

class JobStore:
    """Simple in-memory job store."""

    def __init__(self):
        self.jobs: dict[str, dict] = {}

    def create(self, job_type: str, params: dict) -> str:
        job_id = str(uuid.uuid4())[:8]
        self.jobs[job_id] = {
            "id": job_id,
            "type": job_type,
            "status": JobStatus.PENDING,
            "params": params,
            "progress": 0.0,
            "result": None,
            "error": None,
            "created_at": datetime.now(),
            "completed_at": None,
        }
        return job_id

    def get(self, job_id: str) -> Optional[dict]:
        return self.jobs.get(job_id)

    def update(self, job_id: str, **kwargs):
        if job_id in self.jobs:
            self.jobs[job_id].update(kwargs)

    def set_completed(self, job_id: str, result: dict):
        self.update(
            job_id,
            status=JobStatus.COMPLETED,
            result=result,
            completed_at=datetime.now(),
            progress=1.0,
        )

    def set_failed(self, job_id: str, error: str):
        self.update(
            job_id,
            status=JobStatus.FAILED,
            error=error,
            completed_at=datetime.now(),
        )


# =========================================================================
# App
# =========================================================================

app = FastAPI(
    title="glTF Optimizer API",
    description="Batch glTF optimization and LOD generation service",
    version="0.1.0",
)

settings = ServiceSettings.from_env()
job_store = JobStore()
io = TrimeshIO()
engine = TrimeshEngine(io)
resolver = TextureStrategyResolver()


@app.on_event("startup")
async def startup():
    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    settings.output_dir.mkdir(parents=True, exist_ok=True)


async def _save_upload(file: UploadFile) -> Path:
    name = Path(file.filename or "upload.glb").name
    if Path(name).suffix.lower() not in SCENE_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {name}")

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    file_path = settings.upload_dir / f"{uuid.uuid4().hex[:8]}_{name}"
    with open(file_path, "wb") as f:
        f.write(await file.read())
    return file_path


# =========================================================================
# Endpoints
# =========================================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "stages": [kind.value for kind in engine.capabilities],
    }


@app.get("/textures/strategy", response_model=TextureStrategyResponse)
async def texture_strategy(name: str, width: int, height: int):
    """Which strategy a texture name gets and the size it would be resized to."""
    if width <= 0 or height <= 0:
        raise HTTPException(400, "width and height must be positive")
    strategy = resolver.resolve(name)
    target = resolver.target_size(width, height, strategy)
    return TextureStrategyResponse(
        strategy=strategy.name,
        priority=strategy.priority.value,
        original_size=(width, height),
        target_size=target,
        was_optimal=target == (width, height),
    )


@app.post("/analyze", response_model=AnalysisResponse)
async def analyze_scene(file: UploadFile = File(...)):
    """Analyze a scene file without optimizing it."""
    file_path = await _save_upload(file)
    try:
        document = io.read(file_path)
        metrics = io.query_complexity(document)
        return AnalysisResponse(
            vertex_count=metrics.vertex_count,
            triangle_count=metrics.triangle_count,
            geometry_count=len(document.scene.geometry),
            material_count=len(io.list_materials(document)),
            suggested_lods=[
                LODLevelResponse(level=level, distance_threshold=distance_threshold(level))
                for level in levels_for_complexity(metrics)
            ],
        )
    except OptimizerError as e:
        raise HTTPException(422, str(e))
    finally:
        file_path.unlink(missing_ok=True)


@app.post("/optimize", response_model=JobResponse)
async def optimize_scene(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    lod: bool = False,
    format: str = "preserve",
    naming: str = "preserve",
):
    """Submit a scene for optimization. Returns job ID for status polling."""
    try:
        merge_output_config({"format": format, "naming": naming})
    except ConfigurationError as e:
        raise HTTPException(400, str(e))

    file_path = await _save_upload(file)
    job_id = job_store.create("optimize", {
        "file_path": str(file_path),
        "lod": lod,
        "format": format,
        "naming": naming,
    })

    background_tasks.add_task(process_optimize_job, job_id)

    return JobResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        message="Job submitted successfully",
        created_at=job_store.get(job_id)["created_at"],
    )


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str):
    """Get status of an optimization job."""
    job = job_store.get(job_id)
    if not job:
        raise HTTPException(404, "Job not found")

    result = job.get("result") or {}

    return JobStatusResponse(
        job_id=job_id,
        status=job["status"],
        progress=job["progress"],
        outputs=[Path(p).name for p in result.get("outputs", [])],
        lod_index=result.get("lod_index"),
        error_message=job.get("error"),
        created_at=job["created_at"],
        completed_at=job.get("completed_at"),
    )


@app.get("/download/{job_id}/{filename}")
async def download_result(job_id: str, filename: str):
    """Download one output file of a completed job."""
    job = job_store.get(job_id)
    if not job:
        raise HTTPException(404, "Job not found")

    if job["status"] != JobStatus.COMPLETED:
        raise HTTPException(400, "Job not completed")

    job_dir = (settings.output_dir / job_id).resolve()
    output_path = (job_dir / filename).resolve()
    if output_path.parent != job_dir or not output_path.exists():
        raise HTTPException(404, "Output file not found")

    return FileResponse(
        output_path,
        filename=output_path.name,
        media_type="application/octet-stream",
    )


# =========================================================================
# Background tasks
# =========================================================================

def optimize_file(
    file_path: Path,
    output_dir: Path,
    lod: bool = False,
    output_format: str = "preserve",
    naming: str = "preserve",
) -> dict:
    """Run the default pipeline on one file and write its outputs (blocking)."""
    config = merge_output_config({"format": output_format, "naming": naming})
    document = io.read(file_path)
    Pipeline(engine).run(document, default_stages())

    # Uploads carry a random prefix; outputs keep the original name
    source_name = file_path.name.split("_", 1)[-1]
    targets = resolve_outputs(source_name, output_dir, ".", config)
    report = write_outputs(io, document, targets)
    report.raise_for_failures()

    result = {"outputs": [str(p) for p in report.written], "lod_index": None}
    if lod:
        index, index_path = save_lods(
            LODGenerator(io, engine).iter_variants(document),
            io,
            output_dir,
            Path(source_name).stem,
        )
        result["lod_index"] = index_path.name
        result["outputs"] += [str(output_dir / entry.path) for entry in index.levels]
    return result


async def process_optimize_job(job_id: str):
    """Process an optimization job in the background."""
    job = job_store.get(job_id)
    if not job:
        return

    job_store.update(job_id, status=JobStatus.PROCESSING, progress=0.1)

    params = job["params"]
    file_path = Path(params["file_path"])
    output_dir = settings.output_dir / job_id
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        # Blocking work runs in the thread pool
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            lambda: optimize_file(
                file_path,
                output_dir,
                lod=params.get("lod", False),
                output_format=params.get("format", "preserve"),
                naming=params.get("naming", "preserve"),
            ),
        )
        job_store.set_completed(job_id, result)

    except Exception as e:
        job_store.set_failed(job_id, str(e))
        shutil.rmtree(output_dir, ignore_errors=True)

    finally:
        file_path.unlink(missing_ok=True)


# =========================================================================
# Run
# =========================================================================

def run_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the API server."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
