from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import load_settings
from errors import AssetNotFound, InvalidJob, JobAlreadyRunning, JobNotFound, JobNotRunning
from models import ScrapingRules, Selector
from workers.job_runner import JobManager


class SelectorIn(BaseModel):
    kind: Literal["css", "xpath"]
    query: str
    purpose: Literal["links", "assets", "metadata"]


class RulesIn(BaseModel):
    max_depth: int = Field(0, ge=0)
    max_assets: int = Field(0, ge=0)
    include_pattern: str = ""
    exclude_pattern: str = ""
    timeout: float = Field(0, ge=0)
    request_delay: float = Field(0, ge=0)
    randomize_delay: bool = False
    user_agent: str = ""
    max_size: int = Field(0, ge=0)


class CreateJobRequest(BaseModel):
    base_url: str
    selectors: list[SelectorIn]
    rules: RulesIn = Field(default_factory=RulesIn)
    schedule: str = ""


class JobActionResponse(BaseModel):
    job_id: str
    status: str


def create_app(manager: JobManager | None = None) -> FastAPI:
    manager = manager or JobManager(load_settings())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await manager.startup()
        try:
            yield
        finally:
            await manager.shutdown()

    app = FastAPI(title="Asset Harvester API", lifespan=lifespan)
    app.state.manager = manager

    @app.post("/api/jobs", response_model=JobActionResponse)
    async def create_job(req: CreateJobRequest):
        try:
            job = await manager.submit(
                req.base_url,
                [Selector.from_dict(s.model_dump()) for s in req.selectors],
                ScrapingRules.from_dict(req.rules.model_dump()),
                req.schedule,
            )
        except InvalidJob as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"job_id": job.id, "status": job.status.value}

    @app.get("/api/jobs")
    async def list_jobs():
        return manager.list_jobs()

    @app.get("/api/jobs/{job_id}")
    async def get_job(job_id: str):
        try:
            return manager.get_job(job_id)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.delete("/api/jobs/{job_id}")
    async def delete_job(job_id: str):
        try:
            await manager.delete_job(job_id)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"job_id": job_id, "deleted": True}

    @app.post("/api/jobs/{job_id}/start", response_model=JobActionResponse)
    async def start_job(job_id: str):
        try:
            job = await manager.start_job(job_id)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobAlreadyRunning as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"job_id": job.id, "status": job.status.value}

    @app.post("/api/jobs/{job_id}/stop", response_model=JobActionResponse)
    async def stop_job(job_id: str):
        try:
            job = await manager.stop_job(job_id)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except JobNotRunning as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"job_id": job.id, "status": job.status.value}

    @app.get("/api/jobs/{job_id}/assets")
    async def list_assets(job_id: str):
        try:
            return manager.list_assets(job_id)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/api/assets/{asset_id}")
    async def get_asset(asset_id: str):
        try:
            return manager.get_asset(asset_id)
        except AssetNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    return app


app = create_app()
