"""
Pipeline API Router - trigger endpoints for every assembly stage.

Every trigger answers 202 immediately and runs the stage as a background
task. Completion is signalled by the marker object (and the optional
webhook), never by the HTTP response.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.auth import verify_api_key
from app.schemas.requests import (
    BackgroundTriggerRequest,
    BgmTriggerRequest,
    ConcatTriggerRequest,
    DurationTriggerRequest,
    EndingTriggerRequest,
    SegmentTriggerRequest,
    StageTriggerRequest,
)
from app.schemas.responses import JobStatusResponse, StageAcceptedResponse, StageStatusResponse
from app.services.pipeline import PipelineServices
from app.services.segment_synthesizer import SegmentRequest, VisualMode
from app.services.stage_runner import StageRunner, StageWork

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["Pipeline"])


# ============================================================================
# Dependencies
# ============================================================================


async def get_stage_runner(request: Request) -> StageRunner:
    """Get the stage runner from app state (initialized at startup)."""
    runner = getattr(request.app.state, "stage_runner", None)
    if runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stage runner not initialized",
        )
    return runner


async def get_pipeline_services(request: Request) -> PipelineServices:
    """Get the pipeline services from app state (initialized at startup)."""
    services = getattr(request.app.state, "pipeline_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline services not initialized",
        )
    return services


def _schedule(
    background_tasks: BackgroundTasks,
    runner: StageRunner,
    video_id: str,
    stage: str,
    unit: str,
    work: StageWork,
    callback_url: Optional[str],
) -> StageAcceptedResponse:
    runner.enqueue(video_id, stage, unit)
    background_tasks.add_task(runner.run, video_id, stage, unit, work, callback_url)
    logger.info(f"[{stage}] {video_id}/{unit}: queued")
    return StageAcceptedResponse(video_id=video_id, stage=stage, unit=unit)


# ============================================================================
# Segment stages
# ============================================================================


@router.post("/segments", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_segment(
    request: SegmentTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """
    Synthesize one segment from its narration audio and visuals.

    The marker ``{video_id}/{segment_id}/done.txt`` is written once the
    segment file is in the scratch directory.
    """
    segment_request = SegmentRequest(
        video_id=request.video_id,
        segment_id=request.segment_id,
        speaker=request.speaker,
        topic_id=request.topic_id,
        include_slide=request.include_slide,
        mode=VisualMode(request.mode) if request.mode else None,
    )
    try:
        mode = segment_request.resolve_mode()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    async def work():
        path = await services.synthesizer.synthesize(segment_request)
        return {"mode": mode.value, "segment_path": path}

    return _schedule(
        background_tasks, runner, request.video_id, "segment", request.segment_id,
        work, request.callback_url,
    )


@router.post(
    "/segments/duration",
    response_model=StageAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_duration(
    request: DurationTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Publish ``{video_id}/{segment_id}/duration.txt`` for one narration track."""

    async def work():
        duration = await services.durations.extract(request.video_id, request.segment_id)
        return {"duration_seconds": duration}

    return _schedule(
        background_tasks, runner, request.video_id, "duration",
        f"duration/{request.segment_id}", work, request.callback_url,
    )


# ============================================================================
# Job stages
# ============================================================================


@router.post("/concat", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_concat(
    request: ConcatTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Concatenate every segment of the job into the final video."""

    async def work():
        path = await services.concatenator.concat(request.video_id, policy=request.policy)
        return {"final_path": path}

    return _schedule(
        background_tasks, runner, request.video_id, "concat", "concat",
        work, request.callback_url,
    )


@router.post("/background", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_background(
    request: BackgroundTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Overlay the final video on a looping background clip."""

    async def work():
        path = await services.post_processor.overlay_background(
            request.video_id, template_key=request.template_key
        )
        return {"final_path": path}

    return _schedule(
        background_tasks, runner, request.video_id, "background", "background",
        work, request.callback_url,
    )


@router.post("/bgm", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_bgm(
    request: BgmTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Mix background music under the narration."""

    async def work():
        path = await services.post_processor.mix_bgm(
            request.video_id,
            template_key=request.template_key,
            fade_seconds=request.fade_seconds,
        )
        return {"final_path": path}

    return _schedule(
        background_tasks, runner, request.video_id, "bgm", "bgm",
        work, request.callback_url,
    )


@router.post("/ending", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_ending(
    request: EndingTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Append the ending clip."""

    async def work():
        path = await services.post_processor.append_ending(
            request.video_id, crossfade=request.crossfade
        )
        return {"final_path": path}

    return _schedule(
        background_tasks, runner, request.video_id, "ending", "ending",
        work, request.callback_url,
    )


@router.post("/upload", response_model=StageAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_upload(
    request: StageTriggerRequest,
    background_tasks: BackgroundTasks,
    runner: StageRunner = Depends(get_stage_runner),
    services: PipelineServices = Depends(get_pipeline_services),
    _: None = Depends(verify_api_key),
) -> StageAcceptedResponse:
    """Upload the final video (compressing it if needed) and purge the job's scratch."""

    async def work():
        url = await services.uploader.upload_final(request.video_id)
        return {"url": url}

    return _schedule(
        background_tasks, runner, request.video_id, "upload", "upload",
        work, request.callback_url,
    )


# ============================================================================
# Diagnostics
# ============================================================================


@router.get("/jobs/{video_id}", response_model=JobStatusResponse)
async def get_job_status(
    video_id: str,
    runner: StageRunner = Depends(get_stage_runner),
) -> JobStatusResponse:
    """
    Get the stages this process has run for a job.

    Status lives in memory only; markers in storage are authoritative.
    """
    records = runner.get_job(video_id)
    if not records:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {video_id}",
        )

    return JobStatusResponse(
        video_id=video_id,
        stages=[
            StageStatusResponse(
                stage=r.stage,
                unit=r.unit,
                status=r.status.value,
                error=r.error,
                output=r.output,
                updated_at=r.updated_at,
            )
            for r in records
        ],
    )
