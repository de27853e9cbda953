"""
FastAPI routes for variation batches.

  POST   /variations                       Start a batch in the background
  POST   /variations/run                   Run a batch up to render hand-off
  GET    /variations/placeholders          Placeholder snapshot (?batch=<ts>)
  DELETE /variations/placeholders/{id}     User removed a placeholder
  GET    /variations/registry              Generation registry snapshot
  POST   /variations/slots/{slot_id}/result  Renderer report-back
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from .models import BatchRequest, GenerationTask, Placeholder, RenderOutcome
from .orchestrator import VariationService

logger = logging.getLogger(__name__)

variation_router = APIRouter(prefix="/variations", tags=["variations"])


def get_service(request: Request) -> VariationService:
    service = getattr(request.app.state, "variation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Variation service not initialised")
    return service


@variation_router.post("")
async def start_batch(request: BatchRequest, service: VariationService = Depends(get_service)):
    """Start a batch; placeholders and stages continue in the background."""
    try:
        timestamp, slot_ids = service.start_batch_background(request)
    except Exception as e:
        logger.error(f"Failed to start variation batch: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"timestamp": timestamp, "slot_ids": slot_ids}


@variation_router.post("/run")
async def run_batch(request: BatchRequest, service: VariationService = Depends(get_service)):
    """Run a batch up to render hand-off. Stage failures come back in `error`."""
    return await service.start_batch(request)


@variation_router.get("/placeholders", response_model=list[Placeholder])
async def list_placeholders(
    batch: Optional[int] = None,
    service: VariationService = Depends(get_service),
):
    if batch is not None:
        return service.board.batch(batch)
    return list(service.board.snapshot())


@variation_router.delete("/placeholders/{placeholder_id}")
async def delete_placeholder(placeholder_id: str, service: VariationService = Depends(get_service)):
    if not service.remove_placeholder(placeholder_id):
        raise HTTPException(status_code=404, detail=f"Placeholder {placeholder_id} not found")
    return {"status": "deleted", "id": placeholder_id}


@variation_router.get("/registry", response_model=dict[str, GenerationTask])
async def registry_snapshot(service: VariationService = Depends(get_service)):
    return dict(service.registry.snapshot())


@variation_router.post("/slots/{slot_id}/result")
async def report_result(
    slot_id: str,
    outcome: RenderOutcome,
    service: VariationService = Depends(get_service),
):
    """Renderer report-back for one slot."""
    try:
        accepted = await service.report_result(slot_id, outcome)
    except Exception as e:
        logger.error(f"Failed to apply render result for {slot_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    if not accepted:
        raise HTTPException(status_code=404, detail=f"No pending render task for {slot_id}")
    return {"status": "completed" if outcome.succeeded else "failed", "slot_id": slot_id}
