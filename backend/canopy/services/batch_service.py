# Overview: Internal batch workflow; stage transitions and the registry phase follow-up.

"""
Batch Stage Transitions

The internal stage change is committed first. When the phase evaluator says
the registry must be told, a phase_check sync runs afterwards. A failed
registry call is recorded in the sync log and returned alongside the batch;
it never rolls back the stage change.

A batch linked to a registry plant batch may not skip or reverse a registry
phase (clone -> flowering, flowering -> vegetative); those moves raise
BatchError before anything is committed.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Batch, BATCH_STAGES
from . import mapping_service, phase_service, sync_orchestrator
from .sync_orchestrator import SyncOptions, SyncType
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_user_in_org


class BatchError(Exception):
    pass


def _is_linked(batch: Batch) -> bool:
    mapping = mapping_service.get_active_mapping_for_internal(
        mapping_service.ENTITY_BATCH,
        batch.id,
        mapping_service.REGISTRY_PLANT_BATCH,
    )
    return mapping is not None


def transition_batch_stage(
    batch_id: int,
    org_id: int,
    new_stage: str,
    user_id: int | None = None,
    *,
    location: str | None = None,
    starting_tag: str | None = None,
    client_factory=None,
) -> tuple[Batch, sync_orchestrator.SyncResult | None]:
    """
    Move a batch to a new stage.

    Returns (batch, sync_result); sync_result is None when no registry phase
    change was needed.
    """
    stage = (new_stage or "").strip().lower()
    if stage not in BATCH_STAGES:
        raise BatchError(f"Invalid stage: {new_stage}. Must be one of: {', '.join(BATCH_STAGES)}")

    require_user_in_org(user_id, org_id)

    def _apply_stage():
        batch = lock_for_update(
            db.session.query(Batch).filter_by(id=batch_id, org_id=org_id)
        ).first()
        if not batch:
            raise BatchError("Batch not found")
        if batch.status != "active":
            raise BatchError(f"Batch {batch.batch_number} is not active")

        previous = batch.stage
        if previous == stage:
            raise BatchError(f"Batch {batch.batch_number} is already in stage {stage}")

        if _is_linked(batch):
            move_error = phase_service.phase_move_error(previous, stage)
            if move_error:
                raise BatchError(f"Batch {batch.batch_number}: {move_error}")

        required = phase_service.is_phase_sync_required(batch, stage)
        batch.stage = stage
        db.session.commit()
        return batch, previous, required

    # Stale version_id or lock failures re-read the batch and try again
    batch, previous_stage, sync_required = run_with_retry(_apply_stage)

    if not sync_required:
        return batch, None

    result = sync_orchestrator.run_sync(
        SyncType.PHASE_CHECK,
        batch.site_id,
        org_id,
        user_id,
        SyncOptions(
            batch_id=batch.id,
            previous_stage=previous_stage,
            new_stage=stage,
            location=location,
            starting_tag=starting_tag,
        ),
        client_factory=client_factory,
    )
    return batch, result
