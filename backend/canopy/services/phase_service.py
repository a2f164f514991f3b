# Overview: Phase-transition evaluator and the registry growth-phase push.

"""
Registry Growth Phase Rules

The registry tracks three plant-batch phases (Clone, Vegetative, Flowering)
and only accepts forward moves Clone -> Vegetative -> Flowering. Internal
stages are finer grained; several stages share one registry phase.

will_trigger_phase_sync is a pure predicate over PHASE_SYNC_TABLE: a stage
pair is listed only when it changes the registry phase along a valid move.
Every other pair, including unknown stages, means "no registry call".
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models import Batch
from ..registry import RegistryError
from . import mapping_service
from canopy.time_utils import to_registry_date, utcnow


PHASE_CLONE = "Clone"
PHASE_VEGETATIVE = "Vegetative"
PHASE_FLOWERING = "Flowering"

STAGE_TO_PHASE = {
    "germination": PHASE_CLONE,
    "clone": PHASE_CLONE,
    "vegetative": PHASE_VEGETATIVE,
    "flowering": PHASE_FLOWERING,
}

VALID_PHASE_MOVES = {
    PHASE_CLONE: (PHASE_VEGETATIVE,),
    PHASE_VEGETATIVE: (PHASE_FLOWERING,),
    PHASE_FLOWERING: (),
}

PHASE_SYNC_TABLE = {
    ("germination", "vegetative"): True,
    ("clone", "vegetative"): True,
    ("vegetative", "flowering"): True,
}

# Registry change-phase requests are limited to this many batches
PHASE_CHANGE_CHUNK_SIZE = 100


def get_registry_phase(stage: str | None) -> str | None:
    """Registry phase for an internal stage; None for stages the registry does not track."""
    if not stage:
        return None
    return STAGE_TO_PHASE.get(stage.strip().lower())


def is_valid_phase_move(from_phase: str | None, to_phase: str | None) -> bool:
    if from_phase is None or to_phase is None:
        return False
    return to_phase in VALID_PHASE_MOVES.get(from_phase, ())


def phase_move_error(current_stage: str | None, requested_stage: str | None) -> str | None:
    """
    Reason a linked batch may not move between these stages, or None.

    Only a change between two tracked phases is checked; stages the registry
    does not track and moves within one phase are always allowed.
    """
    from_phase = get_registry_phase(current_stage)
    to_phase = get_registry_phase(requested_stage)
    if from_phase is None or to_phase is None or from_phase == to_phase:
        return None
    if is_valid_phase_move(from_phase, to_phase):
        return None
    allowed = ", ".join(VALID_PHASE_MOVES.get(from_phase, ())) or "none"
    return (
        f"Registry phase cannot move from {from_phase} to {to_phase} "
        f"({current_stage} -> {requested_stage}). Allowed from {from_phase}: {allowed}"
    )


def will_trigger_phase_sync(batch_id, current_stage: str | None, requested_stage: str | None) -> bool:
    """
    Whether moving a batch between these stages requires a registry call.

    Pure: batch_id is accepted for call-site symmetry and never looked up.
    """
    key = ((current_stage or "").strip().lower(), (requested_stage or "").strip().lower())
    return PHASE_SYNC_TABLE.get(key, False)


def is_phase_sync_required(batch: Batch, requested_stage: str) -> bool:
    """will_trigger_phase_sync plus: the batch must be linked to a registry plant batch."""
    if not will_trigger_phase_sync(batch.id, batch.stage, requested_stage):
        return False
    mapping = mapping_service.get_active_mapping_for_internal(
        mapping_service.ENTITY_BATCH,
        batch.id,
        mapping_service.REGISTRY_PLANT_BATCH,
    )
    return mapping is not None


@dataclass
class PhasePushResult:
    success: bool = True
    batches_changed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def build_phase_change(batch: Batch, *, registry_name: str, new_phase: str, location: str, starting_tag: str | None = None) -> dict:
    return {
        "Name": registry_name,
        "Count": batch.plant_count,
        "StartingTag": starting_tag,
        "GrowthPhase": new_phase,
        "NewLocation": location,
        "GrowthDate": to_registry_date(utcnow()),
    }


def chunked(items: list, size: int = PHASE_CHANGE_CHUNK_SIZE):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def push_phase_changes(client, changes: list[dict]) -> None:
    """Send change-phase requests in registry-sized chunks. Raises RegistryError on the first failure."""
    for chunk in chunked(changes):
        client.change_plant_batch_phase(chunk)


def push_batch_phase_change(
    client,
    batch: Batch,
    *,
    previous_stage: str,
    new_stage: str,
    location: str | None,
    starting_tag: str | None = None,
) -> PhasePushResult:
    """
    Report an already-committed internal stage change to the registry.

    Never touches batch.stage: a registry failure is returned as an error
    and the mapping is flagged, the internal transition stands.
    """
    result = PhasePushResult()

    if not will_trigger_phase_sync(batch.id, previous_stage, new_stage):
        result.warnings.append(
            f"No registry phase change required for {previous_stage} -> {new_stage}"
        )
        return result

    mapping = mapping_service.get_active_mapping_for_internal(
        mapping_service.ENTITY_BATCH,
        batch.id,
        mapping_service.REGISTRY_PLANT_BATCH,
    )
    if mapping is None:
        result.warnings.append(f"Batch {batch.batch_number} is not linked to a registry plant batch")
        return result

    if not location:
        result.success = False
        result.errors.append("A registry location is required to change growth phase")
        return result

    new_phase = get_registry_phase(new_stage)
    change = build_phase_change(
        batch,
        registry_name=mapping.registry_name or batch.batch_number,
        new_phase=new_phase,
        location=location,
        starting_tag=starting_tag,
    )

    try:
        push_phase_changes(client, [change])
    except RegistryError as e:
        mapping_service.mark_error(mapping)
        result.success = False
        result.errors.append(f"Batch {batch.batch_number}: {e.message}")
        return result

    mapping_service.mark_synced(mapping)
    result.batches_changed = 1
    return result
