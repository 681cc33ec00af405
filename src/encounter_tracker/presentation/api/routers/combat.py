"""Combat endpoints: every action answers with the refreshed turn view."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends

from encounter_tracker.application.mappers.document_mapper import snapshot_to_document
from encounter_tracker.bootstrap import Container
from encounter_tracker.domain.models.user import User
from encounter_tracker.domain.services.damage import (
    DamageRoll,
    DamageTarget,
    DamageType,
    DistributionMethod,
    ResistanceType,
)
from encounter_tracker.presentation.api.dependencies import get_container, ok, optional_user, require_user
from encounter_tracker.presentation.api.schemas import (
    AddToInitiativeRequest,
    AmountRequest,
    ConditionRequest,
    DamageRequest,
    InitiativeRequest,
    ParticipantActionRequest,
    ReadyActionRequest,
    RolledDamageRequest,
    RollInitiativeRequest,
    SnapshotRequest,
    StartCombatRequest,
)


router = APIRouter(prefix="/api/encounters/{encounter_id}/combat", tags=["combat"])


def _view(container: Container, encounter_id: str, user_id: Optional[str], **extra) -> dict:
    return ok(asdict(container.combat.turn_view(encounter_id, user_id)), **extra)


@router.get("")
def turn_view(
    encounter_id: str,
    user: Optional[User] = Depends(optional_user),
    container: Container = Depends(get_container),
):
    return _view(container, encounter_id, user.id if user else None)


@router.post("/start")
def start_combat(
    encounter_id: str,
    body: Optional[StartCombatRequest] = None,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.start_combat(encounter_id, user.id, auto_roll=body.auto_roll if body else None)
    return _view(container, encounter_id, user.id)


@router.post("/end")
def end_combat(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.end_combat(encounter_id, user.id)
    return _view(container, encounter_id, user.id)


@router.post("/pause")
def pause_combat(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.pause_combat(encounter_id, user.id)
    return _view(container, encounter_id, user.id)


@router.post("/resume")
def resume_combat(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.resume_combat(encounter_id, user.id)
    return _view(container, encounter_id, user.id)


@router.post("/next-turn")
def next_turn(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.next_turn(encounter_id, user.id)
    return _view(container, encounter_id, user.id)


@router.post("/previous-turn")
def previous_turn(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.previous_turn(encounter_id, user.id)
    return _view(container, encounter_id, user.id)


@router.post("/delay")
def delay_turn(
    encounter_id: str,
    body: ParticipantActionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.delay_turn(encounter_id, user.id, body.participant_id)
    return _view(container, encounter_id, user.id)


@router.post("/resume-delayed")
def resume_delayed(
    encounter_id: str,
    body: ParticipantActionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.resume_delayed(encounter_id, user.id, body.participant_id)
    return _view(container, encounter_id, user.id)


@router.post("/ready")
def ready_action(
    encounter_id: str,
    body: ReadyActionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.ready_action(encounter_id, user.id, body.participant_id, body.description)
    return _view(container, encounter_id, user.id)


@router.post("/clear-ready")
def clear_ready_action(
    encounter_id: str,
    body: ParticipantActionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.clear_ready_action(encounter_id, user.id, body.participant_id)
    return _view(container, encounter_id, user.id)


@router.post("/initiative")
def set_initiative(
    encounter_id: str,
    body: InitiativeRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.set_initiative(encounter_id, user.id, body.participant_id, body.initiative, body.dexterity)
    return _view(container, encounter_id, user.id)


@router.post("/roll-initiative")
def roll_initiative(
    encounter_id: str,
    body: Optional[RollInitiativeRequest] = None,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    _, rolled = container.combat.roll_initiative(encounter_id, user.id, body.participant_id if body else None)
    rolls = [
        {
            "participant_id": result.entry.participant_id,
            "name": result.name,
            "type": result.type,
            "initiative": result.roll.total,
            "d20_roll": result.roll.d20_roll,
            "modifier": result.roll.modifier,
        }
        for result in rolled
    ]
    return _view(container, encounter_id, user.id, rolls=rolls)


@router.post("/reroll-initiative")
def reroll_initiative(
    encounter_id: str,
    body: Optional[RollInitiativeRequest] = None,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.reroll_initiative(encounter_id, user.id, body.participant_id if body else None)
    return _view(container, encounter_id, user.id)


@router.post("/add-to-initiative")
def add_to_initiative(
    encounter_id: str,
    body: AddToInitiativeRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.add_to_initiative(encounter_id, user.id, body.participant_id, body.initiative)
    return _view(container, encounter_id, user.id)


@router.delete("/participants/{participant_id}")
def remove_from_combat(
    encounter_id: str,
    participant_id: str,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.remove_from_combat(encounter_id, user.id, participant_id)
    return _view(container, encounter_id, user.id)


@router.post("/damage")
def apply_damage(
    encounter_id: str,
    body: DamageRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    applied = container.combat.apply_damage(
        encounter_id,
        user.id,
        body.participant_id,
        body.amount,
        damage_type=body.damage_type,
        resistance=body.resistance,
        resistances=body.resistances,
        immunities=body.immunities,
        vulnerabilities=body.vulnerabilities,
    )
    damage = asdict(applied)
    damage["resistance"] = applied.resistance.value
    return _view(container, encounter_id, user.id, damage=damage)


@router.post("/rolled-damage")
def apply_rolled_damage(
    encounter_id: str,
    body: RolledDamageRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    roll = DamageRoll(
        dice_count=body.dice_count,
        dice_type=body.dice_type,
        modifier=body.modifier,
        damage_type=DamageType(body.damage_type),
    )
    targets = [
        DamageTarget(
            id=target.id,
            name=target.name or target.id,
            resistance=ResistanceType(target.resistance),
            multiplier=target.multiplier,
        )
        for target in body.targets
    ]
    outcomes = container.combat.apply_rolled_damage(
        encounter_id, user.id, roll, targets, critical=body.critical, method=DistributionMethod(body.method)
    )
    damage = [
        {
            "target_id": outcome.target_id,
            "target_name": outcome.target_name,
            "original_damage": outcome.original_damage,
            "final_damage": outcome.final_damage,
            "resistance_applied": outcome.resistance_applied.value,
        }
        for outcome in outcomes
    ]
    return _view(container, encounter_id, user.id, damage=damage)


@router.post("/heal")
def apply_healing(
    encounter_id: str,
    body: AmountRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.apply_healing(encounter_id, user.id, body.participant_id, body.amount)
    return _view(container, encounter_id, user.id)


@router.post("/temporary-hp")
def set_temporary_hp(
    encounter_id: str,
    body: AmountRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.set_temporary_hp(encounter_id, user.id, body.participant_id, body.amount)
    return _view(container, encounter_id, user.id)


@router.post("/conditions")
def add_condition(
    encounter_id: str,
    body: ConditionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.add_condition(encounter_id, user.id, body.participant_id, body.condition)
    return _view(container, encounter_id, user.id)


@router.post("/conditions/remove")
def remove_condition(
    encounter_id: str,
    body: ConditionRequest,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    container.combat.remove_condition(encounter_id, user.id, body.participant_id, body.condition)
    return _view(container, encounter_id, user.id)


@router.get("/log")
def history(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    return ok([entry.to_dict() for entry in container.combat.history(encounter_id, user.id)])


@router.get("/validate")
def validate(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    errors = container.combat.validate(encounter_id, user.id)
    return ok({"valid": not errors, "errors": errors})


@router.post("/snapshot", status_code=201)
def save_snapshot(
    encounter_id: str,
    body: Optional[SnapshotRequest] = None,
    user: User = Depends(require_user),
    container: Container = Depends(get_container),
):
    snapshot = container.combat.save_snapshot(encounter_id, user.id, body.label if body else "")
    return ok(snapshot_to_document(snapshot))


@router.post("/restore")
def restore_snapshot(encounter_id: str, user: User = Depends(require_user), container: Container = Depends(get_container)):
    container.combat.restore_snapshot(encounter_id, user.id)
    return _view(container, encounter_id, user.id)
