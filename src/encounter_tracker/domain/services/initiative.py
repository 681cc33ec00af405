"""Initiative rolling and ordering.

Order is initiative descending, then dexterity descending. Full ties keep
their previous relative order. The lair action pseudo-entry loses every
initiative tie.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence

from encounter_tracker.domain.models.combat import InitiativeEntry
from encounter_tracker.domain.models.encounter import ParticipantReference, ParticipantType
from encounter_tracker.domain.models.stats import ability_modifier


@dataclass(frozen=True)
class InitiativeRoll:
    total: int
    d20_roll: int
    modifier: int


@dataclass(frozen=True)
class RolledInitiative:
    entry: InitiativeEntry
    name: str
    type: str
    roll: InitiativeRoll


@dataclass(frozen=True)
class InitiativePreferences:
    auto_roll_on_combat_start: bool = False
    show_roll_breakdown: bool = True
    allow_player_rerolls: bool = True
    tiebreak_by_dexterity: bool = True


def roll_d20(rng: random.Random) -> int:
    return rng.randint(1, 20)


def initiative_modifier(dexterity: int) -> int:
    return ability_modifier(dexterity)


def roll_initiative_with_modifier(dexterity: int, rng: random.Random) -> InitiativeRoll:
    d20 = roll_d20(rng)
    modifier = initiative_modifier(dexterity)
    return InitiativeRoll(total=max(1, d20 + modifier), d20_roll=d20, modifier=modifier)


def initiative_sort_key(entry: InitiativeEntry, *, tiebreak_by_dexterity: bool = True):
    dexterity = entry.dexterity if tiebreak_by_dexterity else 0
    return (-int(entry.initiative), entry.is_lair, -int(dexterity))


def sort_initiative_order(
    entries: Iterable[InitiativeEntry],
    *,
    tiebreak_by_dexterity: bool = True,
) -> List[InitiativeEntry]:
    return sorted(entries, key=lambda entry: initiative_sort_key(entry, tiebreak_by_dexterity=tiebreak_by_dexterity))


def generate_initiative_entries(
    participants: Sequence[ParticipantReference],
    *,
    preserve_existing: bool = False,
) -> List[InitiativeEntry]:
    return [
        InitiativeEntry(
            participant_id=participant.character_id,
            initiative=int(participant.initiative or 0) if preserve_existing else 0,
            dexterity=participant.dexterity,
        )
        for participant in participants
    ]


def roll_bulk_initiative(
    participants: Sequence[ParticipantReference],
    rng: random.Random,
    *,
    tiebreak_by_dexterity: bool = True,
) -> List[RolledInitiative]:
    rolled: List[RolledInitiative] = []
    for participant in participants:
        roll = roll_initiative_with_modifier(participant.dexterity, rng)
        rolled.append(
            RolledInitiative(
                entry=InitiativeEntry(
                    participant_id=participant.character_id,
                    initiative=roll.total,
                    dexterity=participant.dexterity,
                ),
                name=participant.name,
                # Monsters are reported as NPCs to the tracker.
                type="npc" if participant.type == ParticipantType.MONSTER else participant.type.value,
                roll=roll,
            )
        )
    return sorted(
        rolled,
        key=lambda item: initiative_sort_key(item.entry, tiebreak_by_dexterity=tiebreak_by_dexterity),
    )


def reroll_initiative(
    entries: Sequence[InitiativeEntry],
    rng: random.Random,
    participant_id: Optional[str] = None,
    *,
    tiebreak_by_dexterity: bool = True,
) -> List[InitiativeEntry]:
    rerolled: List[InitiativeEntry] = []
    for entry in entries:
        if entry.is_lair or (participant_id is not None and entry.participant_id != participant_id):
            rerolled.append(entry)
            continue
        roll = roll_initiative_with_modifier(entry.dexterity, rng)
        rerolled.append(replace(entry, initiative=roll.total))
    return sort_initiative_order(rerolled, tiebreak_by_dexterity=tiebreak_by_dexterity)


def roll_single_initiative(
    entries: Sequence[InitiativeEntry],
    participant_id: str,
    dexterity: int,
    rng: random.Random,
    *,
    tiebreak_by_dexterity: bool = True,
) -> List[InitiativeEntry]:
    roll = roll_initiative_with_modifier(dexterity, rng)
    updated = [
        replace(entry, initiative=roll.total, dexterity=dexterity) if entry.participant_id == participant_id else entry
        for entry in entries
    ]
    return sort_initiative_order(updated, tiebreak_by_dexterity=tiebreak_by_dexterity)


def initiative_roll_breakdown(total: int, dexterity: int) -> InitiativeRoll:
    """Recover the d20 face behind a stored total.

    Totals are clamped to a minimum of 1, so a total of 1 can hide a lower
    natural roll; the recovered face is clamped to the die's range.
    """
    modifier = initiative_modifier(dexterity)
    d20 = max(1, min(20, int(total) - modifier))
    return InitiativeRoll(total=int(total), d20_roll=d20, modifier=modifier)


def can_reroll(preferences: InitiativePreferences, participant_type: str) -> bool:
    kind = str(getattr(participant_type, "value", participant_type))
    return preferences.allow_player_rerolls or kind in ("npc", "monster")
