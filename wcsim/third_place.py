from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np

from wcsim.errors import OverrideConflictError, ThirdPlaceAssignmentError
from wcsim.groups import Standing

logger = logging.getLogger(__name__)

N_QUALIFYING_THIRDS = 8
MAX_ATTEMPTS = 10_000


@dataclass(frozen=True)
class ThirdPlaceRecord:
    group: str
    team: str
    points: int
    gd: int
    gf: int

    @classmethod
    def from_standing(cls, standing: Standing, group: Optional[str] = None) -> "ThirdPlaceRecord":
        return cls(
            group=group or standing.group or "",
            team=standing.team,
            points=standing.points,
            gd=standing.gd,
            gf=standing.gf,
        )

    def sort_key(self) -> Tuple[int, int, int]:
        return (self.points, self.gd, self.gf)


def rank_third_placed(
    records: Iterable[ThirdPlaceRecord], rng: Optional[np.random.Generator] = None
) -> List[ThirdPlaceRecord]:
    """
    Same order as within a group. Residual ties keep the order given, or are
    settled by drawing of lots when rng is passed.
    """
    ranked = sorted(records, key=ThirdPlaceRecord.sort_key, reverse=True)
    if rng is None:
        return ranked
    result: List[ThirdPlaceRecord] = []
    i = 0
    while i < len(ranked):
        j = i + 1
        while j < len(ranked) and ranked[j].sort_key() == ranked[i].sort_key():
            j += 1
        block = ranked[i:j]
        if len(block) > 1:
            block = [block[k] for k in rng.permutation(len(block))]
        result.extend(block)
        i = j
    return result


def select_qualifiers(
    records: Iterable[ThirdPlaceRecord],
    n_qualifiers: int = N_QUALIFYING_THIRDS,
    rng: Optional[np.random.Generator] = None,
) -> List[ThirdPlaceRecord]:
    ranked = rank_third_placed(records, rng=rng)
    if len(ranked) < n_qualifiers:
        raise ValueError(
            f"Need at least {n_qualifiers} third-placed teams, got {len(ranked)}"
        )
    return ranked[:n_qualifiers]


# State threaded through the search: (slot, group) pairs fixed so far.
Assignment = Tuple[Tuple[int, str], ...]


def _search(
    slots: Tuple[int, ...],
    pools: Mapping[int, FrozenSet[str]],
    available: FrozenSet[str],
    assigned: Assignment,
    rng: Optional[np.random.Generator],
    attempts: int,
    max_attempts: int,
) -> Tuple[Optional[Assignment], int]:
    depth = len(assigned)
    if depth == len(slots):
        return assigned, attempts
    slot = slots[depth]
    candidates = sorted(pools[slot] & available)
    if rng is not None and len(candidates) > 1:
        candidates = [candidates[i] for i in rng.permutation(len(candidates))]
    for group in candidates:
        attempts += 1
        if attempts > max_attempts:
            return None, attempts
        found, attempts = _search(
            slots,
            pools,
            available - {group},
            assigned + ((slot, group),),
            rng,
            attempts,
            max_attempts,
        )
        if found is not None:
            return found, attempts
        if attempts > max_attempts:
            return None, attempts
    return None, attempts


def match_groups_to_slots(
    groups: Iterable[str],
    slot_pools: Mapping[int, FrozenSet[str]],
    rng: Optional[np.random.Generator] = None,
    max_attempts: int = MAX_ATTEMPTS,
    fixed: Optional[Mapping[int, str]] = None,
) -> Dict[int, str]:
    """
    One-to-one slot -> group assignment, each group taken from its slot's
    pool. Candidates are shuffled per slot when rng is given, otherwise tried
    alphabetically. Slots in fixed (slot -> group) are taken as decided and
    left out of the search. Raises ThirdPlaceAssignmentError when no
    assignment exists or the attempt budget runs out.
    """
    available = frozenset(groups)
    if len(available) != len(slot_pools):
        raise ThirdPlaceAssignmentError(
            f"{len(available)} qualifying groups for {len(slot_pools)} third-place slots"
        )
    fixed = dict(fixed or {})
    for slot, group in fixed.items():
        if slot not in slot_pools or group not in slot_pools[slot]:
            raise ThirdPlaceAssignmentError(f"Group {group} cannot fill third-place slot {slot}")
        if group not in available:
            raise ThirdPlaceAssignmentError(f"Group {group} has no qualifying third-placed team")
    if len(set(fixed.values())) != len(fixed):
        raise ThirdPlaceAssignmentError(f"One group fixed to several slots: {fixed}")

    slots = tuple(sorted(s for s in slot_pools if s not in fixed))
    pools = {s: frozenset(p) for s, p in slot_pools.items()}
    remaining = available.difference(fixed.values())
    found, attempts = _search(slots, pools, remaining, (), rng, 0, max_attempts)
    if found is None:
        reason = "budget exhausted" if attempts > max_attempts else "no valid assignment"
        raise ThirdPlaceAssignmentError(
            f"Third-place assignment failed ({reason}) for groups {''.join(sorted(available))}"
        )
    return {**fixed, **dict(found)}


def assign_third_place(
    group_thirds: Iterable[ThirdPlaceRecord],
    slot_pools: Mapping[int, FrozenSet[str]],
    rng: Optional[np.random.Generator] = None,
    max_attempts: int = MAX_ATTEMPTS,
    fixed: Optional[Mapping[int, str]] = None,
    draw_lots: bool = False,
) -> Dict[int, ThirdPlaceRecord]:
    """
    Qualify the best len(slot_pools) third-placed teams and map each round-of-32
    slot (keyed by match number) to the team it receives. draw_lots settles
    residual ties in the third-place ranking with rng instead of group order.
    """
    qualifiers = select_qualifiers(
        group_thirds, n_qualifiers=len(slot_pools), rng=rng if draw_lots else None
    )
    by_group = {r.group: r for r in qualifiers}
    if len(by_group) != len(qualifiers):
        raise ValueError("Third-placed records must come from distinct groups")
    unqualified = sorted(set((fixed or {}).values()).difference(by_group))
    if unqualified:
        raise OverrideConflictError(
            f"Recorded knockout results need the third of group(s) {unqualified}, "
            "who did not qualify in this trial"
        )
    try:
        slot_groups = match_groups_to_slots(
            by_group, slot_pools, rng=rng, max_attempts=max_attempts, fixed=fixed
        )
    except ThirdPlaceAssignmentError:
        logger.error(
            "No third-place assignment for qualifying groups %s",
            "".join(sorted(by_group)),
        )
        raise
    return {slot: by_group[g] for slot, g in slot_groups.items()}


def unmatchable_combinations(
    slot_pools: Mapping[int, FrozenSet[str]],
    groups: Sequence[str],
    max_attempts: int = MAX_ATTEMPTS,
) -> List[str]:
    """
    Every combination of qualifying groups (as a sorted string, e.g.
    "ABCDEFGH") for which no slot assignment exists.
    """
    failures: List[str] = []
    for combo in combinations(sorted(groups), len(slot_pools)):
        try:
            match_groups_to_slots(combo, slot_pools, rng=None, max_attempts=max_attempts)
        except ThirdPlaceAssignmentError:
            failures.append("".join(combo))
    return failures
