"""
Shift chain resolution and pure audio ripples.

Nothing in here touches the database or the asset store: every function takes
an immutable tuple of lines and returns a new one.
"""

from typing import List, Optional, Sequence, Tuple

from .models import CharacterRef, ChainMember, FilterMode, LineState


def resolve_shift_chain(
    lines: Sequence[LineState],
    start: int,
    filter_mode: FilterMode,
    anchor: Optional[CharacterRef],
) -> List[ChainMember]:
    """
    Compute the lines eligible for a ripple.

    Args:
        lines: Chapter lines in order
        start: First position to consider (inclusive)
        filter_mode: Scope of the chain
        anchor: Role of the line the operation was started on

    Returns:
        Chain members in chapter order
    """
    anchor_cv = (anchor.cv_name or "").strip() if anchor else ""
    chain = []
    for index in range(max(start, 0), len(lines)):
        line = lines[index]
        role = line.character
        if role is not None and role.is_silent:
            continue

        if filter_mode == FilterMode.CHAPTER:
            eligible = True
        elif filter_mode == FilterMode.CHARACTER:
            eligible = anchor is not None and role is not None and role.id == anchor.id
        elif filter_mode == FilterMode.CV:
            eligible = bool(anchor_cv) and role is not None and (role.cv_name or "").strip() == anchor_cv
        else:
            eligible = False

        if eligible:
            chain.append(ChainMember(line=line, index=index))
    return chain


def ripple_down(
    lines: Tuple[LineState, ...],
    chain: Sequence[ChainMember],
    incoming: Optional[str] = None,
) -> Tuple[Tuple[LineState, ...], Optional[str]]:
    """
    Push assets one step later along a chain.

    The first member receives ``incoming``, every other member receives its
    predecessor's asset.

    Returns:
        Tuple of (new_lines, asset_that_fell_off_the_end)
    """
    new_lines = list(lines)
    carried = incoming
    for member in chain:
        previous = lines[member.index].audio_asset_id
        new_lines[member.index] = lines[member.index].with_audio(carried)
        carried = previous
    return tuple(new_lines), carried


def ripple_up(
    lines: Tuple[LineState, ...],
    chain: Sequence[ChainMember],
) -> Tuple[Tuple[LineState, ...], Optional[str]]:
    """
    Pull assets one step earlier along a chain.

    Every member but the last receives its successor's asset; the last member
    is cleared.

    Returns:
        Tuple of (new_lines, asset_discarded_from_the_head)
    """
    if not chain:
        return tuple(lines), None

    new_lines = list(lines)
    for member, successor in zip(chain, chain[1:]):
        new_lines[member.index] = lines[member.index].with_audio(
            lines[successor.index].audio_asset_id
        )
    last = chain[-1]
    new_lines[last.index] = lines[last.index].with_audio(None)
    return tuple(new_lines), lines[chain[0].index].audio_asset_id


def find_next_same_role(lines: Sequence[LineState], index: int) -> int:
    """
    Position of the next line after ``index`` sharing its role id.

    Silent roles and filter modes are ignored here. Returns -1 if none.
    """
    role_id = lines[index].character_id
    for candidate in range(index + 1, len(lines)):
        if lines[candidate].character_id == role_id:
            return candidate
    return -1
