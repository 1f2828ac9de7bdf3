"""
Room state engine.

Every transition takes the current Room, the acting user and the command
arguments, and returns a new Room. The input document is never mutated, so a
failed transition leaves nothing behind for the caller to persist. Failures
are raised as ``PokerError`` subclasses.
"""
from __future__ import annotations

import copy
import math
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ..errors import Forbidden, InvalidInput, IssueNotFound, ParticipantNotFound
from .models import FIBONACCI_VALUES, Identity, Issue, Participant, Role, Room, VotingResults, now_ms


ROOM_NAME_MAX = 100
ISSUE_TITLE_MAX = 200
ISSUE_DESCRIPTION_MAX = 2000


# ============ Validation ============

def parse_vote(raw: Any) -> int:
    # bool is an int subclass; True must not count as a 1.
    if isinstance(raw, bool):
        raise InvalidInput("Invalid vote value")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if not isinstance(raw, int) or raw not in FIBONACCI_VALUES:
        raise InvalidInput("Invalid vote value")
    return raw


def parse_role(raw: Any) -> Role:
    try:
        return Role(str(raw).strip().lower())
    except ValueError:
        raise InvalidInput("Invalid role") from None


def _clean_text(raw: Any, field_name: str, max_len: int, required: bool = True) -> str | None:
    if raw is None and not required:
        return None
    if not isinstance(raw, str):
        raise InvalidInput(f"Invalid {field_name}")
    text = raw.strip()
    if not text:
        if required:
            raise InvalidInput(f"{field_name.capitalize()} is required")
        return None
    if len(text) > max_len:
        raise InvalidInput(f"{field_name.capitalize()} is too long")
    return text


# ============ Helpers ============

def _working_copy(room: Room) -> Room:
    return copy.deepcopy(room)


def _require_admin(room: Room, actor_id: str, action: str) -> None:
    if room.admin_id != actor_id:
        raise Forbidden(f"Only admin can {action}")


def _require_participant(room: Room, user_id: str) -> Participant:
    participant = room.participants.get(user_id)
    if participant is None:
        raise ParticipantNotFound(user_id)
    return participant


def _require_issue(room: Room, issue_id: Any) -> Issue:
    issue = room.find_issue(issue_id) if isinstance(issue_id, str) else None
    if issue is None:
        raise IssueNotFound(issue_id)
    return issue


def _purge_vote(room: Room, user_id: str) -> None:
    """Drop a user's vote from the live round and the current issue's snapshot."""
    room.votes.pop(user_id, None)
    participant = room.participants.get(user_id)
    if participant is not None:
        participant.has_voted = False
    current = room.current_issue
    if current is not None and current.votes is not None:
        current.votes.pop(user_id, None)


def _open_fresh_round(room: Room) -> None:
    room.votes = {}
    room.is_revealed = False
    room.is_voting_open = True
    for p in room.participants.values():
        p.has_voted = False


def _sync_has_voted(room: Room) -> None:
    for p in room.participants.values():
        p.has_voted = p.user_id in room.votes


def _restore_snapshot(room: Room, issue: Issue) -> None:
    # Votes from users who are no longer players are not restored.
    room.votes = {
        uid: value
        for uid, value in (issue.votes or {}).items()
        if uid in room.participants and room.participants[uid].role == Role.PLAYER
    }
    room.is_revealed = issue.is_revealed
    room.is_voting_open = not room.is_revealed
    _sync_has_voted(room)


# ============ Room creation ============

def new_room(owner: Identity, name: Any) -> Room:
    room_name = _clean_text(name, "name", ROOM_NAME_MAX)
    admin = Participant(
        user_id=owner.user_id,
        name=owner.name,
        avatar_url=owner.avatar_url,
        role=Role.ADMIN,
        is_connected=False,
    )
    return Room(
        id=str(uuid.uuid4()),
        name=room_name,
        admin_id=owner.user_id,
        participants={admin.user_id: admin},
    )


# ============ Presence ============

def join(room: Room, identity: Identity, default_role: Role = Role.PLAYER) -> Room:
    room = _working_copy(room)
    participant = room.participants.get(identity.user_id)
    if participant is None:
        role = Role.ADMIN if identity.user_id == room.admin_id else default_role
        # A second admin can only be created through update_role.
        if role == Role.ADMIN and identity.user_id != room.admin_id:
            role = Role.PLAYER
        participant = Participant(
            user_id=identity.user_id,
            name=identity.name,
            avatar_url=identity.avatar_url,
            role=role,
        )
        room.participants[identity.user_id] = participant
    participant.is_connected = True
    participant.has_voted = identity.user_id in room.votes
    return room


def leave(room: Room, user_id: str) -> Room:
    room = _working_copy(room)
    participant = _require_participant(room, user_id)
    participant.is_connected = False
    _purge_vote(room, user_id)
    return room


def kick(room: Room, actor_id: str, target_id: str) -> Room:
    _require_admin(room, actor_id, "kick participants")
    if target_id == actor_id:
        raise Forbidden("Admin cannot kick themselves")
    return leave(room, target_id)


# ============ Voting ============

def submit_vote(room: Room, actor_id: str, value: Any) -> Room:
    value = parse_vote(value)
    participant = room.participants.get(actor_id)
    if participant is None:
        raise Forbidden("Not a participant in this room")
    if participant.role != Role.PLAYER:
        raise Forbidden("Only players can vote")
    if room.is_revealed:
        raise Forbidden("Voting has ended")

    room = _working_copy(room)
    room.votes[actor_id] = value
    room.participants[actor_id].has_voted = True

    current = room.current_issue
    if current is not None:
        if current.votes is None:
            current.votes = {}
        current.votes[actor_id] = value
    return room


def reveal(room: Room, actor_id: str) -> tuple[Room, VotingResults]:
    _require_admin(room, actor_id, "reveal votes")
    room = _working_copy(room)
    room.is_revealed = True
    room.is_voting_open = False

    current = room.current_issue
    if current is not None:
        current.votes = dict(room.votes)
        current.is_revealed = True
    return room, calculate_results(room)


def reset(room: Room, actor_id: str) -> Room:
    _require_admin(room, actor_id, "reset voting")
    room = _working_copy(room)
    _open_fresh_round(room)

    current = room.current_issue
    if current is not None:
        current.votes = None
        current.is_revealed = False
    return room


def calculate_results(room: Room) -> VotingResults:
    votes = []
    for participant in room.participants.values():
        if participant.role == Role.PLAYER and participant.user_id in room.votes:
            votes.append((participant, room.votes[participant.user_id]))

    values = [v for _, v in votes]
    if not values:
        return VotingResults(votes=[], average=0, consensus=False)

    mean = Decimal(sum(values)) / Decimal(len(values))
    average = float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    consensus = all(v == values[0] for v in values)
    return VotingResults(votes=votes, average=average, consensus=consensus)


def all_players_voted(room: Room) -> bool:
    players = [p for p in room.participants.values() if p.role == Role.PLAYER and p.is_connected]
    return bool(players) and all(p.has_voted for p in players)


# ============ Issues ============

def add_issue(room: Room, actor_id: str, title: Any, description: Any = None) -> tuple[Room, Issue]:
    _require_admin(room, actor_id, "add issues")
    clean_title = _clean_text(title, "title", ISSUE_TITLE_MAX)
    clean_description = _clean_text(description, "description", ISSUE_DESCRIPTION_MAX, required=False)

    room = _working_copy(room)
    issue = Issue(id=str(uuid.uuid4()), title=clean_title, description=clean_description)
    room.issues.append(issue)
    return room, issue


def remove_issue(room: Room, actor_id: str, issue_id: Any) -> Room:
    _require_admin(room, actor_id, "remove issues")
    _require_issue(room, issue_id)

    room = _working_copy(room)
    room.issues = [i for i in room.issues if i.id != issue_id]
    if room.current_issue_id == issue_id:
        room.current_issue_id = None
        _open_fresh_round(room)
    return room


def change_issue(room: Room, actor_id: str, issue_id: str | None) -> Room:
    """Switch the current issue, archiving the outgoing round first."""
    _require_admin(room, actor_id, "change issue")
    if issue_id is not None:
        _require_issue(room, issue_id)

    room = _working_copy(room)

    outgoing = room.current_issue
    if outgoing is not None:
        outgoing.votes = dict(room.votes)
        outgoing.is_revealed = room.is_revealed

    if issue_id is None:
        room.current_issue_id = None
        _open_fresh_round(room)
        return room

    incoming = room.find_issue(issue_id)
    room.current_issue_id = incoming.id
    if incoming.votes is not None:
        _restore_snapshot(room, incoming)
    else:
        _open_fresh_round(room)
    return room


def set_final_estimate(room: Room, actor_id: str, issue_id: Any, value: Any) -> tuple[Room, Issue]:
    _require_admin(room, actor_id, "set estimates")
    _require_issue(room, issue_id)
    estimate = None if value is None else parse_vote(value)

    room = _working_copy(room)
    issue = room.find_issue(issue_id)
    issue.final_estimate = estimate
    return room, issue


# ============ Roles ============

def update_role(room: Room, actor_id: str, target_id: str, role: Any) -> Room:
    _require_admin(room, actor_id, "change roles")
    new_role = parse_role(role)
    _require_participant(room, target_id)
    if target_id == actor_id and new_role != Role.ADMIN:
        raise Forbidden("Admin cannot change their own role")

    room = _working_copy(room)
    target = room.participants[target_id]

    if new_role == Role.ADMIN and target_id != actor_id:
        # Reassign admin; the previous admin stays in the room as a player.
        previous = room.participants.get(actor_id)
        if previous is not None:
            previous.role = Role.PLAYER
            previous.has_voted = False
        room.admin_id = target_id

    target.role = new_role
    if new_role != Role.PLAYER:
        _purge_vote(room, target_id)
    return room


# ============ Timer ============

def start_timer(room: Room, actor_id: str, duration_sec: Any, max_sec: int = 3600, now: int | None = None) -> Room:
    _require_admin(room, actor_id, "start timer")
    if isinstance(duration_sec, bool) or not isinstance(duration_sec, (int, float)):
        raise InvalidInput("Invalid timer duration")
    if not math.isfinite(duration_sec) or duration_sec < 1 or duration_sec > max_sec:
        raise InvalidInput(f"Timer duration must be between 1 and {max_sec} seconds")

    room = _working_copy(room)
    room.timer_end_time = (now if now is not None else now_ms()) + int(duration_sec * 1000)
    return room


def stop_timer(room: Room, actor_id: str) -> Room:
    _require_admin(room, actor_id, "stop timer")
    room = _working_copy(room)
    room.timer_end_time = None
    return room


def seconds_remaining(room: Room, now: int | None = None) -> int | None:
    if room.timer_end_time is None:
        return None
    remaining_ms = room.timer_end_time - (now if now is not None else now_ms())
    # Round up so a timer shows 1 until it actually expires.
    return max(0, -(-remaining_ms // 1000))


# ============ Read side ============

def room_public_state(room: Room, now: int | None = None) -> dict:
    """Room as broadcast to clients: unrevealed votes are withheld."""
    payload = room.to_dict()
    if not room.is_revealed:
        payload["votes"] = {}

    issues = []
    for issue in room.issues:
        issues.append(issue.to_dict(include_votes=issue.is_revealed))
    payload["issues"] = issues

    current = room.current_issue
    if current is not None:
        payload["currentIssue"] = current.to_dict(include_votes=current.is_revealed and room.is_revealed)

    payload["timerRemainingSec"] = seconds_remaining(room, now)
    payload["allVoted"] = all_players_voted(room)
    return payload
