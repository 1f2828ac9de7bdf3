from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


FIBONACCI_VALUES = (0, 1, 2, 3, 5, 8, 13, 21, 34, 55)


def now_ms() -> int:
    return int(time.time() * 1000)


class Role(str, Enum):
    ADMIN = "admin"
    PLAYER = "player"
    SPECTATOR = "spectator"


@dataclass
class Identity:
    """A resolved user, as carried by the bearer credential."""

    user_id: str
    name: str
    avatar_url: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.user_id, "name": self.name, "avatarUrl": self.avatar_url}


@dataclass
class Participant:
    user_id: str
    name: str
    avatar_url: str | None = None
    role: Role = Role.PLAYER
    has_voted: bool = False
    is_connected: bool = False

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.name,
            "avatarUrl": self.avatar_url,
            "role": self.role.value,
            "hasVoted": self.has_voted,
            "isConnected": self.is_connected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Participant:
        return cls(
            user_id=data["userId"],
            name=data.get("name", ""),
            avatar_url=data.get("avatarUrl"),
            role=Role(data.get("role", Role.SPECTATOR.value)),
            has_voted=bool(data.get("hasVoted", False)),
            is_connected=bool(data.get("isConnected", False)),
        )


@dataclass
class Issue:
    id: str
    title: str
    description: str | None = None
    final_estimate: int | None = None
    # Saved round for this issue; None means nothing archived yet.
    votes: dict[str, int] | None = None
    is_revealed: bool = False

    def to_dict(self, include_votes: bool = True) -> dict:
        d: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.description is not None:
            d["description"] = self.description
        if self.final_estimate is not None:
            d["finalEstimate"] = self.final_estimate
        if self.votes is not None and include_votes:
            d["votes"] = dict(self.votes)
        d["isRevealed"] = self.is_revealed
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Issue:
        votes = data.get("votes")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description"),
            final_estimate=data.get("finalEstimate"),
            votes=dict(votes) if votes is not None else None,
            is_revealed=bool(data.get("isRevealed", False)),
        )


@dataclass
class Room:
    id: str
    name: str
    admin_id: str
    created_at: int = field(default_factory=now_ms)
    participants: dict[str, Participant] = field(default_factory=dict)
    issues: list[Issue] = field(default_factory=list)
    current_issue_id: str | None = None
    votes: dict[str, int] = field(default_factory=dict)
    is_voting_open: bool = True
    is_revealed: bool = False
    timer_end_time: int | None = None

    @property
    def current_issue(self) -> Issue | None:
        if self.current_issue_id is None:
            return None
        return self.find_issue(self.current_issue_id)

    def find_issue(self, issue_id: str) -> Issue | None:
        for issue in self.issues:
            if issue.id == issue_id:
                return issue
        return None

    def to_dict(self) -> dict:
        """Full document, as persisted. Contains unrevealed votes."""
        current = self.current_issue
        return {
            "id": self.id,
            "name": self.name,
            "adminId": self.admin_id,
            "currentIssue": current.to_dict() if current else None,
            "participants": [p.to_dict() for p in self.participants.values()],
            "votes": dict(self.votes),
            "issues": [i.to_dict() for i in self.issues],
            "isVotingOpen": self.is_voting_open,
            "isRevealed": self.is_revealed,
            "timerEndTime": self.timer_end_time,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Room:
        participants = {}
        for raw in data.get("participants", []):
            p = Participant.from_dict(raw)
            participants[p.user_id] = p
        current = data.get("currentIssue")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            admin_id=data["adminId"],
            created_at=int(data.get("createdAt") or now_ms()),
            participants=participants,
            issues=[Issue.from_dict(i) for i in data.get("issues", [])],
            current_issue_id=current.get("id") if current else None,
            votes={str(k): int(v) for k, v in (data.get("votes") or {}).items()},
            is_voting_open=bool(data.get("isVotingOpen", True)),
            is_revealed=bool(data.get("isRevealed", False)),
            timer_end_time=data.get("timerEndTime"),
        )


@dataclass
class VotingResults:
    votes: list[tuple[Participant, int]]
    average: float
    consensus: bool

    def to_dict(self) -> dict:
        return {
            "votes": [{"participant": p.to_dict(), "value": v} for p, v in self.votes],
            "average": self.average,
            "consensus": self.consensus,
        }


@dataclass
class RoomSummary:
    id: str
    name: str
    participant_count: int
    created_at: int

    @classmethod
    def of(cls, room: Room) -> RoomSummary:
        connected = sum(1 for p in room.participants.values() if p.is_connected)
        return cls(id=room.id, name=room.name, participant_count=connected, created_at=room.created_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "participantCount": self.participant_count,
            "createdAt": self.created_at,
        }
