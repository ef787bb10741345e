"""Domain models for collaborative mapping activities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


ActivityStatus = str
QuadrantKey = str


ACTIVITY_STATUSES: tuple[ActivityStatus, ...] = (
	"active",
	"completed",
)

MAX_ENTRIES_CHOICES: tuple[int, ...] = (1, 2, 4)

QUADRANT_KEYS: tuple[QuadrantKey, ...] = ("q1", "q2", "q3", "q4")

DEFAULT_QUADRANT_LABELS: Dict[QuadrantKey, str] = {
	"q1": "Q1 (++)",
	"q2": "Q2 (-+)",
	"q3": "Q3 (--)",
	"q4": "Q4 (+-)",
}

DEFAULT_OBJECT_NAME_QUESTION = "Name something that represents your perspective"


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
	return value.isoformat()


def _parse_dt(value: Any) -> datetime:
	if isinstance(value, datetime):
		return value
	if not value:
		return utcnow()
	return datetime.fromisoformat(str(value))


@dataclass(slots=True)
class Axis:
	label: str
	min: str
	max: str

	def to_dict(self) -> dict[str, Any]:
		return {"label": self.label, "min": self.min, "max": self.max}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Axis":
		return cls(label=data.get("label", ""), min=data.get("min", ""), max=data.get("max", ""))


@dataclass(slots=True)
class QuadrantLabels:
	q1: str = DEFAULT_QUADRANT_LABELS["q1"]
	q2: str = DEFAULT_QUADRANT_LABELS["q2"]
	q3: str = DEFAULT_QUADRANT_LABELS["q3"]
	q4: str = DEFAULT_QUADRANT_LABELS["q4"]

	def label_for(self, key: QuadrantKey) -> str:
		return getattr(self, key) or DEFAULT_QUADRANT_LABELS[key]

	def to_dict(self) -> dict[str, str]:
		return {key: getattr(self, key) for key in QUADRANT_KEYS}

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QuadrantLabels":
		data = data or {}
		return cls(**{key: data.get(key) or DEFAULT_QUADRANT_LABELS[key] for key in QUADRANT_KEYS})


@dataclass(slots=True)
class Position:
	"""Normalised point on the map; origin is top-left."""

	x: float
	y: float

	def to_dict(self) -> dict[str, float]:
		return {"x": self.x, "y": self.y}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Position":
		return cls(x=float(data["x"]), y=float(data["y"]))


@dataclass(slots=True)
class Participant:
	id: str
	username: str
	is_connected: bool = False
	has_submitted: bool = False
	joined_at: datetime = field(default_factory=utcnow)

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"username": self.username,
			"isConnected": self.is_connected,
			"hasSubmitted": self.has_submitted,
			"joinedAt": _iso(self.joined_at),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Participant":
		return cls(
			id=data["id"],
			username=data["username"],
			is_connected=bool(data.get("isConnected", False)),
			has_submitted=bool(data.get("hasSubmitted", False)),
			joined_at=_parse_dt(data.get("joinedAt")),
		)


@dataclass(slots=True)
class Rating:
	id: str
	user_id: str
	username: str
	slot_number: int
	position: Position
	timestamp: datetime = field(default_factory=utcnow)
	object_name: Optional[str] = None

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"userId": self.user_id,
			"username": self.username,
			"slotNumber": self.slot_number,
			"position": self.position.to_dict(),
			"objectName": self.object_name,
			"timestamp": _iso(self.timestamp),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Rating":
		return cls(
			id=data["id"],
			user_id=data["userId"],
			username=data["username"],
			slot_number=int(data.get("slotNumber", 1)),
			position=Position.from_dict(data["position"]),
			timestamp=_parse_dt(data.get("timestamp")),
			object_name=data.get("objectName"),
		)


@dataclass(slots=True)
class Vote:
	id: str
	user_id: str
	username: str
	timestamp: datetime = field(default_factory=utcnow)

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"userId": self.user_id,
			"username": self.username,
			"timestamp": _iso(self.timestamp),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Vote":
		return cls(
			id=data["id"],
			user_id=data["userId"],
			username=data["username"],
			timestamp=_parse_dt(data.get("timestamp")),
		)


@dataclass(slots=True)
class Comment:
	id: str
	user_id: str
	username: str
	slot_number: int
	text: str
	timestamp: datetime = field(default_factory=utcnow)
	object_name: Optional[str] = None
	quadrant: Optional[QuadrantKey] = None
	quadrant_name: Optional[str] = None
	votes: List[Vote] = field(default_factory=list)
	vote_count: int = 0

	def vote_by(self, user_id: str) -> Optional[Vote]:
		for vote in self.votes:
			if vote.user_id == user_id:
				return vote
		return None

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"userId": self.user_id,
			"username": self.username,
			"slotNumber": self.slot_number,
			"text": self.text,
			"objectName": self.object_name,
			"quadrant": self.quadrant,
			"quadrantName": self.quadrant_name,
			"votes": [vote.to_dict() for vote in self.votes],
			"voteCount": self.vote_count,
			"timestamp": _iso(self.timestamp),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Comment":
		return cls(
			id=data["id"],
			user_id=data["userId"],
			username=data["username"],
			slot_number=int(data.get("slotNumber", 1)),
			text=data.get("text", ""),
			timestamp=_parse_dt(data.get("timestamp")),
			object_name=data.get("objectName"),
			quadrant=data.get("quadrant"),
			quadrant_name=data.get("quadrantName"),
			votes=[Vote.from_dict(item) for item in data.get("votes", [])],
			vote_count=int(data.get("voteCount", 0)),
		)


@dataclass(slots=True)
class Activity:
	"""Root aggregate; participants, ratings and comments are embedded."""

	id: str
	slug: str
	title: str
	map_question: str
	x_axis: Axis
	y_axis: Axis
	comment_question: str
	map_question_2: str = ""
	object_name_question: str = DEFAULT_OBJECT_NAME_QUESTION
	quadrants: QuadrantLabels = field(default_factory=QuadrantLabels)
	votes_per_user: Optional[int] = None
	max_entries: int = 1
	is_draft: bool = True
	status: ActivityStatus = "active"
	participants: List[Participant] = field(default_factory=list)
	ratings: List[Rating] = field(default_factory=list)
	comments: List[Comment] = field(default_factory=list)
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)
	version: int = 0

	def participant(self, user_id: str) -> Optional[Participant]:
		for participant in self.participants:
			if participant.id == user_id:
				return participant
		return None

	def rating_for(self, user_id: str, slot_number: int) -> Optional[Rating]:
		for rating in self.ratings:
			if rating.user_id == user_id and rating.slot_number == slot_number:
				return rating
		return None

	def comment_for(self, user_id: str, slot_number: int) -> Optional[Comment]:
		for comment in self.comments:
			if comment.user_id == user_id and comment.slot_number == slot_number:
				return comment
		return None

	def comment_by_id(self, comment_id: str) -> Optional[Comment]:
		for comment in self.comments:
			if comment.id == comment_id:
				return comment
		return None

	def votes_cast_by(self, user_id: str) -> int:
		return sum(1 for comment in self.comments if comment.vote_by(user_id) is not None)

	def has_entries(self, user_id: str) -> bool:
		return any(r.user_id == user_id for r in self.ratings) or any(c.user_id == user_id for c in self.comments)

	@property
	def is_active(self) -> bool:
		return self.status == "active"

	@property
	def active_participants(self) -> List[Participant]:
		return [participant for participant in self.participants if participant.is_connected]

	@property
	def completion_rate(self) -> int:
		if not self.participants:
			return 0
		submitted = sum(1 for participant in self.participants if participant.has_submitted)
		return round(submitted / len(self.participants) * 100)

	def user_entries(self, user_id: str) -> List[dict[str, Any]]:
		"""Per-slot view of one user's rating and comment, ordered by slot."""
		slots = sorted(
			{r.slot_number for r in self.ratings if r.user_id == user_id}
			| {c.slot_number for c in self.comments if c.user_id == user_id}
		)
		entries: List[dict[str, Any]] = []
		for slot in slots:
			rating = self.rating_for(user_id, slot)
			comment = self.comment_for(user_id, slot)
			object_name = (rating.object_name if rating else None) or (comment.object_name if comment else None)
			entries.append(
				{
					"slotNumber": slot,
					"objectName": object_name,
					"x": rating.position.x if rating else None,
					"y": rating.position.y if rating else None,
					"comment": comment.text if comment else None,
				}
			)
		return entries

	def to_dict(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"urlName": self.slug,
			"title": self.title,
			"mapQuestion": self.map_question,
			"mapQuestion2": self.map_question_2,
			"xAxis": self.x_axis.to_dict(),
			"yAxis": self.y_axis.to_dict(),
			"commentQuestion": self.comment_question,
			"objectNameQuestion": self.object_name_question,
			"quadrants": self.quadrants.to_dict(),
			"votesPerUser": self.votes_per_user,
			"maxEntries": self.max_entries,
			"isDraft": self.is_draft,
			"status": self.status,
			"participants": [participant.to_dict() for participant in self.participants],
			"ratings": [rating.to_dict() for rating in self.ratings],
			"comments": [comment.to_dict() for comment in self.comments],
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
			"version": self.version,
		}

	def to_payload(self) -> dict[str, Any]:
		payload = self.to_dict()
		payload["activeParticipants"] = len(self.active_participants)
		payload["completionRate"] = self.completion_rate
		return payload

	@classmethod
	def from_dict(cls, data: Dict[str, Any], *, version: Optional[int] = None) -> "Activity":
		votes_per_user = data.get("votesPerUser")
		return cls(
			id=data["id"],
			slug=data["urlName"],
			title=data["title"],
			map_question=data["mapQuestion"],
			map_question_2=data.get("mapQuestion2", ""),
			x_axis=Axis.from_dict(data.get("xAxis", {})),
			y_axis=Axis.from_dict(data.get("yAxis", {})),
			comment_question=data["commentQuestion"],
			object_name_question=data.get("objectNameQuestion") or DEFAULT_OBJECT_NAME_QUESTION,
			quadrants=QuadrantLabels.from_dict(data.get("quadrants")),
			votes_per_user=int(votes_per_user) if votes_per_user is not None else None,
			max_entries=int(data.get("maxEntries", 1)),
			is_draft=bool(data.get("isDraft", True)),
			status=data.get("status", "active"),
			participants=[Participant.from_dict(item) for item in data.get("participants", [])],
			ratings=[Rating.from_dict(item) for item in data.get("ratings", [])],
			comments=[Comment.from_dict(item) for item in data.get("comments", [])],
			created_at=_parse_dt(data.get("createdAt")),
			updated_at=_parse_dt(data.get("updatedAt")),
			version=int(version if version is not None else data.get("version", 0)),
		)
