"""State transitions on the embedded collections of an activity.

Each function mutates the ``Activity`` instance it is given and nothing else:
no I/O, no clock reads beyond the ``now`` argument. Ratings and comments are
keyed by ``(user_id, slot_number)``; a write for an existing key replaces the
entry, otherwise it is inserted. The service layer loads a fresh copy per
attempt and persists it with a conditional update, so a failed attempt simply
throws its copy away.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional

import ulid

from collabmap.domain.activities import models, policy


STARTER_USERNAME = "Example Data"


def new_id() -> str:
	return str(ulid.new())


def quadrant_for(position: models.Position) -> models.QuadrantKey:
	"""Screen-space rule: right half is ``x >= 0.5``, top half is ``y < 0.5``."""
	right = position.x >= 0.5
	top = position.y < 0.5
	if right and top:
		return "q1"
	if top:
		return "q2"
	if not right:
		return "q3"
	return "q4"


@dataclass(slots=True)
class RatingResult:
	rating: models.Rating
	comment: Optional[models.Comment]
	stripped_votes: int


@dataclass(slots=True)
class VoteResult:
	comment: models.Comment
	added: bool


@dataclass(slots=True)
class ClearResult:
	rating: Optional[models.Rating]
	comment: Optional[models.Comment]


def _touch(activity: models.Activity, now: datetime) -> None:
	activity.updated_at = now


def _replace_keyed(items: List[Any], entry: Any) -> None:
	for index, existing in enumerate(items):
		if existing.user_id == entry.user_id and existing.slot_number == entry.slot_number:
			items[index] = entry
			return
	items.append(entry)


def _refresh_quadrant(activity: models.Activity, comment: models.Comment, position: models.Position) -> None:
	comment.quadrant = quadrant_for(position)
	comment.quadrant_name = activity.quadrants.label_for(comment.quadrant)


def upsert_participant(
	activity: models.Activity,
	user_id: str,
	username: str,
	*,
	now: datetime,
) -> models.Participant:
	participant = activity.participant(user_id)
	if participant is None:
		participant = models.Participant(id=user_id, username=username, is_connected=True, joined_at=now)
		activity.participants.append(participant)
	else:
		participant.username = username
		participant.is_connected = True
	_touch(activity, now)
	return participant


def set_connected(
	activity: models.Activity,
	user_id: str,
	connected: bool,
	*,
	now: datetime,
) -> Optional[models.Participant]:
	"""Flip the connectivity flag; returns ``None`` when nothing changed."""
	participant = activity.participant(user_id)
	if participant is None or participant.is_connected == connected:
		return None
	participant.is_connected = connected
	_touch(activity, now)
	return participant


def apply_rating(
	activity: models.Activity,
	user_id: str,
	slot_number: int,
	position: models.Position,
	object_name: Optional[str],
	*,
	now: datetime,
) -> RatingResult:
	participant = policy.ensure_participant(activity, user_id)
	previous = activity.rating_for(user_id, slot_number)
	if object_name is None and previous is not None:
		object_name = previous.object_name

	sibling = activity.comment_for(user_id, slot_number)
	stripped = 0
	if sibling is not None:
		kept = [vote for vote in sibling.votes if vote.user_id == user_id]
		stripped = len(sibling.votes) - len(kept)
		sibling.votes = kept
		sibling.vote_count = len(kept)
		if object_name is not None:
			sibling.object_name = object_name
		_refresh_quadrant(activity, sibling, position)

	rating = models.Rating(
		id=new_id(),
		user_id=user_id,
		username=participant.username,
		slot_number=slot_number,
		position=position,
		timestamp=now,
		object_name=object_name,
	)
	_replace_keyed(activity.ratings, rating)
	participant.has_submitted = True
	_touch(activity, now)
	return RatingResult(rating=rating, comment=sibling, stripped_votes=stripped)


def apply_comment(
	activity: models.Activity,
	user_id: str,
	slot_number: int,
	text: str,
	object_name: Optional[str],
	*,
	now: datetime,
) -> models.Comment:
	participant = policy.ensure_participant(activity, user_id)
	rating = activity.rating_for(user_id, slot_number)
	if object_name is None and rating is not None:
		object_name = rating.object_name

	comment = models.Comment(
		id=new_id(),
		user_id=user_id,
		username=participant.username,
		slot_number=slot_number,
		text=text,
		timestamp=now,
		object_name=object_name,
	)
	if rating is not None:
		_refresh_quadrant(activity, comment, rating.position)
	_replace_keyed(activity.comments, comment)
	participant.has_submitted = True
	_touch(activity, now)
	return comment


def toggle_vote(
	activity: models.Activity,
	comment_id: str,
	voter_id: str,
	voter_name: str,
	*,
	now: datetime,
) -> VoteResult:
	comment = policy.ensure_comment(activity, comment_id)
	existing = comment.vote_by(voter_id)
	if existing is not None:
		comment.votes = [vote for vote in comment.votes if vote.user_id != voter_id]
		comment.vote_count = max(0, comment.vote_count - 1)
		_touch(activity, now)
		return VoteResult(comment=comment, added=False)

	policy.ensure_vote_capacity(activity, voter_id)
	comment.votes.append(models.Vote(id=new_id(), user_id=voter_id, username=voter_name, timestamp=now))
	comment.vote_count = len(comment.votes)
	_touch(activity, now)
	return VoteResult(comment=comment, added=True)


def clear_slot(
	activity: models.Activity,
	user_id: str,
	slot_number: int,
	*,
	now: datetime,
) -> ClearResult:
	rating = activity.rating_for(user_id, slot_number)
	comment = activity.comment_for(user_id, slot_number)
	if rating is None and comment is None:
		raise policy.NotFound("entry_not_found", message=f"no entry in slot {slot_number}")
	if rating is not None:
		activity.ratings.remove(rating)
	if comment is not None:
		activity.comments.remove(comment)
	participant = activity.participant(user_id)
	if participant is not None:
		participant.has_submitted = activity.has_entries(user_id)
	_touch(activity, now)
	return ClearResult(rating=rating, comment=comment)


def remove_participant(activity: models.Activity, user_id: str, *, now: datetime) -> models.Participant:
	# Ratings and comments stay attributed to the removed user.
	participant = policy.ensure_participant(activity, user_id)
	activity.participants.remove(participant)
	_touch(activity, now)
	return participant


def set_status(activity: models.Activity, status: models.ActivityStatus, *, now: datetime) -> bool:
	if status not in models.ACTIVITY_STATUSES:
		raise policy.InvalidInput("invalid_status")
	if activity.status == status:
		return False
	activity.status = status
	_touch(activity, now)
	return True


def relabel_quadrants(
	activity: models.Activity,
	labels: models.QuadrantLabels,
	*,
	now: datetime,
) -> List[models.Comment]:
	activity.quadrants = labels
	updated: List[models.Comment] = []
	for comment in activity.comments:
		if comment.quadrant is None:
			continue
		comment.quadrant_name = labels.label_for(comment.quadrant)
		updated.append(comment)
	_touch(activity, now)
	return updated


def _starter_items(raw: Any) -> Iterable[Any]:
	if isinstance(raw, str):
		if not raw.strip():
			return []
		try:
			raw = json.loads(raw)
		except ValueError as exc:
			raise policy.InvalidInput("invalid_starter_data", message="starter data is not valid JSON") from exc
	if not isinstance(raw, list):
		raise policy.InvalidInput("invalid_starter_data", message="starter data must be a list")
	return raw


def _valid_coordinate(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 1


def seed_starter_data(
	activity: models.Activity,
	raw: Any,
	*,
	now: datetime,
	comment_max_length: int = 500,
) -> int:
	"""Add example participants with one rating and comment each; returns how many were seeded."""
	seeded = 0
	for index, item in enumerate(_starter_items(raw)):
		if not isinstance(item, dict):
			continue
		x, y = item.get("x"), item.get("y")
		object_name = str(item.get("objectName") or "").strip()
		text = str(item.get("comment") or "").strip()
		if not (_valid_coordinate(x) and _valid_coordinate(y) and object_name and text):
			continue
		if len(text) > comment_max_length:
			continue
		user_id = f"starter_{activity.id}_{index}"
		participant = upsert_participant(activity, user_id, STARTER_USERNAME, now=now)
		participant.is_connected = False
		position = models.Position(x=float(x), y=float(y))
		apply_rating(activity, user_id, 1, position, object_name, now=now)
		apply_comment(activity, user_id, 1, text, object_name, now=now)
		seeded += 1
	return seeded
