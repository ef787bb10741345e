"""Error taxonomy and guard helpers for activity mutations."""

from __future__ import annotations

import math
from typing import Optional

from collabmap.domain.activities import models


USERNAME_MAX_LENGTH = 20
OBJECT_NAME_MAX_LENGTH = 100
SLUG_PATTERN = "^[a-z0-9-]+$"


class ActivityPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code

	def to_ack(self) -> dict:
		return {"ok": False, "error": self.code, "detail": self.detail}


class NotFound(ActivityPolicyError):
	def __init__(self, code: str = "not_found", *, message: str | None = None) -> None:
		super().__init__(code, status_code=404, message=message)


class InvalidInput(ActivityPolicyError):
	def __init__(self, code: str = "invalid_input", *, message: str | None = None) -> None:
		super().__init__(code, status_code=422, message=message)


class NotActive(ActivityPolicyError):
	def __init__(self, code: str = "activity_not_active", *, message: str | None = None) -> None:
		super().__init__(code, status_code=409, message=message)


class VoteLimitExceeded(ActivityPolicyError):
	def __init__(self, *, limit: int, used: int) -> None:
		self.limit = limit
		self.remaining = max(0, limit - used)
		super().__init__(
			"vote_limit_exceeded",
			status_code=409,
			message=f"vote limit of {limit} reached ({self.remaining} remaining)",
		)

	def to_ack(self) -> dict:
		ack = super().to_ack()
		ack["limit"] = self.limit
		ack["remaining"] = self.remaining
		return ack


class WriteConflict(ActivityPolicyError):
	def __init__(self, code: str = "write_conflict", *, message: str | None = None) -> None:
		super().__init__(code, status_code=409, message=message)


class StoreUnavailable(ActivityPolicyError):
	def __init__(self, code: str = "store_unavailable", *, message: str | None = None) -> None:
		super().__init__(code, status_code=503, message=message)


class VersionConflict(Exception):
	"""Raised by the store when a conditional update lost the race."""

	def __init__(self, activity_id: str, expected_version: int) -> None:
		super().__init__(f"activity {activity_id} is no longer at version {expected_version}")
		self.activity_id = activity_id
		self.expected_version = expected_version


def ensure_found(activity: Optional[models.Activity], activity_id: str) -> models.Activity:
	if activity is None:
		raise NotFound("activity_not_found", message=f"activity {activity_id} not found")
	return activity


def ensure_active(activity: models.Activity) -> None:
	if not activity.is_active:
		raise NotActive()


def ensure_slot(activity: models.Activity, slot_number: int) -> None:
	if slot_number < 1 or slot_number > activity.max_entries:
		raise InvalidInput("invalid_slot", message=f"slot must be between 1 and {activity.max_entries}")


def ensure_slot_number(slot_number: int) -> int:
	if isinstance(slot_number, bool) or not isinstance(slot_number, int) or slot_number < 1:
		raise InvalidInput("invalid_slot")
	return slot_number


def ensure_position(x: float, y: float) -> models.Position:
	for value in (x, y):
		if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
			raise InvalidInput("invalid_position")
		if value < 0 or value > 1:
			raise InvalidInput("invalid_position", message="position coordinates must be between 0 and 1")
	return models.Position(x=float(x), y=float(y))


def ensure_comment_text(text: Optional[str], *, max_length: int) -> str:
	trimmed = (text or "").strip()
	if not trimmed:
		raise InvalidInput("empty_comment", message="comment text cannot be empty")
	if len(trimmed) > max_length:
		raise InvalidInput("comment_too_long", message=f"comment must be at most {max_length} characters")
	return trimmed


def ensure_username(username: Optional[str]) -> str:
	trimmed = (username or "").strip()
	if not trimmed or len(trimmed) > USERNAME_MAX_LENGTH:
		raise InvalidInput("invalid_username")
	return trimmed


def clean_object_name(object_name: Optional[str]) -> Optional[str]:
	if object_name is None:
		return None
	trimmed = object_name.strip()
	if len(trimmed) > OBJECT_NAME_MAX_LENGTH:
		raise InvalidInput("object_name_too_long")
	return trimmed or None


def ensure_participant(activity: models.Activity, user_id: str) -> models.Participant:
	participant = activity.participant(user_id)
	if participant is None:
		raise NotFound("participant_not_found", message=f"user {user_id} is not a participant")
	return participant


def ensure_comment(activity: models.Activity, comment_id: str) -> models.Comment:
	comment = activity.comment_by_id(comment_id)
	if comment is None:
		raise NotFound("comment_not_found", message=f"comment {comment_id} not found")
	return comment


def ensure_vote_capacity(activity: models.Activity, voter_id: str) -> None:
	if activity.votes_per_user is None:
		return
	used = activity.votes_cast_by(voter_id)
	if used >= activity.votes_per_user:
		raise VoteLimitExceeded(limit=activity.votes_per_user, used=used)
