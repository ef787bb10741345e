"""Pydantic payloads for the activity socket events and REST routes."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from collabmap.domain.activities import models
from collabmap.domain.activities.policy import SLUG_PATTERN, USERNAME_MAX_LENGTH


class _Payload(BaseModel):
	model_config = ConfigDict(populate_by_name=True)


class PositionIn(_Payload):
	x: float = Field(ge=0.0, le=1.0)
	y: float = Field(ge=0.0, le=1.0)


class ActivityRef(_Payload):
	activity_id: str = Field(alias="activityId", min_length=1)
	user_id: str = Field(alias="userId", min_length=1)


class JoinActivity(ActivityRef):
	username: str = Field(min_length=1, max_length=USERNAME_MAX_LENGTH)

	@field_validator("username")
	@classmethod
	def _strip_username(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("username must not be blank")
		return value


class LeaveActivity(ActivityRef):
	pass


class SubmitRating(ActivityRef):
	slot_number: int = Field(default=1, alias="slotNumber", ge=1)
	position: PositionIn
	object_name: Optional[str] = Field(default=None, alias="objectName")


class SubmitComment(ActivityRef):
	slot_number: int = Field(default=1, alias="slotNumber", ge=1)
	text: str
	object_name: Optional[str] = Field(default=None, alias="objectName")


class VoteComment(ActivityRef):
	comment_id: str = Field(alias="commentId", min_length=1)


class ClearSlot(ActivityRef):
	slot_number: int = Field(alias="slotNumber", ge=1)


class JoinRequest(_Payload):
	user_id: str = Field(alias="userId", min_length=1)
	username: str = Field(min_length=1, max_length=USERNAME_MAX_LENGTH)


class RatingRequest(_Payload):
	user_id: str = Field(alias="userId", min_length=1)
	slot_number: int = Field(default=1, alias="slotNumber", ge=1)
	position: PositionIn
	object_name: Optional[str] = Field(default=None, alias="objectName")


class CommentRequest(_Payload):
	user_id: str = Field(alias="userId", min_length=1)
	slot_number: int = Field(default=1, alias="slotNumber", ge=1)
	text: str
	object_name: Optional[str] = Field(default=None, alias="objectName")


class VoteRequest(_Payload):
	user_id: str = Field(alias="userId", min_length=1)


class AxisIn(_Payload):
	label: str = Field(min_length=1, max_length=50)
	min: str = Field(min_length=1, max_length=30)
	max: str = Field(min_length=1, max_length=30)


class QuadrantLabelsIn(_Payload):
	q1: Optional[str] = Field(default=None, max_length=20)
	q2: Optional[str] = Field(default=None, max_length=20)
	q3: Optional[str] = Field(default=None, max_length=20)
	q4: Optional[str] = Field(default=None, max_length=20)

	def to_model(self) -> models.QuadrantLabels:
		return models.QuadrantLabels.from_dict(self.model_dump())


class CreateActivityRequest(_Payload):
	title: str = Field(min_length=1, max_length=100)
	url_name: str = Field(alias="urlName", min_length=1, max_length=50, pattern=SLUG_PATTERN)
	map_question: str = Field(alias="mapQuestion", min_length=1, max_length=200)
	map_question_2: str = Field(default="", alias="mapQuestion2", max_length=200)
	x_axis: AxisIn = Field(alias="xAxis")
	y_axis: AxisIn = Field(alias="yAxis")
	comment_question: str = Field(alias="commentQuestion", min_length=1, max_length=200)
	object_name_question: Optional[str] = Field(default=None, alias="objectNameQuestion", max_length=200)
	quadrants: Optional[QuadrantLabelsIn] = None
	votes_per_user: Optional[int] = Field(default=None, alias="votesPerUser", ge=0)
	max_entries: Literal[1, 2, 4] = Field(default=1, alias="maxEntries")
	is_draft: bool = Field(default=True, alias="isDraft")
	starter_data: Optional[Any] = Field(default=None, alias="starterData")


__all__ = [
	"ActivityRef",
	"AxisIn",
	"ClearSlot",
	"CommentRequest",
	"CreateActivityRequest",
	"JoinActivity",
	"JoinRequest",
	"LeaveActivity",
	"PositionIn",
	"QuadrantLabelsIn",
	"RatingRequest",
	"SubmitComment",
	"SubmitRating",
	"VoteComment",
	"VoteRequest",
]
