"""Activity mutation engine: validated, retried, broadcast-after-commit state transitions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from redis.exceptions import RedisError

from collabmap.domain.activities import models, mutations, outbox, policy, schemas
from collabmap.domain.activities.retry import Backoff, linear_backoff, with_retries
from collabmap.domain.activities.store import ActivityRepository
from collabmap.obs import metrics as obs_metrics
from collabmap.realtime.broadcaster import NullEmitter, RoomBroadcaster
from collabmap.realtime.inflight import InFlightOperations, operation_key
from collabmap.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

# Returned by a transition that found nothing to change; no write, no broadcast.
_UNCHANGED = object()

Transition = Callable[[models.Activity, Any], Any]


class ParticipationService:
	def __init__(
		self,
		*,
		repository: ActivityRepository | None = None,
		registry: ConnectionRegistry | None = None,
		broadcaster: RoomBroadcaster | None = None,
		inflight: InFlightOperations | None = None,
		max_attempts: int = 5,
		backoff: Optional[Backoff] = None,
		comment_max_length: int = 500,
		sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
	) -> None:
		self._repo = repository or ActivityRepository()
		self.registry = registry or ConnectionRegistry()
		self.broadcaster = broadcaster or RoomBroadcaster(NullEmitter())
		self.inflight = inflight or InFlightOperations()
		self._max_attempts = max_attempts
		self._backoff = backoff or linear_backoff()
		self._comment_max_length = comment_max_length
		self._sleep = sleep

	@property
	def repository(self) -> ActivityRepository:
		return self._repo

	async def _mutate(
		self,
		action: str,
		activity_id: str,
		transition: Transition,
		*,
		user_id: Optional[str] = None,
	) -> Tuple[models.Activity, Any]:
		"""Load, transform and conditionally write one activity, retrying on version conflicts."""

		async def attempt() -> Tuple[models.Activity, Any]:
			activity = policy.ensure_found(await self._repo.get(activity_id), activity_id)
			result = transition(activity, models.utcnow())
			if result is _UNCHANGED:
				return activity, result
			saved = await self._repo.compare_and_swap(activity, activity.version)
			return saved, result

		def on_retry(attempt_no: int, exc: BaseException) -> None:
			obs_metrics.inc_write_retry(action)
			logger.info(
				"activity_write_retry",
				extra={"action": action, "activity_id": activity_id, "attempt": attempt_no},
			)

		try:
			saved, result = await with_retries(
				attempt,
				max_attempts=self._max_attempts,
				backoff=self._backoff,
				sleep=self._sleep,
				on_retry=on_retry,
			)
		except policy.ActivityPolicyError as exc:
			obs_metrics.inc_mutation(action, exc.code)
			if isinstance(exc, (policy.WriteConflict, policy.StoreUnavailable)):
				logger.warning(
					"activity_write_failed",
					extra={"action": action, "activity_id": activity_id, "user_id": user_id, "error": exc.code},
				)
			raise
		if result is _UNCHANGED:
			obs_metrics.inc_mutation(action, "noop")
			return saved, result
		obs_metrics.inc_mutation(action, "ok")
		await self._append_outbox(action, saved, user_id)
		return saved, result

	async def _append_outbox(self, action: str, activity: models.Activity, user_id: Optional[str]) -> None:
		try:
			await outbox.append_activity_event(
				f"activity.{action}",
				activity_id=activity.id,
				version=activity.version,
				user_id=user_id,
			)
		except (RedisError, OSError):
			obs_metrics.inc_outbox_failure()
			logger.warning("activity_outbox_failed", extra={"action": action, "activity_id": activity.id}, exc_info=True)

	async def _broadcast(self, activity_id: str, event: str, payload: Dict[str, Any]) -> None:
		await self.broadcaster.broadcast(activity_id, event, {"activityId": activity_id, **payload})

	# -- reads -----------------------------------------------------------------

	async def get_activity(self, activity_id: str) -> models.Activity:
		return policy.ensure_found(await self._repo.get(activity_id), activity_id)

	async def get_activity_by_slug(self, slug: str) -> models.Activity:
		return policy.ensure_found(await self._repo.get_by_slug(slug), slug)

	async def user_entries(self, activity_id: str, user_id: str) -> List[dict]:
		activity = await self.get_activity(activity_id)
		return activity.user_entries(user_id)

	# -- lifecycle -------------------------------------------------------------

	async def create_activity(self, payload: schemas.CreateActivityRequest) -> models.Activity:
		now = models.utcnow()
		activity = models.Activity(
			id=uuid.uuid4().hex[:8],
			slug=payload.url_name,
			title=payload.title.strip(),
			map_question=payload.map_question.strip(),
			map_question_2=payload.map_question_2.strip(),
			x_axis=models.Axis(**payload.x_axis.model_dump()),
			y_axis=models.Axis(**payload.y_axis.model_dump()),
			comment_question=payload.comment_question.strip(),
			object_name_question=(payload.object_name_question or "").strip() or models.DEFAULT_OBJECT_NAME_QUESTION,
			quadrants=payload.quadrants.to_model() if payload.quadrants else models.QuadrantLabels(),
			votes_per_user=payload.votes_per_user,
			max_entries=payload.max_entries,
			is_draft=payload.is_draft,
			created_at=now,
			updated_at=now,
		)
		seeded = 0
		if payload.starter_data is not None:
			seeded = mutations.seed_starter_data(
				activity,
				payload.starter_data,
				now=now,
				comment_max_length=self._comment_max_length,
			)
		try:
			saved = await self._repo.create(activity)
		except policy.ActivityPolicyError as exc:
			obs_metrics.inc_mutation("create", exc.code)
			raise
		obs_metrics.inc_mutation("create", "ok")
		logger.info("activity_created", extra={"activity_id": saved.id, "seeded": seeded})
		await self._append_outbox("create", saved, None)
		return saved

	async def delete_activity(self, activity_id: str) -> models.Activity:
		"""Remove the activity document and tell anyone still in its room."""
		activity = await self.get_activity(activity_id)
		try:
			deleted = await self._repo.delete(activity_id)
		except policy.ActivityPolicyError as exc:
			obs_metrics.inc_mutation("delete", exc.code)
			raise
		if not deleted:
			obs_metrics.inc_mutation("delete", "activity_not_found")
			raise policy.NotFound("activity_not_found", message=f"activity {activity_id} not found")
		obs_metrics.inc_mutation("delete", "ok")
		logger.info("activity_deleted", extra={"activity_id": activity_id})
		await self._append_outbox("delete", activity, None)
		await self._broadcast(activity_id, "activity_deleted", {})
		return activity

	async def complete(self, activity_id: str) -> models.Activity:
		return await self._set_status(activity_id, "completed", action="complete")

	async def reopen(self, activity_id: str) -> models.Activity:
		return await self._set_status(activity_id, "active", action="reopen")

	async def _set_status(self, activity_id: str, status: str, *, action: str) -> models.Activity:
		def transition(activity: models.Activity, now) -> Any:
			return True if mutations.set_status(activity, status, now=now) else _UNCHANGED

		saved, result = await self._mutate(action, activity_id, transition)
		if result is not _UNCHANGED:
			await self._broadcast(activity_id, "activity_status", {"status": saved.status})
		return saved

	async def update_quadrant_labels(self, activity_id: str, labels: models.QuadrantLabels) -> models.Activity:
		def transition(activity: models.Activity, now) -> Any:
			return mutations.relabel_quadrants(activity, labels, now=now)

		saved, updated = await self._mutate("relabel", activity_id, transition)
		await self._broadcast(
			activity_id,
			"quadrants_updated",
			{"quadrants": saved.quadrants.to_dict(), "comments": [comment.to_dict() for comment in updated]},
		)
		return saved

	# -- participation ---------------------------------------------------------

	async def join(self, activity_id: str, user_id: str, username: str) -> models.Participant:
		name = policy.ensure_username(username)

		def transition(activity: models.Activity, now) -> Any:
			return mutations.upsert_participant(activity, user_id, name, now=now)

		_, participant = await self._mutate("join", activity_id, transition, user_id=user_id)
		await self._broadcast(activity_id, "participant_joined", {"participant": participant.to_dict()})
		return participant

	async def leave(self, activity_id: str, user_id: str) -> bool:
		"""Mark the participant disconnected; duplicates in flight are dropped.

		Returns True when this call changed state and broadcast ``participant_left``.
		"""
		key = operation_key("leave", activity_id, user_id)
		with self.inflight.hold(key) as acquired:
			if not acquired:
				logger.info("leave_duplicate_dropped", extra={"activity_id": activity_id, "user_id": user_id})
				return False
			participant = await self._mark_disconnected(activity_id, user_id)
			if participant is None:
				return False
			await self._broadcast(activity_id, "participant_left", {"participantId": user_id})
			return True

	async def _mark_disconnected(self, activity_id: str, user_id: str) -> Optional[models.Participant]:
		def transition(activity: models.Activity, now) -> Any:
			participant = mutations.set_connected(activity, user_id, False, now=now)
			return _UNCHANGED if participant is None else participant

		try:
			_, result = await self._mutate("leave", activity_id, transition, user_id=user_id)
		except policy.NotFound:
			return None
		return None if result is _UNCHANGED else result

	async def disconnect(self, sid: str) -> List[str]:
		"""Run leave for every activity the connection joined, then forget it.

		A failure for one activity is logged and does not stop the others.
		"""
		connection = self.registry.unregister(sid)
		if connection is None or not connection.user_id:
			return []
		left: List[str] = []
		for activity_id in sorted(connection.activity_ids):
			try:
				if await self.leave(activity_id, connection.user_id):
					left.append(activity_id)
			except Exception:
				logger.exception(
					"disconnect_cleanup_failed",
					extra={"sid": sid, "activity_id": activity_id, "user_id": connection.user_id},
				)
		return left

	async def remove_participant(self, activity_id: str, user_id: str) -> models.Participant:
		def transition(activity: models.Activity, now) -> Any:
			return mutations.remove_participant(activity, user_id, now=now)

		_, participant = await self._mutate("remove_participant", activity_id, transition, user_id=user_id)
		await self._broadcast(activity_id, "participant_removed", {"participantId": user_id})
		return participant

	# -- entries ---------------------------------------------------------------

	async def submit_rating(
		self,
		activity_id: str,
		user_id: str,
		*,
		x: float,
		y: float,
		slot_number: int = 1,
		object_name: Optional[str] = None,
	) -> mutations.RatingResult:
		position = policy.ensure_position(x, y)
		slot = policy.ensure_slot_number(slot_number)
		name = policy.clean_object_name(object_name)

		def transition(activity: models.Activity, now) -> Any:
			policy.ensure_active(activity)
			policy.ensure_slot(activity, slot)
			return mutations.apply_rating(activity, user_id, slot, position, name, now=now)

		_, result = await self._mutate("rating", activity_id, transition, user_id=user_id)
		await self._broadcast(activity_id, "rating_added", {"rating": result.rating.to_dict()})
		if result.comment is not None:
			await self._broadcast(activity_id, "comment_updated", {"comment": result.comment.to_dict()})
		return result

	async def submit_comment(
		self,
		activity_id: str,
		user_id: str,
		*,
		text: str,
		slot_number: int = 1,
		object_name: Optional[str] = None,
	) -> models.Comment:
		body = policy.ensure_comment_text(text, max_length=self._comment_max_length)
		slot = policy.ensure_slot_number(slot_number)
		name = policy.clean_object_name(object_name)

		def transition(activity: models.Activity, now) -> Any:
			policy.ensure_active(activity)
			policy.ensure_slot(activity, slot)
			return mutations.apply_comment(activity, user_id, slot, body, name, now=now)

		_, comment = await self._mutate("comment", activity_id, transition, user_id=user_id)
		await self._broadcast(activity_id, "comment_added", {"comment": comment.to_dict()})
		return comment

	async def vote_comment(
		self,
		activity_id: str,
		comment_id: str,
		voter_id: str,
		voter_name: Optional[str] = None,
	) -> mutations.VoteResult:
		def transition(activity: models.Activity, now) -> Any:
			policy.ensure_active(activity)
			voter = policy.ensure_participant(activity, voter_id)
			return mutations.toggle_vote(activity, comment_id, voter_id, voter_name or voter.username, now=now)

		_, result = await self._mutate("vote", activity_id, transition, user_id=voter_id)
		await self._broadcast(
			activity_id,
			"comment_voted",
			{
				"comment": result.comment.to_dict(),
				"voterId": voter_id,
				"action": "added" if result.added else "removed",
			},
		)
		return result

	async def clear_slot(self, activity_id: str, user_id: str, slot_number: int) -> mutations.ClearResult:
		slot = policy.ensure_slot_number(slot_number)

		def transition(activity: models.Activity, now) -> Any:
			policy.ensure_active(activity)
			policy.ensure_slot(activity, slot)
			return mutations.clear_slot(activity, user_id, slot, now=now)

		_, result = await self._mutate("clear_slot", activity_id, transition, user_id=user_id)
		await self._broadcast(
			activity_id,
			"slot_cleared",
			{
				"userId": user_id,
				"slotNumber": slot,
				"ratingId": result.rating.id if result.rating else None,
				"commentId": result.comment.id if result.comment else None,
			},
		)
		return result


__all__ = ["ParticipationService"]
