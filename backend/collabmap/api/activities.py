"""FastAPI routes for activities; they share the mutation engine with the socket namespace."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from collabmap.domain.activities import policy, schemas
from collabmap.domain.activities.service import ParticipationService

router = APIRouter(prefix="/activities", tags=["activities"])


def get_participation(request: Request) -> ParticipationService:
	return request.app.state.participation


def _as_http_error(exc: policy.ActivityPolicyError) -> HTTPException:
	detail: object = exc.detail
	if isinstance(exc, policy.VoteLimitExceeded):
		detail = {"error": exc.code, "message": exc.detail, "limit": exc.limit, "remaining": exc.remaining}
	return HTTPException(status_code=exc.status_code, detail=detail)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_activity_endpoint(
	payload: schemas.CreateActivityRequest,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.create_activity(payload)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": activity.to_payload()}


@router.get("/by-slug/{slug}")
async def get_activity_by_slug_endpoint(
	slug: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.get_activity_by_slug(slug)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": activity.to_payload()}


@router.get("/{activity_id}")
async def get_activity_endpoint(
	activity_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.get_activity(activity_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": activity.to_payload()}


@router.delete("/{activity_id}")
async def delete_activity_endpoint(
	activity_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.delete_activity(activity_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": {"id": activity.id}}


@router.post("/{activity_id}/participants")
async def join_activity_endpoint(
	activity_id: str,
	payload: schemas.JoinRequest,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		participant = await service.join(activity_id, payload.user_id, payload.username)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": participant.to_dict()}


@router.delete("/{activity_id}/participants/{user_id}")
async def remove_participant_endpoint(
	activity_id: str,
	user_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		participant = await service.remove_participant(activity_id, user_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": participant.to_dict()}


@router.post("/{activity_id}/rating")
async def submit_rating_endpoint(
	activity_id: str,
	payload: schemas.RatingRequest,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		result = await service.submit_rating(
			activity_id,
			payload.user_id,
			x=payload.position.x,
			y=payload.position.y,
			slot_number=payload.slot_number,
			object_name=payload.object_name,
		)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": result.rating.to_dict()}


@router.post("/{activity_id}/comment")
async def submit_comment_endpoint(
	activity_id: str,
	payload: schemas.CommentRequest,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		comment = await service.submit_comment(
			activity_id,
			payload.user_id,
			text=payload.text,
			slot_number=payload.slot_number,
			object_name=payload.object_name,
		)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": comment.to_dict()}


@router.post("/{activity_id}/comment/{comment_id}/vote")
async def vote_comment_endpoint(
	activity_id: str,
	comment_id: str,
	payload: schemas.VoteRequest,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		result = await service.vote_comment(activity_id, comment_id, payload.user_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": result.comment.to_dict(), "action": "added" if result.added else "removed"}


@router.delete("/{activity_id}/slots/{slot_number}")
async def clear_slot_endpoint(
	activity_id: str,
	slot_number: int,
	user_id: str = Query(alias="userId", min_length=1),
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		result = await service.clear_slot(activity_id, user_id, slot_number)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {
		"success": True,
		"data": {
			"slotNumber": slot_number,
			"ratingId": result.rating.id if result.rating else None,
			"commentId": result.comment.id if result.comment else None,
		},
	}


@router.patch("/{activity_id}/quadrants")
async def update_quadrants_endpoint(
	activity_id: str,
	payload: schemas.QuadrantLabelsIn,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.update_quadrant_labels(activity_id, payload.to_model())
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": activity.quadrants.to_dict()}


@router.post("/{activity_id}/complete")
async def complete_activity_endpoint(
	activity_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.complete(activity_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": {"id": activity.id, "status": activity.status}}


@router.post("/{activity_id}/reopen")
async def reopen_activity_endpoint(
	activity_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		activity = await service.reopen(activity_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": {"id": activity.id, "status": activity.status}}


@router.get("/{activity_id}/users/{user_id}/entries")
async def user_entries_endpoint(
	activity_id: str,
	user_id: str,
	service: ParticipationService = Depends(get_participation),
) -> dict:
	try:
		entries: List[dict] = await service.user_entries(activity_id, user_id)
	except policy.ActivityPolicyError as exc:
		raise _as_http_error(exc) from exc
	return {"success": True, "data": entries}
