from unittest.mock import AsyncMock

import pytest

from collabmap.domain.activities.sockets import ActivitiesNamespace
from collabmap.realtime.capacity import REJECTED_MESSAGE, WARNING_MESSAGE, CapacityGovernor


@pytest.fixture
def governor() -> CapacityGovernor:
	return CapacityGovernor(2, soft_fraction=0.5)


@pytest.fixture
def namespace(service, governor) -> ActivitiesNamespace:
	ns = ActivitiesNamespace(service, governor, "/")
	ns.emit = AsyncMock()
	ns.enter_room = AsyncMock()
	ns.leave_room = AsyncMock()
	return ns


def _emitted(namespace: ActivitiesNamespace, event: str):
	return [call for call in namespace.emit.await_args_list if call.args[0] == event]


@pytest.mark.asyncio
async def test_connect_over_capacity_is_rejected(namespace, governor):
	assert await namespace.on_connect("sid-1", {}) is None
	assert await namespace.on_connect("sid-2", {}) is None

	result = await namespace.on_connect("sid-3", {})

	assert result is False
	assert governor.count == 2
	assert namespace.registry.connection("sid-3") is None
	rejected = _emitted(namespace, "connection_rejected")
	assert len(rejected) == 1
	assert rejected[0].args[1] == {"reason": "capacity_full", "message": REJECTED_MESSAGE}
	assert rejected[0].kwargs["to"] == "sid-3"


@pytest.mark.asyncio
async def test_connect_past_watermark_warns_that_client(namespace):
	await namespace.on_connect("sid-1", {})

	warnings = _emitted(namespace, "capacity_warning")
	assert len(warnings) == 1
	assert warnings[0].args[1] == {"message": WARNING_MESSAGE}
	assert warnings[0].kwargs["to"] == "sid-1"
	assert namespace.registry.connection("sid-1") is not None


@pytest.mark.asyncio
async def test_disconnect_frees_capacity(namespace, governor):
	await namespace.on_connect("sid-1", {})
	await namespace.on_connect("sid-2", {})

	await namespace.on_disconnect("sid-1")
	await namespace.on_disconnect("sid-1")

	assert governor.count == 1
	assert await namespace.on_connect("sid-3", {}) is None


@pytest.mark.asyncio
async def test_join_enters_room_and_marks_duplicates(namespace, activity_factory):
	await activity_factory()
	await namespace.on_connect("sid-1", {})
	payload = {"activityId": "act00001", "userId": "user-a", "username": "Alice"}

	first = await namespace.on_join_activity("sid-1", payload)
	second = await namespace.on_join_activity("sid-1", payload)

	assert first["ok"] is True
	assert first["participant"]["id"] == "user-a"
	assert second["duplicate"] is True
	assert second["participant"]["id"] == "user-a"
	namespace.enter_room.assert_awaited_once_with("sid-1", "activity:act00001")
	assert namespace.registry.room_sids("act00001") == {"sid-1"}


@pytest.mark.asyncio
async def test_failed_join_rolls_back_room_membership(namespace):
	await namespace.on_connect("sid-1", {})

	ack = await namespace.on_join_activity(
		"sid-1", {"activityId": "missing", "userId": "user-a", "username": "Alice"}
	)

	assert ack["ok"] is False
	assert ack["error"] == "activity_not_found"
	namespace.leave_room.assert_awaited_once_with("sid-1", "activity:missing")
	assert namespace.registry.activity_count == 0
	errors = _emitted(namespace, "action_error")
	assert errors[0].args[1]["event"] == "join_activity"


@pytest.mark.asyncio
async def test_malformed_payload_is_acked_as_invalid(namespace):
	ack = await namespace.on_submit_rating("sid-1", {"activityId": "act00001", "userId": "user-a"})

	assert ack["ok"] is False
	assert ack["error"] == "invalid_input"
	assert "position" in ack["detail"]


@pytest.mark.asyncio
async def test_rating_comment_vote_and_clear_flow(namespace, activity_factory, emitter):
	await activity_factory()
	await namespace.on_connect("sid-1", {})
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})
	await namespace.on_join_activity("sid-2", {"activityId": "act00001", "userId": "user-b", "username": "Bob"})

	rating = await namespace.on_submit_rating(
		"sid-1",
		{"activityId": "act00001", "userId": "user-a", "position": {"x": 0.7, "y": 0.2}, "objectName": "Bikes"},
	)
	comment = await namespace.on_submit_comment(
		"sid-1", {"activityId": "act00001", "userId": "user-a", "text": "cheap"}
	)
	vote = await namespace.on_vote_comment(
		"sid-2", {"activityId": "act00001", "userId": "user-b", "commentId": comment["comment"]["id"]}
	)
	cleared = await namespace.on_clear_slot(
		"sid-1", {"activityId": "act00001", "userId": "user-a", "slotNumber": 1}
	)

	assert rating["rating"]["objectName"] == "Bikes"
	assert comment["comment"]["quadrant"] == "q1"
	assert vote["added"] is True
	assert vote["comment"]["voteCount"] == 1
	assert cleared == {"ok": True, "slotNumber": 1}
	broadcast = [call[0] for call in emitter.calls]
	assert broadcast == [
		"participant_joined",
		"participant_joined",
		"rating_added",
		"comment_added",
		"comment_voted",
		"slot_cleared",
	]


@pytest.mark.asyncio
async def test_vote_limit_ack_reports_remaining(namespace, activity_factory):
	await activity_factory(votes_per_user=0)
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})
	comment = await namespace.on_submit_comment("sid-1", {"activityId": "act00001", "userId": "user-a", "text": "hi"})

	ack = await namespace.on_vote_comment(
		"sid-1", {"activityId": "act00001", "userId": "user-a", "commentId": comment["comment"]["id"]}
	)

	assert ack["ok"] is False
	assert ack["error"] == "vote_limit_exceeded"
	assert ack["limit"] == 0
	assert ack["remaining"] == 0


@pytest.mark.asyncio
async def test_leave_then_disconnect_broadcasts_once(namespace, activity_factory, emitter):
	await activity_factory()
	await namespace.on_connect("sid-1", {})
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})

	ack = await namespace.on_leave_activity("sid-1", {"activityId": "act00001", "userId": "user-a"})
	await namespace.on_disconnect("sid-1", "client disconnect")

	assert ack == {"ok": True, "left": True}
	assert len(emitter.events("participant_left")) == 1
	namespace.leave_room.assert_awaited_once_with("sid-1", "activity:act00001")


@pytest.mark.asyncio
async def test_rejoin_on_same_connection_applies_rename(namespace, service, activity_factory):
	await activity_factory()
	await namespace.on_connect("sid-1", {})
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})

	ack = await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alicia"})

	assert ack["duplicate"] is True
	activity = await service.get_activity("act00001")
	assert [participant.username for participant in activity.participants] == ["Alicia"]
	assert namespace.registry.room_members("act00001") == 1


@pytest.mark.asyncio
async def test_removed_participant_can_rejoin_on_same_connection(namespace, service, activity_factory):
	await activity_factory()
	await namespace.on_connect("sid-1", {})
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})
	await service.remove_participant("act00001", "user-a")

	ack = await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})
	rating = await namespace.on_submit_rating(
		"sid-1", {"activityId": "act00001", "userId": "user-a", "position": {"x": 0.4, "y": 0.6}}
	)

	assert ack["ok"] is True
	assert rating["ok"] is True
	namespace.enter_room.assert_awaited_once_with("sid-1", "activity:act00001")


@pytest.mark.asyncio
async def test_failed_rejoin_keeps_existing_room_membership(namespace, service, activity_factory):
	await activity_factory()
	await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})
	await service.delete_activity("act00001")

	ack = await namespace.on_join_activity("sid-1", {"activityId": "act00001", "userId": "user-a", "username": "Alice"})

	assert ack["error"] == "activity_not_found"
	namespace.leave_room.assert_not_awaited()
	assert namespace.registry.room_sids("act00001") == {"sid-1"}
