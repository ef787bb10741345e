from datetime import datetime, timezone

import pytest

from collabmap.domain.activities import models, mutations, policy

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _activity(**overrides) -> models.Activity:
	fields = dict(
		id="act00001",
		slug="map-one",
		title="Where do you stand?",
		map_question="Place yourself",
		x_axis=models.Axis(label="Impact", min="Low", max="High"),
		y_axis=models.Axis(label="Effort", min="Low", max="High"),
		comment_question="Why?",
	)
	fields.update(overrides)
	return models.Activity(**fields)


def _with_users(*user_ids: str, **overrides) -> models.Activity:
	activity = _activity(**overrides)
	for user_id in user_ids:
		mutations.upsert_participant(activity, user_id, user_id.title(), now=NOW)
	return activity


@pytest.mark.parametrize(
	"x, y, expected",
	[
		(0.9, 0.1, "q1"),
		(0.2, 0.3, "q2"),
		(0.2, 0.9, "q3"),
		(0.9, 0.9, "q4"),
		(0.5, 0.5, "q4"),
		(0.49, 0.49, "q2"),
	],
)
def test_quadrant_for_uses_screen_space(x, y, expected):
	assert mutations.quadrant_for(models.Position(x=x, y=y)) == expected


def test_upsert_participant_updates_in_place():
	activity = _activity()
	first = mutations.upsert_participant(activity, "user-a", "Alice", now=NOW)
	first.has_submitted = True
	mutations.set_connected(activity, "user-a", False, now=NOW)

	again = mutations.upsert_participant(activity, "user-a", "Alicia", now=NOW)

	assert len(activity.participants) == 1
	assert again.username == "Alicia"
	assert again.is_connected is True
	assert again.has_submitted is True
	assert again.joined_at == NOW


def test_set_connected_reports_no_change():
	activity = _with_users("user-a")

	assert mutations.set_connected(activity, "user-a", True, now=NOW) is None
	assert mutations.set_connected(activity, "ghost", False, now=NOW) is None
	assert mutations.set_connected(activity, "user-a", False, now=NOW) is not None


def test_rating_replaces_prior_rating_for_same_slot():
	activity = _with_users("user-a", max_entries=2)
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.1, 0.1), "Bikes", now=NOW)
	mutations.apply_rating(activity, "user-a", 2, models.Position(0.7, 0.7), "Trains", now=NOW)

	mutations.apply_rating(activity, "user-a", 1, models.Position(0.8, 0.2), None, now=NOW)

	assert len(activity.ratings) == 2
	slot_one = activity.rating_for("user-a", 1)
	assert slot_one.position == models.Position(0.8, 0.2)
	assert slot_one.object_name == "Bikes"
	assert activity.rating_for("user-a", 2).object_name == "Trains"
	assert activity.participant("user-a").has_submitted is True


def test_rating_requires_participant():
	activity = _activity()

	with pytest.raises(policy.NotFound):
		mutations.apply_rating(activity, "ghost", 1, models.Position(0.1, 0.1), None, now=NOW)


def test_rerating_strips_peer_votes_but_keeps_self_vote():
	activity = _with_users("user-a", "user-b", "user-c")
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.2, 0.3), None, now=NOW)
	comment = mutations.apply_comment(activity, "user-a", 1, "hello", None, now=NOW)
	mutations.toggle_vote(activity, comment.id, "user-b", "Bob", now=NOW)
	mutations.toggle_vote(activity, comment.id, "user-c", "Cat", now=NOW)
	mutations.toggle_vote(activity, comment.id, "user-a", "Alice", now=NOW)
	assert comment.vote_count == 3

	result = mutations.apply_rating(activity, "user-a", 1, models.Position(0.9, 0.9), "Cars", now=NOW)

	assert result.stripped_votes == 2
	assert result.comment is comment
	assert [vote.user_id for vote in comment.votes] == ["user-a"]
	assert comment.vote_count == len(comment.votes) == 1
	assert comment.quadrant == "q4"
	assert comment.quadrant_name == "Q4 (+-)"
	assert comment.object_name == "Cars"


def test_rerating_other_slot_leaves_votes_alone():
	activity = _with_users("user-a", "user-b", max_entries=2)
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.2, 0.3), None, now=NOW)
	comment = mutations.apply_comment(activity, "user-a", 1, "hello", None, now=NOW)
	mutations.toggle_vote(activity, comment.id, "user-b", "Bob", now=NOW)

	result = mutations.apply_rating(activity, "user-a", 2, models.Position(0.9, 0.9), None, now=NOW)

	assert result.comment is None
	assert comment.vote_count == 1


def test_comment_takes_quadrant_and_object_name_from_rating():
	activity = _with_users("user-a")
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.8, 0.1), "Bikes", now=NOW)

	comment = mutations.apply_comment(activity, "user-a", 1, "fast and cheap", None, now=NOW)

	assert comment.object_name == "Bikes"
	assert comment.quadrant == "q1"
	assert comment.quadrant_name == "Q1 (++)"


def test_resubmitted_comment_discards_votes_and_gets_new_id():
	activity = _with_users("user-a", "user-b")
	first = mutations.apply_comment(activity, "user-a", 1, "first", None, now=NOW)
	mutations.toggle_vote(activity, first.id, "user-b", "Bob", now=NOW)

	second = mutations.apply_comment(activity, "user-a", 1, "second", "Override", now=NOW)

	assert len(activity.comments) == 1
	assert second.id != first.id
	assert second.votes == []
	assert second.vote_count == 0
	assert second.object_name == "Override"
	assert second.quadrant is None


def test_toggle_vote_twice_restores_state():
	activity = _with_users("user-a", "user-b")
	comment = mutations.apply_comment(activity, "user-a", 1, "hello", None, now=NOW)

	added = mutations.toggle_vote(activity, comment.id, "user-b", "Bob", now=NOW)
	removed = mutations.toggle_vote(activity, comment.id, "user-b", "Bob", now=NOW)

	assert added.added is True
	assert removed.added is False
	assert comment.votes == []
	assert comment.vote_count == 0


def test_vote_cap_blocks_new_votes_but_allows_unvote():
	activity = _with_users("user-a", "user-b", "user-c", votes_per_user=1)
	first = mutations.apply_comment(activity, "user-a", 1, "one", None, now=NOW)
	second = mutations.apply_comment(activity, "user-b", 1, "two", None, now=NOW)
	mutations.toggle_vote(activity, first.id, "user-c", "Cat", now=NOW)

	with pytest.raises(policy.VoteLimitExceeded) as excinfo:
		mutations.toggle_vote(activity, second.id, "user-c", "Cat", now=NOW)

	assert excinfo.value.limit == 1
	assert excinfo.value.remaining == 0
	assert second.votes == []
	assert mutations.toggle_vote(activity, first.id, "user-c", "Cat", now=NOW).added is False
	assert mutations.toggle_vote(activity, second.id, "user-c", "Cat", now=NOW).added is True


def test_self_vote_counts_toward_cap():
	activity = _with_users("user-a", "user-b", votes_per_user=1)
	own = mutations.apply_comment(activity, "user-a", 1, "mine", None, now=NOW)
	other = mutations.apply_comment(activity, "user-b", 1, "theirs", None, now=NOW)
	mutations.toggle_vote(activity, own.id, "user-a", "Alice", now=NOW)

	with pytest.raises(policy.VoteLimitExceeded):
		mutations.toggle_vote(activity, other.id, "user-a", "Alice", now=NOW)


def test_vote_on_unknown_comment_is_not_found():
	activity = _with_users("user-b")

	with pytest.raises(policy.NotFound):
		mutations.toggle_vote(activity, "missing", "user-b", "Bob", now=NOW)


def test_clear_slot_only_touches_that_slot():
	activity = _with_users("user-a", max_entries=2)
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.1, 0.1), None, now=NOW)
	mutations.apply_comment(activity, "user-a", 1, "one", None, now=NOW)
	mutations.apply_rating(activity, "user-a", 2, models.Position(0.9, 0.9), None, now=NOW)
	mutations.apply_comment(activity, "user-a", 2, "two", None, now=NOW)

	result = mutations.clear_slot(activity, "user-a", 1, now=NOW)

	assert result.rating.slot_number == 1
	assert result.comment.text == "one"
	assert activity.rating_for("user-a", 1) is None
	assert activity.comment_for("user-a", 1) is None
	assert activity.rating_for("user-a", 2) is not None
	assert activity.comment_for("user-a", 2).text == "two"
	assert activity.participant("user-a").has_submitted is True


def test_clearing_last_entry_resets_submission_flag():
	activity = _with_users("user-a")
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.1, 0.1), None, now=NOW)

	mutations.clear_slot(activity, "user-a", 1, now=NOW)

	assert activity.participant("user-a").has_submitted is False
	with pytest.raises(policy.NotFound):
		mutations.clear_slot(activity, "user-a", 1, now=NOW)


def test_remove_participant_keeps_contributions():
	activity = _with_users("user-a")
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.1, 0.1), None, now=NOW)
	mutations.apply_comment(activity, "user-a", 1, "still here", None, now=NOW)

	mutations.remove_participant(activity, "user-a", now=NOW)

	assert activity.participant("user-a") is None
	assert len(activity.ratings) == 1
	assert len(activity.comments) == 1


def test_set_status_reports_change():
	activity = _activity()

	assert mutations.set_status(activity, "completed", now=NOW) is True
	assert mutations.set_status(activity, "completed", now=NOW) is False
	with pytest.raises(policy.InvalidInput):
		mutations.set_status(activity, "archived", now=NOW)


def test_relabel_quadrants_updates_denormalised_names():
	activity = _with_users("user-a", "user-b")
	mutations.apply_rating(activity, "user-a", 1, models.Position(0.9, 0.1), None, now=NOW)
	rated = mutations.apply_comment(activity, "user-a", 1, "rated", None, now=NOW)
	unrated = mutations.apply_comment(activity, "user-b", 1, "no rating", None, now=NOW)

	updated = mutations.relabel_quadrants(
		activity,
		models.QuadrantLabels(q1="Quick wins", q2="Q2", q3="Q3", q4="Q4"),
		now=NOW,
	)

	assert updated == [rated]
	assert rated.quadrant_name == "Quick wins"
	assert unrated.quadrant_name is None


def test_seed_starter_data_skips_invalid_items():
	activity = _activity()
	raw = """[
		{"x": 0.2, "y": 0.8, "objectName": "Bikes", "comment": "cheap"},
		{"x": 1.4, "y": 0.5, "objectName": "Out of range", "comment": "skip"},
		{"x": 0.7, "y": 0.1, "objectName": "", "comment": "no name"},
		"not an object",
		{"x": 0.6, "y": 0.3, "objectName": "Trains", "comment": "fast"}
	]"""

	seeded = mutations.seed_starter_data(activity, raw, now=NOW)

	assert seeded == 2
	ids = [participant.id for participant in activity.participants]
	assert ids == ["starter_act00001_0", "starter_act00001_4"]
	assert all(participant.username == mutations.STARTER_USERNAME for participant in activity.participants)
	assert all(participant.is_connected is False for participant in activity.participants)
	comment = activity.comment_for("starter_act00001_4", 1)
	assert comment.object_name == "Trains"
	assert comment.quadrant == "q1"


@pytest.mark.parametrize("raw", ["{not json", '{"x": 1}'])
def test_seed_starter_data_rejects_unparsable_payload(raw):
	with pytest.raises(policy.InvalidInput):
		mutations.seed_starter_data(_activity(), raw, now=NOW)
