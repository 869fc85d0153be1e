"""Behavior of the moderation workflow against a real (SQLite) store."""

import json

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from netrika import ledger, revisions, workflow
from netrika.db import readonly_session_scope
from netrika.errors import STATUS_FAILURE, STATUS_PARTIAL, STATUS_SUCCESS
from netrika.identity import Actor

JANE = {"name": "Jane Doe", "dob": "2050-01-01", "gender": "Female"}


@pytest.fixture
def new_edit_id(user):
    result = workflow.propose("Politician", None, JANE, "initial submission", user)
    assert result.ok, result.message
    return result.get("edit_id")


@pytest.fixture
def bio_edit_id(other_user, politician_id):
    result = workflow.propose("Politician", politician_id, {"biography": "New bio"}, "fix typo", other_user)
    assert result.ok, result.message
    return result.get("edit_id")


def _edit(edit_id):
    with readonly_session_scope() as session:
        return ledger.get_edit(session, edit_id)


class TestPropose:
    """Proposals are validated once, up front, and land in the ledger as Pending."""

    def test_propose_then_list_pending_round_trip(self, new_edit_id, admin):
        result = workflow.list_pending(admin)

        assert result.ok
        assert [edit["id"] for edit in result.get("edits")] == [new_edit_id]
        assert result.get("edits")[0]["status"] == "Pending"
        assert result.get("edits")[0]["proposer"]["full_name"] == "Uma One"

    def test_requires_authenticated_actor(self):
        result = workflow.propose("Politician", None, JANE, "reason", None)

        assert result.status == STATUS_FAILURE
        assert result.kind == "AuthorizationError"

    def test_non_admin_must_give_a_reason(self, user, db_check):
        result = workflow.propose("Politician", None, JANE, "  ", user)

        assert result.kind == "MissingDataError"
        assert db_check.count("pending_edits") == 0

    def test_admin_may_omit_the_reason(self, admin):
        assert workflow.propose("Politician", None, JANE, None, admin).ok

    def test_unknown_entity_type_is_rejected(self, user, db_check):
        result = workflow.propose("Party", None, {"name": "Some Party"}, "new party", user)

        assert result.kind == "UnsupportedEntityTypeError"
        assert db_check.count("pending_edits") == 0

    def test_invalid_payload_is_rejected(self, user):
        result = workflow.propose("Politician", None, {"name": "Jane", "dob": "01/01/1970"}, "new", user)

        assert result.kind == "MissingDataError"
        assert "dob" in result.message

    def test_unknown_fields_are_rejected(self, user, politician_id):
        result = workflow.propose("Politician", politician_id, {"nickname": "JD"}, "typo", user)

        assert result.kind == "MissingDataError"

    def test_empty_payload_is_rejected(self, user, politician_id):
        result = workflow.propose("Politician", politician_id, {}, "nothing", user)

        assert result.kind == "MissingDataError"

    def test_edit_of_missing_entity_is_not_found(self, user):
        result = workflow.propose("Politician", 404, {"biography": "x"}, "typo", user)

        assert result.kind == "NotFoundError"

    def test_field_edit_helper_and_aliases(self, user, politician_id):
        result = workflow.propose_field_edit("Politician", politician_id, "bio", "Better bio", "clarify", user)

        assert result.ok
        assert _edit(result.get("edit_id")).proposed_data == {"biography": "Better bio"}

    def test_proposals_show_up_in_own_contributions(self, new_edit_id, user, other_user):
        mine = workflow.list_contributions(user)
        theirs = workflow.list_contributions(other_user)

        assert [edit["id"] for edit in mine.get("edits")] == [new_edit_id]
        assert theirs.get("edits") == []


class TestApproveNewEntity:
    def test_creates_entity_and_linked_revision(self, new_edit_id, admin, db_check):
        result = workflow.approve(new_edit_id, admin)

        assert result.status == STATUS_SUCCESS, result.message
        politician_id = result.get("politician_id")
        assert politician_id == result.get("entity_id")
        assert db_check.row("SELECT name FROM politicians WHERE id = :id", id=politician_id)["name"] == "Jane Doe"

        edit = _edit(new_edit_id)
        assert edit.status == "Approved"
        assert edit.entity_id == politician_id
        assert edit.moderator_id == "admin1"

        revision = db_check.row("SELECT * FROM entity_revisions WHERE edit_id = :edit_id", edit_id=new_edit_id)
        assert revision["id"] == result.get("revision_id")
        assert revision["entity_id"] == politician_id
        assert revision["submitter_id"] == "u1"
        assert revision["approver_id"] == "admin1"
        assert json.loads(revision["data"])["name"] == "Jane Doe"
        assert db_check.count("entity_revisions") == 1

    def test_super_admin_can_approve(self, new_edit_id, super_admin):
        assert workflow.approve_new_entity(new_edit_id, super_admin).ok

    def test_regular_user_cannot_approve(self, new_edit_id, other_user, db_check):
        result = workflow.approve(new_edit_id, other_user)

        assert result.kind == "AuthorizationError"
        assert _edit(new_edit_id).is_pending
        assert db_check.count("politicians") == 0

    def test_rejects_field_edits(self, bio_edit_id, admin):
        result = workflow.approve_new_entity(bio_edit_id, admin)

        assert result.kind == "InvalidTransitionError"
        assert _edit(bio_edit_id).is_pending

    def test_unknown_edit(self, admin):
        assert workflow.approve(987, admin).kind == "NotFoundError"

    def test_missing_proposer(self, admin, db_check):
        db_check.execute(
            """
            INSERT INTO pending_edits (entity_type, proposed_data, change_reason)
            VALUES ('Politician', '{"name": "No Author"}', 'legacy row')
            """
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        result = workflow.approve(edit_id, admin)

        assert result.kind == "MissingAttributionError"
        assert _edit(edit_id).is_pending
        assert db_check.count("politicians") == 0

    def test_empty_proposed_data(self, admin, db_check):
        db_check.execute(
            "INSERT INTO pending_edits (entity_type, proposed_data, proposer_id) VALUES ('Politician', '{}', 'u1')"
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        assert workflow.approve(edit_id, admin).kind == "MissingDataError"

    def test_unregistered_entity_type_stays_pending(self, admin, db_check):
        db_check.execute(
            """
            INSERT INTO pending_edits (entity_type, proposed_data, proposer_id)
            VALUES ('Party', '{"name": "Some Party"}', 'u1')
            """
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        result = workflow.approve(edit_id, admin)

        assert result.kind == "UnsupportedEntityTypeError"
        assert _edit(edit_id).is_pending

    def test_malformed_stored_payload_is_a_persistence_failure(self, admin, db_check):
        db_check.execute(
            "INSERT INTO pending_edits (entity_type, proposed_data, proposer_id) VALUES ('Politician', '{oops', 'u1')"
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        result = workflow.approve(edit_id, admin)

        assert result.kind == "PersistenceError"
        assert db_check.count("politicians") == 0


class TestApproveFieldEdit:
    def test_merge_patch_leaves_other_fields_alone(self, bio_edit_id, politician_id, admin, db_check):
        result = workflow.approve_field_edit(bio_edit_id, admin)

        assert result.ok, result.message
        row = db_check.row("SELECT name, gender, biography FROM politicians WHERE id = :id", id=politician_id)
        assert row == {"name": "Ram Bahadur", "gender": "Male", "biography": "New bio"}

        revision = db_check.row("SELECT * FROM entity_revisions WHERE edit_id = :edit_id", edit_id=bio_edit_id)
        assert json.loads(revision["data"]) == {"biography": "New bio"}
        assert revision["submitter_id"] == "u2"
        assert revision["change_reason"] == "fix typo"

    def test_rejects_new_entity_edits(self, new_edit_id, admin):
        assert workflow.approve_field_edit(new_edit_id, admin).kind == "InvalidTransitionError"

    def test_structured_fields_round_trip(self, user, admin, politician_id):
        records = [{"case_description": "Land fraud", "case_status": "Pending", "court_name": "Supreme Court"}]
        proposed = workflow.propose("Politician", politician_id, {"criminal_records": records}, "court filing", user)
        assert workflow.approve(proposed.get("edit_id"), admin).ok

        entity = workflow.get_entity("Politician", politician_id).get("entity")
        assert entity["criminal_records"][0]["case_description"] == "Land fraud"
        assert entity["criminal_records"][0]["case_status"] == "Pending"
        assert entity["biography"] == "Original bio"


class TestDeny:
    def test_field_edit_denial_leaves_entity_untouched(self, bio_edit_id, politician_id, admin, db_check):
        result = workflow.deny(bio_edit_id, admin, "insufficient sourcing")

        assert result.ok
        edit = _edit(bio_edit_id)
        assert edit.status == "Denied"
        assert edit.admin_feedback == "insufficient sourcing"
        assert edit.moderator_id == "admin1"
        assert db_check.row("SELECT biography FROM politicians WHERE id = :id", id=politician_id)["biography"] == (
            "Original bio"
        )
        assert db_check.count("entity_revisions") == 0

    def test_default_reason(self, new_edit_id, admin):
        result = workflow.deny(new_edit_id, admin)

        assert result.get("admin_feedback") == "Denied by moderator."

    def test_deny_then_approve_fails_without_creating_entity(self, new_edit_id, admin, db_check):
        assert workflow.deny(new_edit_id, admin, "duplicate").ok

        result = workflow.approve_new_entity(new_edit_id, admin)

        assert result.kind == "InvalidTransitionError"
        assert db_check.count("politicians") == 0
        assert _edit(new_edit_id).status == "Denied"

    def test_resolution_happens_at_most_once(self, new_edit_id, admin, db_check):
        assert workflow.approve(new_edit_id, admin).ok

        assert workflow.approve(new_edit_id, admin).kind == "InvalidTransitionError"
        assert workflow.deny(new_edit_id, admin).kind == "InvalidTransitionError"
        assert db_check.count("politicians") == 1
        assert db_check.count("entity_revisions") == 1
        assert _edit(new_edit_id).status == "Approved"

    def test_regular_user_cannot_deny(self, new_edit_id, user):
        assert workflow.deny(new_edit_id, user).kind == "AuthorizationError"
        assert _edit(new_edit_id).is_pending

    def test_malformed_payload_can_still_be_denied(self, admin, db_check):
        db_check.execute(
            "INSERT INTO pending_edits (entity_type, proposed_data, proposer_id) VALUES ('Politician', '{oops', 'u1')"
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        result = workflow.deny(edit_id, admin, "unreadable payload")

        assert result.ok, result.message
        row = db_check.row("SELECT status, admin_feedback FROM pending_edits WHERE id = :id", id=edit_id)
        assert row == {"status": "Denied", "admin_feedback": "unreadable payload"}
        assert db_check.count("entity_revisions") == 0


class TestDirectAdminUpdate:
    def test_updates_field_and_appends_unlinked_revision(self, politician_id, admin, db_check):
        result = workflow.direct_admin_update(politician_id, "gender", "Female", admin)

        assert result.ok, result.message
        assert result.get("entity")["gender"] == "Female"
        assert db_check.count("pending_edits") == 0
        revision = db_check.row("SELECT * FROM entity_revisions")
        assert revision["edit_id"] is None
        assert revision["submitter_id"] == revision["approver_id"] == "admin1"
        assert revision["change_reason"] == revisions.DIRECT_UPDATE_REASON

    def test_leaves_existing_pending_edits_alone(self, bio_edit_id, politician_id, admin):
        assert workflow.direct_admin_update(politician_id, "name", "Ram B. Thapa", admin, "spelling").ok

        edit = _edit(bio_edit_id)
        assert edit.is_pending
        assert edit.proposed_data == {"biography": "New bio"}

    def test_regular_user_is_refused(self, politician_id, user, db_check):
        result = workflow.direct_admin_update(politician_id, "gender", "Female", user)

        assert result.kind == "AuthorizationError"
        assert db_check.row("SELECT gender FROM politicians WHERE id = :id", id=politician_id)["gender"] == "Male"
        assert db_check.count("entity_revisions") == 0

    def test_missing_entity(self, admin, db_check):
        assert workflow.direct_admin_update(555, "gender", "Female", admin).kind == "NotFoundError"
        assert db_check.count("entity_revisions") == 0

    def test_invalid_value(self, politician_id, admin):
        assert workflow.direct_admin_update(politician_id, "gender", "Robot", admin).kind == "MissingDataError"

    def test_name_cannot_be_cleared(self, politician_id, admin):
        assert workflow.direct_admin_update(politician_id, "name", None, admin).kind == "MissingDataError"


class TestConcurrentApproval:
    def test_stale_pending_read_loses_the_race(self, new_edit_id, admin, super_admin, monkeypatch, db_check):
        stale = _edit(new_edit_id)
        assert workflow.approve(new_edit_id, admin).ok

        # The second approver read the edit before the first one committed.
        monkeypatch.setattr(ledger, "get_edit", lambda session, edit_id, **kwargs: stale)
        result = workflow.approve(new_edit_id, super_admin)

        assert result.kind == "InvalidTransitionError"
        assert db_check.count("politicians") == 1
        assert db_check.count("entity_revisions") == 1
        assert db_check.row("SELECT moderator_id FROM pending_edits WHERE id = :id", id=new_edit_id)["moderator_id"] == (
            "admin1"
        )


def _failing_append(session, **fields):
    raise IntegrityError("INSERT INTO entity_revisions", {}, Exception("disk quota"))


class TestRevisionFailurePolicy:
    def test_rollback_policy_undoes_the_approval(self, new_edit_id, admin, monkeypatch, db_check):
        monkeypatch.setattr(revisions, "append", _failing_append)

        result = workflow.approve(new_edit_id, admin)

        assert result.status == STATUS_FAILURE
        assert result.kind == "PersistenceError"
        assert db_check.count("politicians") == 0
        assert _edit(new_edit_id).is_pending

    def test_flag_policy_keeps_the_change_and_reports_partial(self, new_edit_id, admin, monkeypatch, db_check):
        monkeypatch.setattr(workflow, "REVISION_FAILURE_POLICY", workflow.POLICY_FLAG)
        monkeypatch.setattr(revisions, "append", _failing_append)

        result = workflow.approve(new_edit_id, admin)

        assert result.status == STATUS_PARTIAL
        assert not result.ok
        assert result.get("revision_id") is None
        assert db_check.count("politicians") == 1
        assert _edit(new_edit_id).status == "Approved"
        assert db_check.count("entity_revisions") == 0

    def test_connectivity_faults_propagate(self, new_edit_id, admin, monkeypatch):
        def _offline(session, **fields):
            raise OperationalError("INSERT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(revisions, "append", _offline)

        with pytest.raises(OperationalError):
            workflow.approve(new_edit_id, admin)
        assert _edit(new_edit_id).is_pending

    def test_connectivity_faults_propagate_under_flag_policy(self, new_edit_id, admin, monkeypatch, db_check):
        def _offline(session, **fields):
            raise OperationalError("INSERT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(workflow, "REVISION_FAILURE_POLICY", workflow.POLICY_FLAG)
        monkeypatch.setattr(revisions, "append", _offline)

        with pytest.raises(OperationalError):
            workflow.approve(new_edit_id, admin)
        assert _edit(new_edit_id).is_pending
        assert db_check.count("politicians") == 0


class TestReads:
    def test_list_pending_requires_moderator(self, new_edit_id, user):
        assert workflow.list_pending(user).kind == "AuthorizationError"

    def test_list_pending_page_size(self, user, admin):
        for index in range(3):
            workflow.propose("Politician", None, {"name": f"Person {index}"}, "new", user)

        result = workflow.list_pending(admin, page=2, page_size=2)

        assert result.get("total") == 3
        assert result.get("page_count") == 2
        assert len(result.get("edits")) == 1

    def test_revision_history_after_approvals(self, bio_edit_id, politician_id, admin):
        workflow.approve(bio_edit_id, admin)
        workflow.direct_admin_update(politician_id, "gender", "Other", admin)

        result = workflow.list_revisions("Politician", politician_id)

        history = result.get("revisions")
        assert [entry["edit_id"] for entry in history] == [None, bio_edit_id]
        assert history[1]["submitter_name"] == "Umesh Two"

    def test_get_entity_resolves_photo_url(self, politician_id, db_check):
        db_check.execute("INSERT INTO media_assets (id, storage_path) VALUES (7, 'politicians/ram.jpg')")
        db_check.execute("UPDATE politicians SET photo_asset_id = '7' WHERE id = :id", id=politician_id)

        entity = workflow.get_entity("Politician", politician_id).get("entity")

        assert entity["photo_url"] == "/media/politicians/ram.jpg"

    def test_get_entity_with_malformed_column(self, politician_id, db_check):
        db_check.execute("UPDATE politicians SET criminal_records = '[{' WHERE id = :id", id=politician_id)

        assert workflow.get_entity("Politician", politician_id).kind == "PersistenceError"

    def test_unknown_actor_role_is_not_a_moderator(self):
        assert not Actor(id="u9", role="Editor").is_moderator

    def test_list_pending_survives_a_malformed_payload(self, new_edit_id, admin, db_check):
        db_check.execute(
            "INSERT INTO pending_edits (entity_type, proposed_data, proposer_id) VALUES ('Politician', '{oops', 'u2')"
        )

        result = workflow.list_pending(admin)

        assert result.ok, result.message
        edits = {edit["id"]: edit for edit in result.get("edits")}
        assert len(edits) == 2
        assert edits[new_edit_id]["payload_error"] is None
        broken = next(edit for edit_id, edit in edits.items() if edit_id != new_edit_id)
        assert broken["proposed_data"] == {}
        assert broken["payload_error"]


class TestIdentifierCoercion:
    """Identifiers that arrive as text are parsed once; anything non-numeric is simply not found."""

    def test_numeric_strings_are_accepted(self, user, politician_id):
        result = workflow.propose("Politician", str(politician_id), {"biography": "x"}, "typo", user)

        assert result.ok, result.message
        assert _edit(result.get("edit_id")).entity_id == politician_id

    @pytest.mark.parametrize(
        "call",
        [
            lambda actors: workflow.propose("Politician", "p1", {"biography": "x"}, "typo", actors["user"]),
            lambda actors: workflow.direct_admin_update("p1", "gender", "Female", actors["admin"]),
            lambda actors: workflow.list_revisions("Politician", "p1"),
            lambda actors: workflow.get_entity("Politician", "p1"),
            lambda actors: workflow.list_entity_proposals("Politician", "p1", actors["admin"]),
            lambda actors: workflow.approve("x", actors["admin"]),
            lambda actors: workflow.deny("x", actors["admin"]),
            lambda actors: workflow.get_edit_review("x", actors["admin"]),
        ],
        ids=[
            "propose",
            "direct_admin_update",
            "list_revisions",
            "get_entity",
            "list_entity_proposals",
            "approve",
            "deny",
            "get_edit_review",
        ],
    )
    def test_non_numeric_ids_are_not_found(self, call, user, admin, db_check):
        result = call({"user": user, "admin": admin})

        assert result.status == STATUS_FAILURE
        assert result.kind == "NotFoundError"
        assert db_check.count("pending_edits") == 0
        assert db_check.count("entity_revisions") == 0


class TestEditReview:
    def test_field_edit_is_compared_with_the_current_record(self, bio_edit_id, admin):
        result = workflow.get_edit_review(bio_edit_id, admin)

        assert result.ok, result.message
        assert result.get("edit")["id"] == bio_edit_id
        assert result.get("current")["biography"] == "Original bio"
        assert result.get("payload_error") is None
        (entry,) = result.get("diff")
        assert entry["field"] == "biography"
        assert entry["old"] == "Original bio"
        assert entry["new"] == "New bio"
        assert entry["change"] == "changed"
        assert {"op": "delete", "text": "Original"} in entry["segments"]
        assert {"op": "insert", "text": "New"} in entry["segments"]

    def test_new_entity_has_no_old_side(self, new_edit_id, admin):
        result = workflow.get_edit_review(new_edit_id, admin)

        assert result.get("current") is None
        diff = {entry["field"]: entry for entry in result.get("diff")}
        assert diff["name"]["old"] is None
        assert diff["name"]["new"] == "Jane Doe"
        assert diff["name"]["change"] == "new"
        assert all(entry["change"] == "new" for entry in diff.values())

    def test_requires_moderator(self, bio_edit_id, other_user):
        assert workflow.get_edit_review(bio_edit_id, other_user).kind == "AuthorizationError"

    def test_malformed_payload_is_reported(self, admin, db_check):
        db_check.execute(
            "INSERT INTO pending_edits (entity_type, proposed_data, proposer_id) VALUES ('Politician', '{oops', 'u1')"
        )
        edit_id = db_check.row("SELECT MAX(id) AS id FROM pending_edits")["id"]

        result = workflow.get_edit_review(edit_id, admin)

        assert result.ok
        assert result.get("diff") == []
        assert "malformed proposed data" in result.get("payload_error")

    def test_unknown_edit(self, admin):
        assert workflow.get_edit_review(4242, admin).kind == "NotFoundError"


class TestEntityProposals:
    def test_includes_resolved_edits_newest_first(self, bio_edit_id, politician_id, user, admin):
        second = workflow.propose("Politician", politician_id, {"gender": "Other"}, "correction", user).get("edit_id")
        assert workflow.deny(bio_edit_id, admin, "unsourced").ok

        result = workflow.list_entity_proposals("Politician", politician_id, admin)

        assert result.ok, result.message
        statuses = {edit["id"]: edit["status"] for edit in result.get("edits")}
        assert statuses == {bio_edit_id: "Denied", second: "Pending"}
        assert [edit["id"] for edit in result.get("edits")] == [second, bio_edit_id]

    def test_new_entity_proposals_are_not_attached(self, new_edit_id, politician_id, admin):
        assert workflow.list_entity_proposals("Politician", politician_id, admin).get("edits") == []

    def test_requires_moderator(self, bio_edit_id, politician_id, user):
        assert workflow.list_entity_proposals("Politician", politician_id, user).kind == "AuthorizationError"
