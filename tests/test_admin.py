import asyncio
import json
import random

import pytest

from conftest import face
from votex.errors import DuplicateOption, InvalidOption, MalformedDocument, NotAdmin, NotEnrolled, UnknownOption
from votex.ledger import VotingLedger
from votex.storage import MemoryBackend, PersistentStore


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def voting(admin_ledger):
    admin_ledger.admin.set_policy(require_verification=False)
    for name in ("alice", "bob", "carol"):
        admin_ledger.registry.register(name, "secret1")
    return admin_ledger


def test_add_option_appends_with_zero_tally(admin_ledger, store):
    admin_ledger.admin.add_option("  Option D ")
    assert admin_ledger.state.options[-1] == "Option D"
    assert admin_ledger.state.votes["Option D"] == 0
    assert store.load("options", []) == ["Option A", "Option B", "Option C", "Option D"]


def test_add_option_rejects_duplicates_and_blank(admin_ledger):
    with pytest.raises(DuplicateOption):
        admin_ledger.admin.add_option("Option A")
    with pytest.raises(InvalidOption):
        admin_ledger.admin.add_option("   ")
    assert len(admin_ledger.state.options) == 3


def test_remove_option_discards_its_tally_and_frees_its_voters(voting):
    run(voting.engine.cast_vote("alice", "Option A"))
    run(voting.engine.cast_vote("bob", "Option B"))

    voting.admin.remove_option("Option A")

    assert voting.state.options == ["Option B", "Option C"]
    assert voting.state.votes == {"Option B": 1, "Option C": 0}
    assert voting.state.user_votes == {"bob": "Option B"}
    # alice is back to not-voted and may vote again
    run(voting.engine.cast_vote("alice", "Option C"))
    assert voting.engine.choice_of("alice") == "Option C"


def test_remove_unknown_option(admin_ledger):
    with pytest.raises(UnknownOption):
        admin_ledger.admin.remove_option("Nope")


def test_removing_an_option_drops_exactly_its_count(voting):
    voting.admin.set_policy(allow_multiple_votes=True)
    for _ in range(5):
        run(voting.engine.cast_vote("alice", "Option A"))
    for _ in range(3):
        run(voting.engine.cast_vote("bob", "Option B"))
    voting.admin.remove_option("Option C")
    voting.admin.remove_option("Option A")

    assert voting.state.votes == {"Option B": 3}
    assert voting.engine.total_votes() == 3


def test_tally_keys_follow_options_through_random_edits(admin_ledger):
    rng = random.Random(1234)
    for step in range(200):
        names = admin_ledger.state.options
        if names and rng.random() < 0.45:
            admin_ledger.admin.remove_option(rng.choice(names))
        else:
            try:
                admin_ledger.admin.add_option(f"opt{rng.randint(0, 15)}")
            except DuplicateOption:
                pass
        assert list(admin_ledger.state.votes) == admin_ledger.state.options, f"step {step}"
        assert all(choice in admin_ledger.state.options for choice in admin_ledger.state.user_votes.values())


def test_reset_votes_zeroes_tally_and_clears_records(voting):
    run(voting.engine.cast_vote("alice", "Option A"))
    run(voting.engine.cast_vote("bob", "Option C"))
    voting.admin.reset_votes()

    assert voting.state.votes == {"Option A": 0, "Option B": 0, "Option C": 0}
    assert voting.state.user_votes == {}
    assert voting.state.options == ["Option A", "Option B", "Option C"]


def test_set_policy_persists_under_original_names(admin_ledger, store):
    admin_ledger.admin.set_policy(voting_open=False, results_visible_to_voters=False)
    assert store.load("settings", {}) == {
        "votingOpen": False,
        "showResultsToUsers": False,
        "allowMultipleVotes": False,
        "requireFaceCheck": True,
    }
    with pytest.raises(TypeError):
        admin_ledger.admin.set_policy(secret_ballot=True)


def test_admin_operations_require_admin_session(ledger):
    with pytest.raises(NotAdmin):
        ledger.admin.add_option("X")
    with pytest.raises(NotAdmin):
        ledger.admin.reset_votes()
    with pytest.raises(NotAdmin):
        ledger.admin.export_snapshot()
    with pytest.raises(NotAdmin):
        ledger.admin.set_policy(voting_open=False)


def test_export_has_exactly_five_fields_and_no_enrollments(voting):
    voting.registry.register("dave", "secret1", embedding=face(1.0))
    voting.registry.store_credential_ref("dave", "cred-dave")
    run(voting.engine.cast_vote("alice", "Option B"))

    doc = json.loads(voting.admin.export_snapshot())
    assert set(doc) == {"users", "votes", "options", "userVotes", "settings"}
    assert doc["users"]["dave"] == "secret1"
    assert doc["userVotes"] == {"alice": "Option B"}
    assert "faceDescriptors" not in json.dumps(doc)


def test_export_then_import_on_fresh_store_round_trips(voting):
    voting.admin.add_option("Option D")
    run(voting.engine.cast_vote("alice", "Option D"))
    run(voting.engine.cast_vote("bob", "Option A"))
    voting.admin.set_policy(results_visible_to_voters=False)
    exported = voting.admin.export_snapshot()

    fresh = VotingLedger.open(PersistentStore(MemoryBackend()), embed_dim=4)
    fresh.session.admin_login("admin", "admin123")
    fresh.admin.import_snapshot(exported)

    assert fresh.state.votes == voting.state.votes
    assert fresh.state.options == voting.state.options
    assert fresh.state.user_votes == voting.state.user_votes
    assert fresh.state.users == voting.state.users
    assert fresh.state.policy == voting.state.policy
    assert fresh.state.face_descriptors == {}

    # and it survives a restart of the fresh store
    reopened = VotingLedger.open(fresh.store, embed_dim=4)
    assert reopened.state.votes == voting.state.votes


def test_import_defaults_missing_fields(admin_ledger):
    admin_ledger.admin.import_snapshot({"users": {"zed": "secret1"}, "options": ["Yes", "No"]})

    assert admin_ledger.state.users == {"zed": "secret1"}
    assert admin_ledger.state.options == ["Yes", "No"]
    assert admin_ledger.state.votes == {"Yes": 0, "No": 0}
    assert admin_ledger.state.user_votes == {}
    assert admin_ledger.state.policy.voting_open is True


def test_import_keeps_enrollment_artifacts(admin_ledger):
    admin_ledger.registry.register("dave", "secret1", embedding=face(1.0))
    admin_ledger.admin.import_snapshot(json.dumps({"users": {"dave": "secret1"}}))
    assert admin_ledger.registry.has_face("dave")


@pytest.mark.parametrize("document", [
    "{not json",
    b"\xff\xfe",
    "[1, 2, 3]",
    "null",
    json.dumps({"votes": {"A": -1}}),
    json.dumps({"options": "A,B"}),
    json.dumps({"users": {"ann": 5}}),
])
def test_malformed_import_leaves_state_untouched(voting, document):
    run(voting.engine.cast_vote("alice", "Option A"))
    before = voting.admin.export_snapshot()

    with pytest.raises(MalformedDocument):
        voting.admin.import_snapshot(document)

    assert voting.admin.export_snapshot() == before


def test_import_forgets_enrollments_of_users_it_removes(admin_ledger, camera):
    admin_ledger.registry.register("bob", "secret1", embedding=face(1.0))
    admin_ledger.registry.store_credential_ref("bob", "cred-bob")

    admin_ledger.admin.import_snapshot({"users": {"zed": "secret1"}})

    assert not admin_ledger.registry.has_face("bob")
    assert admin_ledger.registry.credential_ref("bob") is None
    assert admin_ledger.store.load("faceDescriptors", {}) == {}

    # a new bob does not inherit the old bob's face
    admin_ledger.registry.register("bob", "another1")
    camera.feed(face(1.0))
    with pytest.raises(NotEnrolled):
        run(admin_ledger.session.login_with_face("bob"))

    # and the old face is free to enroll again
    admin_ledger.registry.register("carol", "secret1", embedding=face(1.0))
    assert admin_ledger.registry.has_face("carol")
