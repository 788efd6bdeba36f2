"""Unit tests for voting service functions."""

import asyncio
import logging

import pytest

from conftest import (
    ADMIN_ID,
    MEMBER_ID,
    ORG_ID,
    OUTSIDER_ID,
    OWNER_ID,
    SECOND_VOTER_ID,
    VOTER_ID,
    ctx_for,
)

from app.core.context import Isolation
from app.core.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from app.services import lifecycle, voting


async def cast(store, built, candidate, race="Chair", user_id=VOTER_ID, **kwargs):
    return await voting.cast_vote(
        store,
        ctx_for(user_id),
        built["election_id"],
        built["races"][race],
        built["candidates"][candidate],
        **kwargs,
    )


# ============================================
# VOTE CASTING
# ============================================


@pytest.mark.asyncio
async def test_cast_vote_in_open_election(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann", "Bob"]})

    vote_id = await cast(store, built, "Ann")

    vote = store.state.votes[vote_id]
    assert vote["voter_user_id"] == VOTER_ID
    assert vote["candidate_race_id"] == built["candidates"]["Ann"]
    assert vote["channel"] == "WEB"


@pytest.mark.asyncio
async def test_cast_vote_checks_limits_under_voter_race_lock(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    await cast(store, built, "Ann")

    ctx, isolation = store.transactions[-1]
    assert isolation is Isolation.READ_COMMITTED
    assert ctx.actor_user_id == VOTER_ID
    assert store.locks == [(VOTER_ID, built["races"]["Chair"])]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["DRAFT", "SCHEDULED", "CLOSED"])
async def test_cast_vote_requires_open_election(store, ballot, status):
    built = await ballot.build(status=status, races={"Chair": ["Ann"]})

    with pytest.raises(InvalidStateError, match="not open"):
        await cast(store, built, "Ann")

    assert store.state.votes == {}


@pytest.mark.asyncio
async def test_cast_vote_unknown_election(store):
    with pytest.raises(NotFoundError):
        await voting.cast_vote(store, ctx_for(VOTER_ID), 404, 1, 1)


@pytest.mark.asyncio
async def test_cast_vote_race_of_other_election(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})
    other = await ballot.build(status="OPEN", races={"Chair": ["Bob"]}, name="Other")

    with pytest.raises(NotFoundError):
        await voting.cast_vote(
            store,
            ctx_for(VOTER_ID),
            built["election_id"],
            other["races"]["Chair"],
            other["candidates"]["Bob"],
        )


@pytest.mark.asyncio
async def test_cast_vote_candidate_of_other_race(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"], "Treasurer": ["Bob"]})

    with pytest.raises(NotFoundError):
        await voting.cast_vote(
            store,
            ctx_for(VOTER_ID),
            built["election_id"],
            built["races"]["Chair"],
            built["candidates"]["Bob"],
        )


@pytest.mark.asyncio
async def test_cast_vote_for_unapproved_candidate(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})
    store.state.candidates[built["candidates"]["Ann"]]["is_approved"] = False

    with pytest.raises(NotFoundError):
        await cast(store, built, "Ann")


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", [MEMBER_ID, OUTSIDER_ID])
async def test_cast_vote_requires_approved_voter(store, ballot, user_id, caplog):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    with caplog.at_level(logging.WARNING, logger="elections.events"):
        with pytest.raises(UnauthorizedError, match="not approved"):
            await cast(store, built, "Ann", user_id=user_id)

    assert store.state.votes == {}
    assert any(
        getattr(r, "extra_fields", {}).get("event_type") == "access_denied" for r in caplog.records
    )


@pytest.mark.asyncio
async def test_pending_voter_cannot_vote(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})
    await voting.register_voter(store, ctx_for(MEMBER_ID), ORG_ID)

    with pytest.raises(UnauthorizedError):
        await cast(store, built, "Ann", user_id=MEMBER_ID)


@pytest.mark.asyncio
async def test_duplicate_vote_conflicts(store, ballot):
    built = await ballot.build(
        status="OPEN", races={"Council": ["Ann", "Bob"]}, max_votes_per_voter=2
    )

    await cast(store, built, "Ann", race="Council")
    with pytest.raises(ConflictError) as exc_info:
        await cast(store, built, "Ann", race="Council")

    assert exc_info.value.code == "DUPLICATE_VOTE"
    assert len(store.state.votes) == 1


@pytest.mark.asyncio
async def test_single_vote_race_rejects_second_candidate(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann", "Bob"]})

    await cast(store, built, "Ann")
    with pytest.raises(ConflictError) as exc_info:
        await cast(store, built, "Bob")

    assert exc_info.value.code == "MAX_VOTES_REACHED"


@pytest.mark.asyncio
async def test_vote_limit_with_three_candidates(store, ballot, owner_ctx):
    built = await ballot.build(
        status="OPEN", races={"Council": ["Ann", "Bob", "Cid"]}, max_votes_per_voter=2
    )

    await cast(store, built, "Ann", race="Council")
    await cast(store, built, "Bob", race="Council")
    with pytest.raises(ConflictError, match="Maximum votes"):
        await cast(store, built, "Cid", race="Council")

    results = await voting.get_race_results(
        store, owner_ctx, built["election_id"], built["races"]["Council"]
    )
    counts = {c["display_name"]: c["vote_count"] for c in results["candidates"]}
    assert counts == {"Ann": 1, "Bob": 1, "Cid": 0}


@pytest.mark.asyncio
async def test_concurrent_votes_respect_limit(store, ballot):
    built = await ballot.build(
        status="OPEN", races={"Council": ["Ann", "Bob", "Cid", "Dee"]}, max_votes_per_voter=2
    )

    outcomes = await asyncio.gather(
        *(cast(store, built, name, race="Council") for name in ["Ann", "Bob", "Cid", "Dee"]),
        return_exceptions=True,
    )

    successes = [o for o in outcomes if isinstance(o, int)]
    conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
    assert len(successes) == 2
    assert len(conflicts) == 2
    assert len(store.state.votes) == 2


@pytest.mark.asyncio
async def test_votes_are_counted_per_voter(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    await cast(store, built, "Ann", user_id=VOTER_ID)
    await cast(store, built, "Ann", user_id=SECOND_VOTER_ID)

    assert len(store.state.votes) == 2


@pytest.mark.asyncio
async def test_cast_vote_normalizes_channel(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    vote_id = await cast(store, built, "Ann", channel=" sms ")

    assert store.state.votes[vote_id]["channel"] == "SMS"


@pytest.mark.asyncio
async def test_cast_vote_rejects_blank_channel(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    with pytest.raises(InvalidArgumentError):
        await cast(store, built, "Ann", channel="  ")


@pytest.mark.asyncio
async def test_vote_cast_event_omits_voter(store, ballot, caplog):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    with caplog.at_level(logging.INFO, logger="elections.events"):
        vote_id = await cast(store, built, "Ann")

    event = next(
        r.extra_fields
        for r in caplog.records
        if getattr(r, "extra_fields", {}).get("event_type") == "vote_cast"
    )
    assert event["vote_id"] == vote_id
    assert "voter_user_id" not in event
    assert "candidate_race_id" not in event


# ============================================
# RESULTS
# ============================================


@pytest.mark.asyncio
async def test_race_results_order_and_winners(store, ballot, owner_ctx):
    built = await ballot.build(
        status="OPEN", races={"Council": ["Ann", "Bob", "Cid"]}, max_votes_per_voter=2, max_winners=2
    )
    await cast(store, built, "Cid", race="Council", user_id=VOTER_ID)
    await cast(store, built, "Cid", race="Council", user_id=SECOND_VOTER_ID)
    await cast(store, built, "Bob", race="Council", user_id=VOTER_ID)

    results = await voting.get_race_results(
        store, owner_ctx, built["election_id"], built["races"]["Council"]
    )

    assert [(c["display_name"], c["vote_count"], c["is_winner"]) for c in results["candidates"]] == [
        ("Cid", 2, True),
        ("Bob", 1, True),
        ("Ann", 0, False),
    ]
    assert results["total_votes"] == 3


@pytest.mark.asyncio
async def test_race_results_ties_follow_ballot_order(store, ballot, owner_ctx):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann", "Bob", "Cid"]})

    results = await voting.get_race_results(
        store, owner_ctx, built["election_id"], built["races"]["Chair"]
    )

    assert [c["display_name"] for c in results["candidates"]] == ["Ann", "Bob", "Cid"]
    assert not any(c["is_winner"] for c in results["candidates"])


def test_rank_results_flags_top_candidates_with_votes():
    rows = [
        {"display_name": "Ann", "vote_count": 3},
        {"display_name": "Bob", "vote_count": 0},
        {"display_name": "Cid", "vote_count": 0},
    ]

    ranked = voting.rank_results(rows, max_winners=2)

    assert [r["is_winner"] for r in ranked] == [True, False, False]


@pytest.mark.asyncio
async def test_race_results_race_not_in_election(store, ballot, owner_ctx):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})
    other = await ballot.build(status="OPEN", races={"Chair": ["Bob"]}, name="Other")

    with pytest.raises(NotFoundError):
        await voting.get_race_results(store, owner_ctx, built["election_id"], other["races"]["Chair"])


@pytest.mark.asyncio
async def test_race_results_members_only(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})

    with pytest.raises(UnauthorizedError):
        await voting.get_race_results(
            store, ctx_for(OUTSIDER_ID), built["election_id"], built["races"]["Chair"]
        )


@pytest.mark.asyncio
async def test_election_results_cover_all_races(store, ballot):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann", "Bob"], "Treasurer": ["Cid"]})
    await cast(store, built, "Ann")
    await cast(store, built, "Cid", race="Treasurer")
    await cast(store, built, "Bob", user_id=SECOND_VOTER_ID)

    results = await voting.get_election_results(store, ctx_for(MEMBER_ID), built["election_id"])

    assert results["total_votes"] == 3
    assert [race["race_name"] for race in results["races"]] == ["Chair", "Treasurer"]
    assert results["races"][1]["candidates"][0]["is_winner"] is True


@pytest.mark.asyncio
async def test_results_remain_after_close(store, ballot, owner_ctx):
    built = await ballot.build(status="OPEN", races={"Chair": ["Ann"]})
    await cast(store, built, "Ann")
    await lifecycle.close_election(store, owner_ctx, built["election_id"])

    results = await voting.get_election_results(store, owner_ctx, built["election_id"])

    assert results["status"] == "CLOSED"
    assert results["total_votes"] == 1


# ============================================
# VOTER ADMISSION
# ============================================


@pytest.mark.asyncio
async def test_register_and_approve_voter(store):
    voter = await voting.register_voter(store, ctx_for(MEMBER_ID), ORG_ID)
    assert voter["is_approved"] is False

    pending = await voting.list_pending_voters(store, ctx_for(ADMIN_ID), ORG_ID)
    assert [v["user_id"] for v in pending] == [MEMBER_ID]

    approved = await voting.approve_voter(store, ctx_for(OWNER_ID), ORG_ID, MEMBER_ID)
    assert approved["is_approved"] is True
    assert approved["approved_by"] == OWNER_ID
    assert await voting.list_pending_voters(store, ctx_for(ADMIN_ID), ORG_ID) == []


@pytest.mark.asyncio
async def test_register_twice_conflicts(store):
    await voting.register_voter(store, ctx_for(MEMBER_ID), ORG_ID)

    with pytest.raises(ConflictError):
        await voting.register_voter(store, ctx_for(MEMBER_ID), ORG_ID)


@pytest.mark.asyncio
async def test_register_requires_membership(store):
    with pytest.raises(UnauthorizedError):
        await voting.register_voter(store, ctx_for(OUTSIDER_ID), ORG_ID)


@pytest.mark.asyncio
async def test_approve_without_pending_registration(store):
    with pytest.raises(NotFoundError):
        await voting.approve_voter(store, ctx_for(OWNER_ID), ORG_ID, MEMBER_ID)
    # Already approved voters have nothing pending either
    with pytest.raises(NotFoundError):
        await voting.approve_voter(store, ctx_for(OWNER_ID), ORG_ID, VOTER_ID)


@pytest.mark.asyncio
async def test_member_cannot_approve_or_list_pending(store):
    await voting.register_voter(store, ctx_for(MEMBER_ID), ORG_ID)

    with pytest.raises(UnauthorizedError):
        await voting.approve_voter(store, ctx_for(VOTER_ID), ORG_ID, MEMBER_ID)
    with pytest.raises(UnauthorizedError):
        await voting.list_pending_voters(store, ctx_for(VOTER_ID), ORG_ID)


@pytest.mark.asyncio
async def test_voter_status(store):
    own = await voting.get_voter_status(store, ctx_for(VOTER_ID), ORG_ID)
    assert own["is_registered"] is True
    assert own["is_approved"] is True

    other = await voting.get_voter_status(store, ctx_for(ADMIN_ID), ORG_ID, MEMBER_ID)
    assert other["is_registered"] is False
    assert other["is_approved"] is False


@pytest.mark.asyncio
async def test_member_cannot_view_other_voter_status(store):
    with pytest.raises(UnauthorizedError):
        await voting.get_voter_status(store, ctx_for(MEMBER_ID), ORG_ID, VOTER_ID)
