"""Ballot store interface consumed by the lifecycle engine, vote service and scheduler.

Rows are plain dicts. Timestamps are timezone-aware UTC datetimes. Every
mutating method runs inside the transaction opened by
:meth:`BallotStore.transaction`; none of them commits on its own.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from app.core.context import Isolation, RequestContext


class BallotSession(ABC):
    """Operations available inside one ballot store transaction."""

    # Organization membership
    @abstractmethod
    async def get_member_role(self, organization_id: int, user_id: int) -> str | None: ...

    # Elections
    @abstractmethod
    async def get_election(self, election_id: int, *, for_update: bool = False) -> dict | None: ...

    @abstractmethod
    async def list_elections(
        self, organization_id: int, status: str | None = None
    ) -> list[dict]: ...

    @abstractmethod
    async def insert_election(
        self,
        organization_id: int,
        election_name: str,
        description: str | None,
        created_by: int,
    ) -> dict: ...

    @abstractmethod
    async def update_election(
        self,
        election_id: int,
        election_name: str,
        description: str | None,
        start_at: datetime | None,
        end_at: datetime | None,
    ) -> dict | None: ...

    @abstractmethod
    async def schedule_election(
        self, election_id: int, start_at: datetime, end_at: datetime
    ) -> dict | None: ...

    @abstractmethod
    async def transition_election(
        self,
        election_id: int,
        from_statuses: tuple[str, ...],
        to_status: str,
        at: datetime,
    ) -> dict | None: ...

    @abstractmethod
    async def delete_election(self, election_id: int) -> bool: ...

    @abstractmethod
    async def count_election_votes(self, election_id: int) -> int: ...

    # Races
    @abstractmethod
    async def get_race(self, race_id: int) -> dict | None: ...

    @abstractmethod
    async def list_races(self, election_id: int) -> list[dict]: ...

    @abstractmethod
    async def insert_race(
        self,
        election_id: int,
        race_name: str,
        description: str | None,
        max_votes_per_voter: int,
        max_winners: int,
    ) -> dict: ...

    @abstractmethod
    async def update_race(
        self,
        race_id: int,
        race_name: str,
        description: str | None,
        max_votes_per_voter: int,
        max_winners: int,
    ) -> dict | None: ...

    @abstractmethod
    async def delete_race(self, race_id: int) -> bool: ...

    # Candidates in races
    @abstractmethod
    async def get_race_candidate(self, candidate_race_id: int) -> dict | None: ...

    @abstractmethod
    async def list_race_candidates(self, race_id: int) -> list[dict]: ...

    @abstractmethod
    async def add_candidate_to_race(
        self,
        race_id: int,
        full_name: str,
        affiliation_name: str | None,
        bio: str | None,
        display_name: str,
        ballot_order: int | None,
        is_approved: bool,
    ) -> dict: ...

    @abstractmethod
    async def update_race_candidate(
        self,
        candidate_race_id: int,
        full_name: str,
        affiliation_name: str | None,
        bio: str | None,
        display_name: str,
        ballot_order: int | None,
        is_approved: bool,
    ) -> dict | None: ...

    @abstractmethod
    async def remove_race_candidate(self, candidate_race_id: int) -> bool: ...

    # Voters
    @abstractmethod
    async def get_voter(self, organization_id: int, user_id: int) -> dict | None: ...

    @abstractmethod
    async def register_voter(self, organization_id: int, user_id: int) -> dict: ...

    @abstractmethod
    async def approve_voter(
        self, organization_id: int, user_id: int, approved_by: int
    ) -> dict | None: ...

    @abstractmethod
    async def list_pending_voters(self, organization_id: int) -> list[dict]: ...

    # Votes
    @abstractmethod
    async def lock_voter_race(self, user_id: int, race_id: int) -> None: ...

    @abstractmethod
    async def count_voter_votes(self, race_id: int, user_id: int) -> int: ...

    @abstractmethod
    async def has_vote(self, race_id: int, candidate_race_id: int, user_id: int) -> bool: ...

    @abstractmethod
    async def insert_vote(
        self, race_id: int, candidate_race_id: int, user_id: int, channel: str
    ) -> int: ...

    @abstractmethod
    async def race_results(self, race_id: int) -> list[dict]: ...


class BallotStore(ABC):
    """Durable storage for organizations, elections, races, voters and votes."""

    @abstractmethod
    def transaction(
        self,
        ctx: RequestContext,
        isolation: Isolation = Isolation.READ_COMMITTED,
    ) -> AbstractAsyncContextManager[BallotSession]:
        """Open a unit of work carrying ``ctx``; commit on success, roll back on error."""

    @abstractmethod
    async def process_due_elections(self, now: datetime) -> list[dict]:
        """
        Atomically open every SCHEDULED election with ``start_at <= now`` and
        close every OPEN election with ``end_at <= now``.

        Both sets are computed from the same snapshot, so an election opened
        here is closed at the earliest by the next call. Returns one
        ``{election_id, election_name, action}`` dict per transition, opened
        elections first.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the store answers a trivial query."""
