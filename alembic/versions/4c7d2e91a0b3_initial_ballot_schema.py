"""initial_ballot_schema

Revision ID: 4c7d2e91a0b3
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4c7d2e91a0b3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


UPGRADE_SQL = """
-- ============================================
-- USERS & ORGANIZATIONS (owned by the identity service, read by the core)
-- ============================================
CREATE TABLE IF NOT EXISTS users (
    user_id BIGSERIAL PRIMARY KEY,
    username VARCHAR(255) NOT NULL UNIQUE,
    display_name VARCHAR(255),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS organizations (
    organization_id BIGSERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS org_members (
    organization_id BIGINT NOT NULL REFERENCES organizations(organization_id) ON DELETE CASCADE,
    user_id BIGINT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    role_name VARCHAR(20) NOT NULL CHECK (role_name IN ('OWNER', 'ADMIN', 'MEMBER')),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    joined_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (organization_id, user_id)
);

-- ============================================
-- ELECTIONS
-- ============================================
CREATE TABLE IF NOT EXISTS elections (
    election_id BIGSERIAL PRIMARY KEY,
    organization_id BIGINT NOT NULL REFERENCES organizations(organization_id) ON DELETE CASCADE,
    election_name VARCHAR(255) NOT NULL CHECK (btrim(election_name) <> ''),
    description TEXT,
    start_at TIMESTAMP WITH TIME ZONE,
    end_at TIMESTAMP WITH TIME ZONE,
    status VARCHAR(20) NOT NULL DEFAULT 'DRAFT'
        CHECK (status IN ('DRAFT', 'SCHEDULED', 'OPEN', 'CLOSED', 'ARCHIVED')),
    created_by BIGINT REFERENCES users(user_id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    opened_at TIMESTAMP WITH TIME ZONE,
    closed_at TIMESTAMP WITH TIME ZONE,

    CONSTRAINT elections_window_check
        CHECK (start_at IS NULL OR end_at IS NULL OR end_at > start_at),
    CONSTRAINT elections_scheduled_window_check
        CHECK (status <> 'SCHEDULED' OR (start_at IS NOT NULL AND end_at IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_elections_organization ON elections(organization_id);
CREATE INDEX IF NOT EXISTS idx_elections_due_open
    ON elections(start_at) WHERE status = 'SCHEDULED';
CREATE INDEX IF NOT EXISTS idx_elections_due_close
    ON elections(end_at) WHERE status = 'OPEN';

-- Status only moves forward: DRAFT -> SCHEDULED -> OPEN -> CLOSED, DRAFT -> OPEN
CREATE OR REPLACE FUNCTION enforce_election_transition() RETURNS TRIGGER AS $$
BEGIN
    IF NEW.status IS DISTINCT FROM OLD.status AND NOT (
        (OLD.status = 'DRAFT' AND NEW.status IN ('SCHEDULED', 'OPEN'))
        OR (OLD.status = 'SCHEDULED' AND NEW.status = 'OPEN')
        OR (OLD.status = 'OPEN' AND NEW.status = 'CLOSED')
    ) THEN
        RAISE EXCEPTION 'invalid election transition % -> %', OLD.status, NEW.status
            USING ERRCODE = '55000';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_elections_transition ON elections;
CREATE TRIGGER trg_elections_transition
    BEFORE UPDATE OF status ON elections
    FOR EACH ROW EXECUTE FUNCTION enforce_election_transition();

-- ============================================
-- RACES & CANDIDATES
-- ============================================
CREATE TABLE IF NOT EXISTS election_races (
    race_id BIGSERIAL PRIMARY KEY,
    election_id BIGINT NOT NULL REFERENCES elections(election_id) ON DELETE CASCADE,
    race_name VARCHAR(255) NOT NULL CHECK (btrim(race_name) <> ''),
    description TEXT,
    max_votes_per_voter INTEGER NOT NULL DEFAULT 1 CHECK (max_votes_per_voter >= 1),
    max_winners INTEGER NOT NULL DEFAULT 1 CHECK (max_winners >= 1),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (election_id, race_name)
);

CREATE TABLE IF NOT EXISTS candidates (
    candidate_id BIGSERIAL PRIMARY KEY,
    full_name VARCHAR(255) NOT NULL CHECK (btrim(full_name) <> ''),
    affiliation_name VARCHAR(255),
    bio TEXT,
    is_approved BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS candidate_races (
    candidate_race_id BIGSERIAL PRIMARY KEY,
    race_id BIGINT NOT NULL REFERENCES election_races(race_id) ON DELETE CASCADE,
    candidate_id BIGINT NOT NULL REFERENCES candidates(candidate_id) ON DELETE CASCADE,
    display_name VARCHAR(255) NOT NULL,
    ballot_order INTEGER CHECK (ballot_order IS NULL OR ballot_order >= 1),
    UNIQUE (race_id, candidate_id),
    UNIQUE (race_id, display_name)
);

CREATE INDEX IF NOT EXISTS idx_candidate_races_race ON candidate_races(race_id);

-- ============================================
-- VOTERS
-- ============================================
CREATE TABLE IF NOT EXISTS voters (
    voter_id BIGSERIAL PRIMARY KEY,
    organization_id BIGINT NOT NULL REFERENCES organizations(organization_id) ON DELETE CASCADE,
    user_id BIGINT NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    is_approved BOOLEAN NOT NULL DEFAULT FALSE,
    registered_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    approved_at TIMESTAMP WITH TIME ZONE,
    approved_by BIGINT REFERENCES users(user_id) ON DELETE SET NULL,
    UNIQUE (organization_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_voters_pending
    ON voters(organization_id) WHERE is_approved = FALSE;

-- ============================================
-- VOTES
-- ============================================
CREATE TABLE IF NOT EXISTS votes (
    vote_id BIGSERIAL PRIMARY KEY,
    race_id BIGINT NOT NULL REFERENCES election_races(race_id) ON DELETE CASCADE,
    candidate_race_id BIGINT NOT NULL REFERENCES candidate_races(candidate_race_id) ON DELETE CASCADE,
    voter_user_id BIGINT NOT NULL REFERENCES users(user_id),
    channel VARCHAR(32) NOT NULL DEFAULT 'WEB',
    cast_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (race_id, candidate_race_id, voter_user_id)
);

CREATE INDEX IF NOT EXISTS idx_votes_race_voter ON votes(race_id, voter_user_id);
CREATE INDEX IF NOT EXISTS idx_votes_candidate_race ON votes(candidate_race_id);

-- Re-check the ballot rules at insert time under the same per-(voter, race)
-- advisory lock the vote service takes.
CREATE OR REPLACE FUNCTION enforce_vote_rules() RETURNS TRIGGER AS $$
DECLARE
    v_status VARCHAR(20);
    v_max_votes INTEGER;
    v_candidate_race BIGINT;
    v_candidate_approved BOOLEAN;
    v_count INTEGER;
BEGIN
    SELECT e.status, er.max_votes_per_voter
      INTO v_status, v_max_votes
      FROM election_races er
      JOIN elections e ON e.election_id = er.election_id
     WHERE er.race_id = NEW.race_id;

    IF v_status IS DISTINCT FROM 'OPEN' THEN
        RAISE EXCEPTION 'election not open for voting' USING ERRCODE = '55000';
    END IF;

    SELECT cr.race_id, c.is_approved
      INTO v_candidate_race, v_candidate_approved
      FROM candidate_races cr
      JOIN candidates c ON c.candidate_id = cr.candidate_id
     WHERE cr.candidate_race_id = NEW.candidate_race_id;

    IF v_candidate_race IS DISTINCT FROM NEW.race_id OR NOT v_candidate_approved THEN
        RAISE EXCEPTION 'candidate not found in this race' USING ERRCODE = 'P0002';
    END IF;

    PERFORM pg_advisory_xact_lock(7401, hashtext(NEW.voter_user_id::text || ':' || NEW.race_id::text));

    SELECT COUNT(*) INTO v_count
      FROM votes
     WHERE race_id = NEW.race_id AND voter_user_id = NEW.voter_user_id;

    IF v_count >= v_max_votes THEN
        RAISE EXCEPTION 'maximum votes reached' USING ERRCODE = '23000';
    END IF;

    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_votes_rules ON votes;
CREATE TRIGGER trg_votes_rules
    BEFORE INSERT ON votes
    FOR EACH ROW EXECUTE FUNCTION enforce_vote_rules();

-- Votes are immutable; deletion only happens by cascade from a race or election.
CREATE OR REPLACE FUNCTION forbid_vote_changes() RETURNS TRIGGER AS $$
BEGIN
    IF TG_OP = 'DELETE' AND pg_trigger_depth() > 1 THEN
        RETURN OLD;
    END IF;
    RAISE EXCEPTION 'votes cannot be modified' USING ERRCODE = '55000';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_votes_immutable ON votes;
CREATE TRIGGER trg_votes_immutable
    BEFORE UPDATE OR DELETE ON votes
    FOR EACH ROW EXECUTE FUNCTION forbid_vote_changes();
"""

DOWNGRADE_SQL = """
-- Dropping the tables drops their triggers
DROP TABLE IF EXISTS votes CASCADE;
DROP TABLE IF EXISTS voters CASCADE;
DROP TABLE IF EXISTS candidate_races CASCADE;
DROP TABLE IF EXISTS candidates CASCADE;
DROP TABLE IF EXISTS election_races CASCADE;
DROP TABLE IF EXISTS elections CASCADE;
DROP TABLE IF EXISTS org_members CASCADE;
DROP TABLE IF EXISTS organizations CASCADE;
DROP TABLE IF EXISTS users CASCADE;

DROP FUNCTION IF EXISTS forbid_vote_changes();
DROP FUNCTION IF EXISTS enforce_vote_rules();
DROP FUNCTION IF EXISTS enforce_election_transition();
"""


def upgrade() -> None:
    """Create organization, election, race, candidate, voter and vote tables."""
    op.execute(UPGRADE_SQL)


def downgrade() -> None:
    """Drop the ballot schema."""
    op.execute(DOWNGRADE_SQL)
