"""PostgreSQL schema definitions for session records and user profiles."""

# Helper function for auto-updating timestamps
CREATE_UPDATED_AT_TRIGGER = """
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

# Session records - one row per archived remote conversation
CREATE_SESSION_RECORDS_TABLE = """
CREATE TABLE IF NOT EXISTS session_records (
    id UUID PRIMARY KEY,
    user_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL UNIQUE,
    agent_id TEXT,
    audio_path TEXT,
    audio_mime_type VARCHAR(100),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_session_records_user_id ON session_records(user_id);
CREATE INDEX IF NOT EXISTS idx_session_records_created_at ON session_records(created_at);

DROP TRIGGER IF EXISTS update_session_records_updated_at ON session_records;
CREATE TRIGGER update_session_records_updated_at
    BEFORE UPDATE ON session_records
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
"""

# User profiles - source of the dynamic variables passed to agents
CREATE_USER_PROFILES_TABLE = """
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    first_name TEXT,
    primary_goal TEXT,
    coaching_style TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

DROP TRIGGER IF EXISTS update_user_profiles_updated_at ON user_profiles;
CREATE TRIGGER update_user_profiles_updated_at
    BEFORE UPDATE ON user_profiles
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
"""

# Complete schema initialization - executes in order
INIT_SCHEMA = f"""
{CREATE_UPDATED_AT_TRIGGER}
{CREATE_SESSION_RECORDS_TABLE}
{CREATE_USER_PROFILES_TABLE}
"""
