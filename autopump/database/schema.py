"""Database schema for the claim → buyback → burn ledger."""

SCHEMA_SQL = """
-- Fee claims; amounts in lamports
CREATE TABLE IF NOT EXISTS claims (
  id SERIAL PRIMARY KEY,
  signature VARCHAR(88) UNIQUE NOT NULL,
  claimed_amount BIGINT NOT NULL,
  treasury_amount BIGINT NOT NULL,
  buyback_amount BIGINT NOT NULL,
  timestamp TIMESTAMP NOT NULL DEFAULT NOW(),
  block_number BIGINT,
  status VARCHAR(20) NOT NULL DEFAULT 'pending',
  error_message TEXT,
  CONSTRAINT claims_status_check CHECK (status IN ('pending', 'confirmed', 'failed')),
  CONSTRAINT claims_split_check CHECK (treasury_amount + buyback_amount <= claimed_amount)
);

-- Token buybacks; tokens_purchased in raw base units, sol_spent in lamports
CREATE TABLE IF NOT EXISTS buybacks (
  id SERIAL PRIMARY KEY,
  claim_id INTEGER REFERENCES claims(id) ON DELETE CASCADE,
  signature VARCHAR(88) UNIQUE NOT NULL,
  tokens_purchased NUMERIC(30, 0) NOT NULL,
  sol_spent BIGINT NOT NULL,
  timestamp TIMESTAMP NOT NULL DEFAULT NOW(),
  status VARCHAR(20) NOT NULL DEFAULT 'pending',
  error_message TEXT,
  CONSTRAINT buybacks_status_check CHECK (status IN ('pending', 'confirmed', 'failed'))
);

-- Burns to the incinerator; tokens_burned in display units
CREATE TABLE IF NOT EXISTS burns (
  id SERIAL PRIMARY KEY,
  buyback_id INTEGER REFERENCES buybacks(id) ON DELETE CASCADE,
  signature VARCHAR(88) UNIQUE NOT NULL,
  tokens_burned NUMERIC(40, 18) NOT NULL,
  timestamp TIMESTAMP NOT NULL DEFAULT NOW(),
  status VARCHAR(20) NOT NULL DEFAULT 'pending',
  error_message TEXT,
  CONSTRAINT burns_status_check CHECK (status IN ('pending', 'confirmed', 'failed'))
);

-- Append-only log of monitoring checks; lamports
CREATE TABLE IF NOT EXISTS monitor_checks (
  id SERIAL PRIMARY KEY,
  claimable_fees BIGINT NOT NULL,
  threshold BIGINT NOT NULL,
  triggered BOOLEAN NOT NULL DEFAULT false,
  timestamp TIMESTAMP NOT NULL DEFAULT NOW(),
  notes TEXT
);

CREATE TABLE IF NOT EXISTS system_status (
  id INTEGER PRIMARY KEY DEFAULT 1,
  is_paused BOOLEAN NOT NULL DEFAULT false,
  last_check_timestamp TIMESTAMP,
  total_checks INTEGER NOT NULL DEFAULT 0,
  total_claims INTEGER NOT NULL DEFAULT 0,
  error_count INTEGER NOT NULL DEFAULT 0,
  last_error TEXT,
  last_error_timestamp TIMESTAMP,
  updated_at TIMESTAMP NOT NULL DEFAULT NOW(),
  CONSTRAINT single_row CHECK (id = 1)
);

INSERT INTO system_status (id) VALUES (1) ON CONFLICT (id) DO NOTHING;

CREATE INDEX IF NOT EXISTS idx_claims_timestamp ON claims(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status);
CREATE INDEX IF NOT EXISTS idx_buybacks_claim_id ON buybacks(claim_id);
CREATE INDEX IF NOT EXISTS idx_buybacks_timestamp ON buybacks(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_burns_buyback_id ON burns(buyback_id);
CREATE INDEX IF NOT EXISTS idx_burns_timestamp ON burns(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_monitor_checks_timestamp ON monitor_checks(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_monitor_checks_triggered ON monitor_checks(triggered);

CREATE OR REPLACE VIEW stats_total AS
SELECT
  COALESCE(SUM(claimed_amount), 0) AS total_claimed_fees,
  COALESCE(SUM(treasury_amount), 0) AS total_treasury_transferred,
  COALESCE(SUM(buyback_amount), 0) AS total_buyback_spent,
  COUNT(*) AS total_claims,
  COUNT(*) FILTER (WHERE status = 'confirmed') AS successful_claims,
  COUNT(*) FILTER (WHERE status = 'failed') AS failed_claims,
  MAX(timestamp) AS last_claim_timestamp
FROM claims;

CREATE OR REPLACE VIEW stats_buybacks AS
SELECT
  COALESCE(SUM(tokens_purchased), 0) AS total_tokens_purchased,
  COALESCE(SUM(sol_spent), 0) AS total_sol_spent,
  COUNT(*) AS total_buybacks,
  COUNT(*) FILTER (WHERE status = 'confirmed') AS successful_buybacks,
  COUNT(*) FILTER (WHERE status = 'failed') AS failed_buybacks
FROM buybacks;

CREATE OR REPLACE VIEW stats_burns AS
SELECT
  COALESCE(SUM(tokens_burned) FILTER (WHERE status = 'confirmed'), 0) AS total_tokens_burned,
  COUNT(*) AS total_burns,
  COUNT(*) FILTER (WHERE status = 'confirmed') AS successful_burns,
  COUNT(*) FILTER (WHERE status = 'failed') AS failed_burns
FROM burns;

CREATE OR REPLACE VIEW recent_activity AS
SELECT 'claim' AS type, signature, claimed_amount::NUMERIC AS amount, timestamp, status
FROM claims
UNION ALL
SELECT 'buyback' AS type, signature, sol_spent::NUMERIC AS amount, timestamp, status
FROM buybacks
UNION ALL
SELECT 'burn' AS type, signature, tokens_burned AS amount, timestamp, status
FROM burns
ORDER BY timestamp DESC
LIMIT 100;
"""
