SCHEMA_VERSION = 1

# Monetary columns are base-10 TEXT: amounts exceed 64-bit range in
# 18-decimal fixed point, so arithmetic happens on Python ints.
SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Per-user aggregated stats
CREATE TABLE IF NOT EXISTS user_stats (
    address                 TEXT PRIMARY KEY,
    total_buys              TEXT NOT NULL DEFAULT '0',
    total_sells             TEXT NOT NULL DEFAULT '0',
    total_fees_paid         TEXT NOT NULL DEFAULT '0',
    user_pool_contribution  TEXT NOT NULL DEFAULT '0',
    swap_count              INTEGER NOT NULL DEFAULT 0,
    last_swap_time          INTEGER,
    total_airdrops_received TEXT NOT NULL DEFAULT '0',
    referral_code           TEXT NOT NULL UNIQUE,
    referred_by             TEXT,
    referral_count          INTEGER NOT NULL DEFAULT 0,
    referral_earnings       TEXT NOT NULL DEFAULT '0',
    created_at              REAL NOT NULL,
    updated_at              REAL NOT NULL
);

-- Per (user, token) cost-basis positions
CREATE TABLE IF NOT EXISTS token_positions (
    user_address  TEXT NOT NULL,
    token_address TEXT NOT NULL,
    total_bought  TEXT NOT NULL DEFAULT '0',
    total_sold    TEXT NOT NULL DEFAULT '0',
    cost_basis    TEXT NOT NULL DEFAULT '0',
    realized_pnl  TEXT NOT NULL DEFAULT '0',
    updated_at    REAL NOT NULL,
    PRIMARY KEY (user_address, token_address)
);

-- Daily reward pool, one row per UTC date
CREATE TABLE IF NOT EXISTS daily_pools (
    date                TEXT PRIMARY KEY,
    total_user_fees     TEXT NOT NULL DEFAULT '0',
    total_treasury_fees TEXT NOT NULL DEFAULT '0',
    distributed         INTEGER NOT NULL DEFAULT 0,
    distributed_at      REAL,
    created_at          REAL NOT NULL
);

-- One row per payout attempt
CREATE TABLE IF NOT EXISTS distribution_records (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_date         TEXT NOT NULL,
    recipient_address TEXT NOT NULL,
    amount            TEXT NOT NULL,
    rank              INTEGER NOT NULL,
    payment_reference TEXT,
    outcome           TEXT NOT NULL DEFAULT 'pending' CHECK (outcome IN ('pending', 'succeeded', 'failed')),
    error             TEXT NOT NULL DEFAULT '',
    created_at        REAL NOT NULL,
    updated_at        REAL NOT NULL,
    FOREIGN KEY (pool_date) REFERENCES daily_pools(date),
    UNIQUE (pool_date, recipient_address)
);

-- Referral relationships: a user is referred at most once
CREATE TABLE IF NOT EXISTS referrals (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    referrer_address TEXT NOT NULL,
    referred_address TEXT NOT NULL UNIQUE,
    timestamp        INTEGER NOT NULL
);

-- Applied swaps, keyed by transaction id (replay dedup key)
CREATE TABLE IF NOT EXISTS swaps (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id            TEXT NOT NULL UNIQUE,
    block_number     INTEGER NOT NULL,
    log_index        INTEGER NOT NULL,
    timestamp        INTEGER NOT NULL,
    token_address    TEXT NOT NULL,
    trader_address   TEXT NOT NULL,
    side             TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
    amount_in        TEXT NOT NULL,
    amount_out       TEXT NOT NULL,
    fee_total        TEXT NOT NULL,
    user_fee         TEXT NOT NULL,
    treasury_fee     TEXT NOT NULL,
    referrer_address TEXT,
    referral_fee     TEXT NOT NULL DEFAULT '0'
);

-- Launched tokens
CREATE TABLE IF NOT EXISTS tokens (
    token_address    TEXT PRIMARY KEY,
    creator          TEXT NOT NULL,
    name             TEXT NOT NULL DEFAULT '',
    symbol           TEXT NOT NULL DEFAULT '',
    launch_block     INTEGER NOT NULL,
    launched_at      INTEGER NOT NULL,
    graduated        INTEGER NOT NULL DEFAULT 0,
    liquidity_amount TEXT,
    treasury_fee     TEXT,
    graduated_at     INTEGER,
    delisted         INTEGER NOT NULL DEFAULT 0,
    delist_reason    TEXT NOT NULL DEFAULT ''
);

-- Indexer cursor and other singleton state
CREATE TABLE IF NOT EXISTS indexer_state (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at REAL NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_swaps_trader ON swaps(trader_address);
CREATE INDEX IF NOT EXISTS idx_swaps_token ON swaps(token_address);
CREATE INDEX IF NOT EXISTS idx_swaps_block ON swaps(block_number);
CREATE INDEX IF NOT EXISTS idx_referrals_referrer ON referrals(referrer_address);
CREATE INDEX IF NOT EXISTS idx_positions_user ON token_positions(user_address);
CREATE INDEX IF NOT EXISTS idx_tokens_creator ON tokens(creator);
CREATE INDEX IF NOT EXISTS idx_tokens_active ON tokens(graduated, delisted);
CREATE INDEX IF NOT EXISTS idx_distributions_outcome ON distribution_records(outcome);
CREATE INDEX IF NOT EXISTS idx_pools_distributed ON daily_pools(distributed);
"""
