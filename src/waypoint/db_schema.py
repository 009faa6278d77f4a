"""Database schema definitions for the waypoint checkpoint store.

Contains the canonical SQL schema, the legacy V1 and V2 schemas (for migration
tests), and the current schema version constant.
"""

from __future__ import annotations

_PHASE_CHECK = "CHECK (phase IN ('research', 'implement', 'review', 'finalize', 'planning', 'execute', 'merge', 'cleanup'))"
_STATUS_CHECK = "CHECK (status IN ('running', 'paused', 'completed', 'failed'))"

_LOG_TABLES_SQL = """\
CREATE TABLE IF NOT EXISTS actions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    action      TEXT NOT NULL,
    result      TEXT NOT NULL,
    metadata    TEXT,
    created_at  TEXT NOT NULL,
    CHECK (result IN ('success', 'failed', 'pending'))
);

CREATE INDEX IF NOT EXISTS idx_actions_workflow ON actions(workflow_id, created_at, id);

CREATE TABLE IF NOT EXISTS commits (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    sha         TEXT NOT NULL,
    message     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_commits_workflow ON commits(workflow_id, created_at, id);

CREATE TABLE IF NOT EXISTS milestones (
    id                      TEXT PRIMARY KEY,
    name                    TEXT NOT NULL,
    github_milestone_number INTEGER,
    phase                   TEXT NOT NULL DEFAULT 'planning',
    status                  TEXT NOT NULL DEFAULT 'running',
    created_at              TEXT NOT NULL,
    updated_at              TEXT NOT NULL,
    CHECK (phase IN ('planning', 'execute', 'review', 'merge', 'cleanup')),
    CHECK (status IN ('running', 'paused', 'completed', 'failed'))
);

CREATE INDEX IF NOT EXISTS idx_milestones_name ON milestones(name, created_at);
CREATE INDEX IF NOT EXISTS idx_milestones_status ON milestones(status);

CREATE TABLE IF NOT EXISTS baselines (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    milestone_id        TEXT NOT NULL UNIQUE REFERENCES milestones(id) ON DELETE CASCADE,
    captured_at         TEXT NOT NULL,
    lint_exit_code      INTEGER NOT NULL DEFAULT 0,
    lint_warnings       INTEGER NOT NULL DEFAULT 0,
    lint_errors         INTEGER NOT NULL DEFAULT 0,
    typecheck_exit_code INTEGER NOT NULL DEFAULT 0,
    typecheck_errors    INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS milestone_workflows (
    milestone_id TEXT NOT NULL REFERENCES milestones(id) ON DELETE CASCADE,
    workflow_id  TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    wave_number  INTEGER,
    PRIMARY KEY (milestone_id, workflow_id)
);

CREATE INDEX IF NOT EXISTS idx_milestone_workflows_workflow ON milestone_workflows(workflow_id);

CREATE TABLE IF NOT EXISTS task_snapshots (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    seq            INTEGER NOT NULL UNIQUE,
    workflow_id    TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    phase          TEXT NOT NULL,
    task_id        TEXT NOT NULL,
    subject        TEXT NOT NULL,
    status         TEXT NOT NULL,
    metadata       TEXT,
    parent_task_id TEXT,
    captured_at    TEXT NOT NULL,
    CHECK (status IN ('pending', 'in_progress', 'completed'))
);

CREATE INDEX IF NOT EXISTS idx_task_snapshots_task ON task_snapshots(task_id, seq);
CREATE INDEX IF NOT EXISTS idx_task_snapshots_parent ON task_snapshots(parent_task_id);
CREATE INDEX IF NOT EXISTS idx_task_snapshots_workflow ON task_snapshots(workflow_id, seq);

CREATE TABLE IF NOT EXISTS context_metrics (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id         TEXT NOT NULL UNIQUE,
    issue_number       INTEGER,
    files_read         INTEGER NOT NULL DEFAULT 0,
    compacted          INTEGER NOT NULL DEFAULT 0,
    duration_minutes   INTEGER,
    review_findings    TEXT,
    learnings_injected INTEGER NOT NULL DEFAULT 0,
    learnings_captured INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_context_metrics_issue ON context_metrics(issue_number, created_at);
"""

# One statement, so migrate_v2_to_v3 can run it with conn.execute().
GRAPH_QUERIES_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS graph_queries (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id   TEXT NOT NULL,
    workflow_id  TEXT,
    query_type   TEXT NOT NULL,
    query_params TEXT NOT NULL DEFAULT '',
    result_count INTEGER NOT NULL DEFAULT 0,
    duration_ms  INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL
)"""

_GRAPH_QUERIES_SQL = f"""\
{GRAPH_QUERIES_TABLE_SQL};

CREATE INDEX IF NOT EXISTS idx_graph_queries_session ON graph_queries(session_id, created_at);
CREATE INDEX IF NOT EXISTS idx_graph_queries_type ON graph_queries(query_type);
"""

# Schema before graph query metrics were recorded. Used by migration tests.
SCHEMA_V2_SQL = f"""\
CREATE TABLE IF NOT EXISTS workflows (
    id           TEXT PRIMARY KEY,
    issue_number INTEGER NOT NULL,
    branch       TEXT NOT NULL,
    worktree     TEXT,
    phase        TEXT NOT NULL DEFAULT 'research',
    status       TEXT NOT NULL DEFAULT 'running',
    retry_count  INTEGER NOT NULL DEFAULT 0,
    archetype    TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    {_PHASE_CHECK},
    {_STATUS_CHECK},
    CHECK (archetype IS NULL OR archetype IN ('gated', 'phased'))
);

CREATE INDEX IF NOT EXISTS idx_workflows_issue ON workflows(issue_number, created_at);
CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows(status, updated_at);
CREATE INDEX IF NOT EXISTS idx_workflows_archetype ON workflows(archetype);

{_LOG_TABLES_SQL}"""

# Schema as shipped before archetypes were stored. Used by migration tests.
SCHEMA_V1_SQL = f"""\
CREATE TABLE IF NOT EXISTS workflows (
    id           TEXT PRIMARY KEY,
    issue_number INTEGER NOT NULL,
    branch       TEXT NOT NULL,
    worktree     TEXT,
    phase        TEXT NOT NULL DEFAULT 'research',
    status       TEXT NOT NULL DEFAULT 'running',
    retry_count  INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    {_PHASE_CHECK},
    {_STATUS_CHECK}
);

CREATE INDEX IF NOT EXISTS idx_workflows_issue ON workflows(issue_number, created_at);
CREATE INDEX IF NOT EXISTS idx_workflows_status ON workflows(status, updated_at);

{_LOG_TABLES_SQL}"""

SCHEMA_SQL = SCHEMA_V2_SQL + "\n" + _GRAPH_QUERIES_SQL

CURRENT_SCHEMA_VERSION = 3
