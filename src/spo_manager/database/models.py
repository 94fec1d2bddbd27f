"""Database schema definitions for task definitions and task results."""

SCHEMA_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        kind TEXT NOT NULL,
        definition TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );""",
    """CREATE TABLE IF NOT EXISTS task_results (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT UNIQUE NOT NULL,
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        kind TEXT NOT NULL,
        executed_at TIMESTAMP NOT NULL,
        completed_at TIMESTAMP,
        total_sites INTEGER DEFAULT 0,
        successful_sites INTEGER DEFAULT 0,
        failed_sites INTEGER DEFAULT 0,
        payload TEXT NOT NULL,
        UNIQUE (task_id, executed_at)
    );""",
]

INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_kind ON tasks(kind);",
    "CREATE INDEX IF NOT EXISTS idx_task_results_task ON task_results(task_id, executed_at DESC, seq DESC);",
]
