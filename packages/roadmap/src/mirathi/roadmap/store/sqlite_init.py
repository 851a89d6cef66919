"""SQLite 数据库初始化

PRAGMA 配置 + roadmaps / roadmap_tasks / roadmap_events 三张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# roadmaps 表：聚合根（不含任务集合），data 为完整 JSON，其余列用于查询
_ROADMAPS_DDL = """
CREATE TABLE IF NOT EXISTS roadmaps (
    roadmap_id     TEXT PRIMARY KEY,
    case_id        TEXT NOT NULL UNIQUE,
    current_phase  TEXT NOT NULL,
    status         TEXT NOT NULL,
    percent_complete INTEGER NOT NULL DEFAULT 0,
    overdue_tasks  INTEGER NOT NULL DEFAULT 0,
    version        INTEGER NOT NULL DEFAULT 1,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL,
    data           TEXT NOT NULL DEFAULT '{}'
);
"""

_ROADMAPS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_roadmaps_phase ON roadmaps(current_phase);",
    "CREATE INDEX IF NOT EXISTS idx_roadmaps_status ON roadmaps(status);",
]

# roadmap_tasks 表：任务集合，随 roadmap 整体重写
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS roadmap_tasks (
    task_id      TEXT PRIMARY KEY,
    roadmap_id   TEXT NOT NULL,
    position     INTEGER NOT NULL,
    short_code   TEXT NOT NULL,
    phase        TEXT NOT NULL,
    status       TEXT NOT NULL,
    is_overdue   INTEGER NOT NULL DEFAULT 0,
    data         TEXT NOT NULL DEFAULT '{}',

    FOREIGN KEY (roadmap_id) REFERENCES roadmaps(roadmap_id) ON DELETE CASCADE
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_roadmap_tasks_roadmap ON roadmap_tasks(roadmap_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_roadmap_tasks_overdue ON roadmap_tasks(is_overdue);",
]

# roadmap_events 表：append-only
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS roadmap_events (
    event_id    TEXT PRIMARY KEY,
    roadmap_id  TEXT NOT NULL,
    seq         INTEGER NOT NULL,
    ts          TEXT NOT NULL,
    type        TEXT NOT NULL,
    actor       TEXT NOT NULL,
    actor_id    TEXT NOT NULL DEFAULT '',
    task_id     TEXT,
    payload     TEXT NOT NULL DEFAULT '{}',

    FOREIGN KEY (roadmap_id) REFERENCES roadmaps(roadmap_id)
);
"""

_EVENTS_INDEXES = [
    # roadmap 内事件序号唯一约束（确保 seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_roadmap_events_seq ON roadmap_events(roadmap_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_roadmap_events_task ON roadmap_events(task_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_ROADMAPS_DDL)
    await conn.execute(_TASKS_DDL)
    await conn.execute(_EVENTS_DDL)

    for idx_sql in _ROADMAPS_INDEXES + _TASKS_INDEXES + _EVENTS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
