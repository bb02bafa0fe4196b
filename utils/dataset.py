"""
Sample dataset installation for reactive query benchmarks.

Creates the scores table, seeds exactly `scores_count` rows with ids
1..scores_count, and installs the trigger used by the LISTEN/NOTIFY change
feeds. The trigger is created after seeding so the seed rows do not flood
the notification channel.
"""

import logging
import time
from typing import List

import psycopg

from core.workload import DatasetSettings, class_expression
from utils.db_connection import get_single_connection

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = 'score_changes'


def _row_json(settings: DatasetSettings, ref: str) -> str:
    return (
        f"json_build_object("
        f"'score_id', {ref}.id, "
        f"'class_id', {class_expression(settings, f'{ref}.assignment_id')}, "
        f"'assignment_id', {ref}.assignment_id, "
        f"'student_id', {ref}.student_id, "
        f"'score', {ref}.score)"
    )


def schema_statements(settings: DatasetSettings) -> List[str]:
    return [
        "DROP TABLE IF EXISTS scores",
        """
        CREATE TABLE scores (
            id INTEGER PRIMARY KEY,
            assignment_id INTEGER NOT NULL,
            student_id INTEGER NOT NULL,
            score INTEGER NOT NULL
        )
        """,
        f"CREATE INDEX idx_scores_class ON scores ({class_expression(settings)})",
    ]


def seed_statement(settings: DatasetSettings) -> str:
    """One score per (assignment, student of the assignment's class)."""
    spc = settings.students_per_class
    return f"""
        INSERT INTO scores (id, assignment_id, student_id, score)
        SELECT
            (a - 1) * {spc} + k,
            a,
            ((((a - 1) % {settings.class_count}) * {spc} + k - 1) % {settings.student_count}) + 1,
            floor(random() * 100)::int + 1
        FROM generate_series(1, {settings.assign_count}) AS a,
             generate_series(1, {spc}) AS k
    """


def trigger_statements(settings: DatasetSettings, channel: str = NOTIFY_CHANNEL) -> List[str]:
    return [
        f"""
        CREATE OR REPLACE FUNCTION notify_score_change() RETURNS trigger AS $$
        DECLARE
            new_row json;
            old_row json;
        BEGIN
            IF TG_OP IN ('INSERT', 'UPDATE') THEN
                new_row := {_row_json(settings, 'NEW')};
            END IF;
            IF TG_OP IN ('UPDATE', 'DELETE') THEN
                old_row := {_row_json(settings, 'OLD')};
            END IF;
            PERFORM pg_notify('{channel}', json_build_object(
                'op', lower(TG_OP), 'new', new_row, 'old', old_row)::text);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
        """,
        "DROP TRIGGER IF EXISTS scores_notify ON scores",
        """
        CREATE TRIGGER scores_notify
        AFTER INSERT OR UPDATE OR DELETE ON scores
        FOR EACH ROW EXECUTE FUNCTION notify_score_change()
        """,
    ]


def install_dataset(conninfo: str, settings: DatasetSettings, seed: float = 0.5) -> int:
    """
    Install the sample dataset.

    Args:
        conninfo: Postgres connection string
        settings: Dataset settings
        seed: Seed for Postgres random() so scores are reproducible (-1..1)

    Returns:
        Number of seeded rows

    Raises:
        psycopg.Error: On any failure (fatal for the run)
    """
    start = time.time()
    with get_single_connection(conninfo, autocommit=False) as conn:
        with conn.transaction():
            for statement in schema_statements(settings):
                conn.execute(statement)
            conn.execute("SELECT setseed(%s)", (seed,))
            seeded = conn.execute(seed_statement(settings)).rowcount
            for statement in trigger_statements(settings):
                conn.execute(statement)
        conn.execute("ANALYZE scores")

    if seeded != settings.scores_count:
        raise RuntimeError(f"Seeded {seeded} scores, expected {settings.scores_count}")

    logger.info(f"Installed {seeded:,} scores in {time.time() - start:.1f}s")
    return seeded


def reset_statement() -> str:
    """Drop rows inserted by earlier runs so new insert ids start free."""
    return "DELETE FROM scores WHERE id > %s"


def reset_dataset(conninfo: str, settings: DatasetSettings) -> int:
    """
    Return an installed dataset to its seeded id range.

    Returns:
        Number of rows removed
    """
    with get_single_connection(conninfo) as conn:
        removed = conn.execute(reset_statement(), (settings.scores_count,)).rowcount
    if removed:
        logger.info(f"Removed {removed:,} scores left over from earlier runs")
    return removed


def dataset_matches(settings: DatasetSettings, seeded_count: int, seeded_max, extra_count: int) -> bool:
    """
    True if the table holds exactly the seeded ids 1..scores_count.

    Seeded rows deleted by an earlier run cannot be restored without a
    reinstall.
    """
    return (
        seeded_count == settings.scores_count
        and seeded_max == settings.scores_count
        and extra_count == 0
    )


def verify_dataset(conninfo: str, settings: DatasetSettings) -> bool:
    """Check that the table holds exactly the seeded range."""
    try:
        with get_single_connection(conninfo) as conn:
            seeded_count, seeded_max, extra_count = conn.execute(
                "SELECT count(*) FILTER (WHERE id <= %(n)s), "
                "max(id) FILTER (WHERE id <= %(n)s), "
                "count(*) FILTER (WHERE id > %(n)s) FROM scores",
                {n: settings.scores_count},
            ).fetchone()
    except psycopg.Error as e:
        logger.error(f"Dataset verification failed: {e}")
        return False
    return dataset_matches(settings, seeded_count, seeded_max, extra_count)
