"""
Configuration for the reactive query latency benchmark.

Values come from the environment (a local .env file is loaded first), with
defaults suitable for a local Postgres:

    PGHOST=127.0.0.1 PGUSER=postgres PGPASSWORD=pass python run_benchmark.py notify-full
"""

import os

from dotenv import load_dotenv

from core.workload import DatasetSettings, OperationKind

load_dotenv()


def _env_int(name, default):
    return int(os.getenv(name, default))


def _env_float(name, default):
    return float(os.getenv(name, default))


# =============================================================================
# Database Configuration
# =============================================================================

DATABASE_CONFIG = {
    'host': os.getenv('PGHOST', '127.0.0.1'),
    'port': _env_int('PGPORT', 5432),
    'database': os.getenv('PGDATABASE', 'postgres'),
    'user': os.getenv('PGUSER', 'postgres'),
    'password': os.getenv('PGPASSWORD', 'pass'),
    'sslmode': os.getenv('PGSSLMODE', 'prefer'),

    # Connection pool used by the mutation scheduler
    'pool_min_size': _env_int('POOL_MIN_SIZE', 4),
    'pool_max_size': _env_int('POOL_MAX_SIZE', 10),
}

# =============================================================================
# Workload Configuration (fixed dataset shape)
# =============================================================================

REACTIVE_QUERIES_COUNT = _env_int('REACTIVE_QUERIES_COUNT', 50)

WORKLOAD_CONFIG = {
    # Number of reactive queries; one per observed class
    'reactive_queries_count': REACTIVE_QUERIES_COUNT,
    'class_count': REACTIVE_QUERIES_COUNT * 4,
    'assignments_per_class': 30,
    'students_per_class': 20,
    'classes_per_student': 6,
}

# =============================================================================
# Benchmark Configuration
# =============================================================================

BENCHMARK_CONFIG = {
    # Mutations per second per kind (0 disables the stream)
    'insert_rate': _env_float('INSERT_RATE', 100),
    'update_rate': _env_float('UPDATE_RATE', 100),
    'delete_rate': _env_float('DELETE_RATE', 0),

    # Memory sampling and progress cadence (seconds)
    'sample_interval': 1.0,

    # Ledger entries older than this count as stale in the progress line
    'stale_threshold_ms': 5000,

    # Conflict avoidance for updates and deletes
    'recency_window': 1000,
    'recent_insert_margin': 1000,
    'max_attempts': 1000,

    # Worker threads submitting statements
    'max_workers': _env_int('MAX_WORKERS', 10),

    # Seed for the mutation generator and the dataset install
    'random_seed': _env_int('RANDOM_SEED', 42),

    'histogram_buckets': 50,

    # Keep measurements out of the measured process
    'measurement_process': True,
    'trace_memory': True,

    # Backend specific
    'poll_interval': _env_float('POLL_INTERVAL', 0.1),
    'notify_channel': os.getenv('NOTIFY_CHANNEL', 'score_changes'),
}

# =============================================================================
# Helper Functions
# =============================================================================

def get_connection_string(cfg=None):
    """Get PostgreSQL connection string"""
    cfg = cfg or DATABASE_CONFIG
    return (
        f"host={cfg['host']} "
        f"port={cfg['port']} "
        f"dbname={cfg['database']} "
        f"user={cfg['user']} "
        f"password={cfg['password']} "
        f"sslmode={cfg['sslmode']}"
    )


def get_dataset_settings(cfg=None):
    """Build DatasetSettings from the workload configuration"""
    cfg = cfg or WORKLOAD_CONFIG
    return DatasetSettings(
        class_count=cfg['class_count'],
        assignments_per_class=cfg['assignments_per_class'],
        students_per_class=cfg['students_per_class'],
        classes_per_student=cfg['classes_per_student'],
        reactive_queries_count=cfg['reactive_queries_count'],
    )


def get_mutation_rates(cfg=None):
    """Mutations per second keyed by OperationKind"""
    cfg = cfg or BENCHMARK_CONFIG
    return {
        OperationKind.INSERT: cfg['insert_rate'],
        OperationKind.UPDATE: cfg['update_rate'],
        OperationKind.DELETE: cfg['delete_rate'],
    }


def get_controller_options(cfg=None):
    """Options understood by RunController"""
    cfg = cfg or BENCHMARK_CONFIG
    keys = ('sample_interval', 'stale_threshold_ms', 'histogram_buckets', 'recency_window',
            'recent_insert_margin', 'max_attempts', 'max_workers', 'trace_memory')
    return {key: cfg[key] for key in keys}


def get_feed_config(db_cfg=None, cfg=None):
    """Configuration dict handed to the change feed backend"""
    cfg = cfg or BENCHMARK_CONFIG
    return {
        'conninfo': get_connection_string(db_cfg),
        'poll_interval': cfg['poll_interval'],
        'channel': cfg['notify_channel'],
    }


def validate_config(workload_cfg=None, benchmark_cfg=None):
    """
    Validate configuration values.

    Returns:
        List of issues (empty when valid)
    """
    workload_cfg = workload_cfg or WORKLOAD_CONFIG
    benchmark_cfg = benchmark_cfg or BENCHMARK_CONFIG
    issues = []

    try:
        settings = get_dataset_settings(workload_cfg)
    except ValueError as e:
        issues.append(str(e))
        settings = None

    for key in ('insert_rate', 'update_rate', 'delete_rate'):
        if benchmark_cfg[key] < 0:
            issues.append(f"{key} must not be negative")
    if all(benchmark_cfg[key] == 0 for key in ('insert_rate', 'update_rate', 'delete_rate')):
        issues.append("All mutation rates are zero")

    if benchmark_cfg['sample_interval'] <= 0:
        issues.append("sample_interval must be positive")
    if benchmark_cfg['histogram_buckets'] < 1:
        issues.append("histogram_buckets must be positive")

    if settings is not None and benchmark_cfg['recent_insert_margin'] >= settings.scores_count:
        issues.append(
            f"recent_insert_margin ({benchmark_cfg['recent_insert_margin']}) leaves no seeded "
            f"scores to update ({settings.scores_count} seeded)"
        )

    return issues


def print_config():
    """Print current configuration (masks sensitive values)"""
    settings = get_dataset_settings()
    print("=" * 80)
    print("CURRENT CONFIGURATION")
    print("=" * 80)

    print("\n🔧 Postgres:")
    print(f"   Host: {DATABASE_CONFIG['host']}:{DATABASE_CONFIG['port']}")
    print(f"   Database: {DATABASE_CONFIG['database']}")
    print(f"   User: {DATABASE_CONFIG['user']}")
    print(f"   Password: {'*' * len(DATABASE_CONFIG['password'])}")
    print(f"   Pool: {DATABASE_CONFIG['pool_min_size']}-{DATABASE_CONFIG['pool_max_size']} connections")

    print("\n📦 Dataset:")
    print(f"   Classes: {settings.class_count} ({settings.reactive_queries_count} observed)")
    print(f"   Assignments: {settings.assign_count:,}")
    print(f"   Students: {settings.student_count:,}")
    print(f"   Scores: {settings.scores_count:,}")

    print("\n📊 Benchmark:")
    print(f"   Inserts/s: {BENCHMARK_CONFIG['insert_rate']:g}")
    print(f"   Updates/s: {BENCHMARK_CONFIG['update_rate']:g}")
    print(f"   Deletes/s: {BENCHMARK_CONFIG['delete_rate']:g}")
    print(f"   Random seed: {BENCHMARK_CONFIG['random_seed']}")

    print("\n" + "=" * 80)


if __name__ == '__main__':
    print_config()
    print()
    problems = validate_config()
    if problems:
        print("⚠️  Configuration issues found:")
        for issue in problems:
            print(f"   - {issue}")
    else:
        print("✅ Configuration is valid!")
