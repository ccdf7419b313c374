from contextlib import contextmanager

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool


def create_pool(conninfo: str, min_size: int = 1, max_size: int = 4, timeout_s: float = 5.0) -> ConnectionPool:
    """
    Build the remote-store pool.

    `timeout_s` bounds connecting, waiting for a pooled connection, and each
    statement, so an unreachable or stalled server surfaces as an
    OperationalError instead of hanging the till.
    """
    timeout_s = max(1.0, float(timeout_s or 5.0))
    return ConnectionPool(
        conninfo=conninfo,
        min_size=max(0, int(min_size)),
        max_size=max(1, int(max_size)),
        timeout=timeout_s,
        kwargs={
            "row_factory": dict_row,
            "connect_timeout": int(timeout_s),
            "options": f"-c statement_timeout={int(timeout_s * 1000)}",
        },
        open=True,
    )


@contextmanager
def pooled_conn(pool):
    # `with pooled_conn(pool) as conn:` commits on success, rolls back on
    # exception, and returns the connection to the pool.
    with pool.connection() as conn:
        with conn:
            yield conn


def close_pool(pool) -> None:
    # Best-effort shutdown hook.
    try:
        pool.close()
    except Exception:
        pass
