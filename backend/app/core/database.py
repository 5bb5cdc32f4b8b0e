"""
Conexión a base de datos PostgreSQL

Este módulo centraliza el acceso a la base de datos vía psycopg2:
- Conexiones directas (tuplas o diccionarios con RealDictCursor)
- Conexiones con reintentos ante caídas SSL intermitentes
- Transacciones explícitas para la creación de pedidos

Author: TM3
Updated: 2025-10-17
"""
import time
import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from .config import settings

logger = logging.getLogger(__name__)

CONNECTION_TIMEOUT = settings.DB_CONNECT_TIMEOUT


def _database_url() -> str:
    database_url = settings.DATABASE_URL
    if not database_url:
        raise RuntimeError("DATABASE_URL not configured")
    return database_url


def get_db_connection():
    """
    Get a direct psycopg2 database connection (returns tuples)

    Returns:
        psycopg2 connection object

    Raises:
        RuntimeError if DATABASE_URL is not configured
    """
    return psycopg2.connect(_database_url(), connect_timeout=CONNECTION_TIMEOUT)


def get_db_connection_dict():
    """
    Get a database connection with RealDictCursor (returns dictionaries)

    Use this for repositories: rows map straight onto domain models.

    Example:
        conn = get_db_connection_dict()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM orders")
        results = cursor.fetchall()  # Returns list of dicts
        cursor.close()
        conn.close()
    """
    return psycopg2.connect(
        _database_url(),
        cursor_factory=RealDictCursor,
        connect_timeout=CONNECTION_TIMEOUT,
    )


def get_db_connection_with_retry(max_retries=3, retry_delay=1.0, dict_cursor=False):
    """
    Get a psycopg2 connection with automatic retry on SSL/connection failures

    Retries failed connections up to max_retries times with exponential
    backoff between attempts.

    Args:
        max_retries: Maximum number of connection attempts (default: 3)
        retry_delay: Initial delay between retries in seconds (default: 1.0)
        dict_cursor: Use RealDictCursor for the connection

    Returns:
        psycopg2 connection object

    Raises:
        psycopg2.OperationalError: If all retry attempts fail
    """
    database_url = _database_url()
    connect_kwargs = {"connect_timeout": CONNECTION_TIMEOUT}
    if dict_cursor:
        connect_kwargs["cursor_factory"] = RealDictCursor

    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.debug(f"Database connection attempt {attempt}/{max_retries}")
            conn = psycopg2.connect(database_url, **connect_kwargs)

            # Test connection with a simple query
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()

            logger.debug(f"Database connection successful on attempt {attempt}")
            return conn

        except psycopg2.OperationalError as e:
            last_error = e
            error_msg = str(e)

            if "SSL connection has been closed unexpectedly" in error_msg:
                logger.warning(f"SSL connection error on attempt {attempt}/{max_retries}: {error_msg}")
            else:
                logger.warning(f"Connection error on attempt {attempt}/{max_retries}: {error_msg}")

            if attempt < max_retries:
                delay = retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retrying in {delay:.2f} seconds...")
                time.sleep(delay)
            else:
                logger.error(f"All {max_retries} connection attempts failed")
                raise

    raise last_error if last_error else RuntimeError("Connection failed after all retries")


@contextmanager
def transaction():
    """
    Context manager yielding a dict connection inside a single transaction.

    Commits on success, rolls back on any exception and always closes.

    Usage:
        with transaction() as conn:
            order_repo.create(order, conn=conn)
            product_repo.decrement_stock(..., conn=conn)
    """
    conn = get_db_connection_with_retry(dict_cursor=True)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
