# db/session.py
from __future__ import annotations

import os
import pathlib
from typing import Any, Dict, Iterable

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from common.logging_config import get_logger

_log = get_logger("db")


def _load_env_files(candidates: Iterable[str]) -> None:
    """
    Load env files from both CWD and project root (relative to this file),
    without overriding values already provided by the platform.
    """
    here = pathlib.Path(__file__).resolve()
    roots = {
        pathlib.Path.cwd(),
        here.parent.parent,
    }
    for fname in candidates:
        for root in roots:
            p = root / fname
            if p.exists():
                load_dotenv(p, override=False)


_load_env_files((".env.local", "env.local", ".env"))

# sqlite+aiosqlite keeps local runs and tests free of a Postgres server
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./classroom.db")


def _connect_args(url: str) -> Dict[str, Any]:
    if not url.startswith("postgresql"):
        return {}
    sslmode = os.getenv("DB_SSLMODE", "disable").lower()
    if sslmode in ("require", "verify-ca", "verify-full"):
        # asyncpg: disable the statement cache so enum OIDs never go stale
        return {"ssl": "require", "statement_cache_size": 0}
    return {"statement_cache_size": 0}


def make_engine(url: str):
    _log.info("Creating engine for %s", url.split("@")[-1])
    return create_async_engine(
        url,
        pool_pre_ping=True,
        echo=bool(os.getenv("SQL_ECHO")),
        connect_args=_connect_args(url),
    )


engine = make_engine(DATABASE_URL)

Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
