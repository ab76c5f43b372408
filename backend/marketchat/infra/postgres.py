"""AsyncPG pool management for the backend."""

from __future__ import annotations

from typing import Optional

import asyncpg

from marketchat.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


class PoolUnavailable(RuntimeError):
	"""No pool could be created for the configured database."""


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl="require" if settings.postgres_ssl else "disable",
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	if _pool is None:
		raise PoolUnavailable("postgres pool not initialised")
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


# Errors that mean the store itself is unavailable rather than the request being wrong.
STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PoolAccessor:
	"""Resolve the shared pool once, remembering when Postgres is unavailable."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool: Optional[asyncpg.pool.Pool] = None

	async def pool_or_none(self) -> Optional[asyncpg.pool.Pool]:
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			self._pool = await get_pool()
		except (PoolUnavailable, *STORAGE_ERRORS):
			self._pool = None
		return self._pool
