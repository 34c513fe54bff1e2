"""Apply SQL migrations and seed the built-in templates and word bank.

Run with `python -m wordparty.infra.migrate`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import asyncpg

from wordparty.domain.games import template_bank
from wordparty.infra import postgres

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


async def apply_migrations(conn: asyncpg.Connection, directory: Path = MIGRATIONS_DIR) -> list[str]:
	applied: list[str] = []
	for path in sorted(directory.glob("*.sql")):
		await conn.execute(path.read_text(encoding="utf-8"))
		applied.append(path.name)
		logger.info("migration_applied", extra={"migration": path.name})
	return applied


async def seed_content(conn: asyncpg.Connection) -> None:
	for template in template_bank.builtin_templates():
		await conn.execute(
			"""
			INSERT INTO story_templates (id, category, title, body, placeholders, active)
			VALUES ($1,$2,$3,$4,$5::jsonb,$6)
			ON CONFLICT (id) DO NOTHING
			""",
			template.id,
			template.category,
			template.title,
			template.body,
			json.dumps([p.to_dict() for p in template.placeholders]),
			template.active,
		)
	await conn.executemany(
		"INSERT INTO word_bank (id, word, type, active) VALUES ($1,$2,$3,$4) ON CONFLICT (id) DO NOTHING",
		[(w.id, w.word, w.type, w.active) for w in template_bank.builtin_word_bank()],
	)


async def main() -> None:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		async with conn.transaction():
			await apply_migrations(conn)
			await seed_content(conn)
	await postgres.close_pool()


def cli() -> None:
	logging.basicConfig(level=logging.INFO)
	asyncio.run(main())


if __name__ == "__main__":
	cli()
