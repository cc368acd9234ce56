import asyncio

from sqlalchemy import select

from matchledger.db import create_schema, dispose_engine, get_engine, get_session_factory
from matchledger.models import Player

PLAYERS = [
    ("demo-player", "Demo Player"),
    ("alex-ruiz", "Alex Ruiz"),
    ("bella-fernandez", "Bella Fernandez"),
    ("carlos-mendez", "Carlos Mendez"),
    ("diana-soto", "Diana Soto"),
    ("eli-vasquez", "Eli Vasquez"),
    ("fiona-castro", "Fiona Castro"),
]


async def main():
    if get_engine().dialect.name == "sqlite":
        # local dev databases are not managed by alembic
        await create_schema()

    async with get_session_factory()() as s:
        existing = {x.id for x in (await s.execute(select(Player))).scalars().all()}
        for pid, name in PLAYERS:
            if pid not in existing:
                s.add(Player(id=pid, name=name))
        await s.commit()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
