import asyncio
import os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from app.db import Base
from app.models import StreamPoolEntry, Team, Tournament
from app.time_utils import utcnow

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required")
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with Session() as s:
        existing = {x.id for x in (await s.execute(select(Team))).scalars().all()}
        for tid, slug, name in [
            ("demo-team", "demo", "Demo Volleyball Club"),
            ("u16-girls", "u16-girls", "U16 Girls"),
        ]:
            if tid not in existing:
                s.add(Team(id=tid, slug=slug, display_name=name, enabled=True))
        await s.commit()

        # sample tournament
        existing_tournaments = {
            x.id for x in (await s.execute(select(Tournament))).scalars().all()
        }
        if "spring-classic" not in existing_tournaments:
            s.add(Tournament(id="spring-classic", name="Spring Classic"))
        await s.commit()

        # Local-only pool entries; real ones come from /stream-pool/provision.
        existing_streams = {
            x.id for x in (await s.execute(select(StreamPoolEntry))).scalars().all()
        }
        now = utcnow()
        for n in range(1, 4):
            sid = f"demo-stream-{n}"
            if sid not in existing_streams:
                s.add(
                    StreamPoolEntry(
                        id=sid,
                        external_stream_id=f"demo-external-{n}",
                        ingest_address="rtmp://a.rtmp.youtube.com/live2",
                        stream_name=f"demo-key-{n}",
                        status="available",
                        created_at=now,
                        updated_at=now,
                    )
                )
        await s.commit()

if __name__ == "__main__":
    asyncio.run(main())
