"""
Create database tables, optionally seeding demo signals

    python create_tables.py [--seed]
"""
import asyncio
import sys
from datetime import datetime
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from models.base import Base
from models.flood import Forecast, Incident, IncidentKind, SocialSignal
from config import get_settings

SEED_FORECASTS = [
    ("Z1", 0.85, 42.3),
    ("Z2", 0.35, 10.2),
    ("Z3", 0.62, 25.0),
]

SEED_INCIDENTS = [
    (IncidentKind.DRAIN, "Blocked drain near the market underpass", "Z1"),
    (IncidentKind.CITIZEN, "Water over the curb on the main road", "Z1"),
    (IncidentKind.DRAIN, "Storm drain overflowing by the school", "Z3"),
]

SEED_SOCIAL = [
    ("Street flooded again, cars stuck near the bridge", "@riverwatch", "Z1", True),
    ("Light drizzle this morning, nothing unusual", "@commuter42", "Z2", False),
    ("Water rising fast at the low crossing", "@z3local", "Z3", True),
]


def seed_rows():
    now = datetime.utcnow()
    rows = [
        Forecast(zone=z, rain_probability=p, rain_amount_mm=mm, provider="seed", observed_at=now)
        for z, p, mm in SEED_FORECASTS
    ]
    rows += [
        Incident(kind=k, description=d, zone=z, is_simulated=False, reported_at=now)
        for k, d, z in SEED_INCIDENTS
    ]
    rows += [
        SocialSignal(text=t, author=a, zone=z, risk_flag=f, classified_by="seed",
                     is_simulated=False, observed_at=now)
        for t, a, z, f in SEED_SOCIAL
    ]
    return rows


async def create_tables(seed: bool = False):
    """Create all tables"""
    settings = get_settings()
    
    # Create engine
    engine = create_async_engine(
        settings.database_url,
        echo=True
    )
    
    try:
        print("Creating tables...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        print("✅ All tables created successfully!")

        if seed:
            session_factory = async_sessionmaker(engine, expire_on_commit=False)
            async with session_factory() as session:
                rows = seed_rows()
                session.add_all(rows)
                await session.commit()
            print(f"✅ Seeded {len(rows)} demo rows")
        
    except Exception as e:
        print(f"❌ Error creating tables: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_tables(seed="--seed" in sys.argv[1:]))
