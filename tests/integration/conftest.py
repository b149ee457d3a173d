from __future__ import annotations

import httpx
import pytest_asyncio
from sqlalchemy import delete

import cvforge.main as main_module
from cvforge.database import AsyncSessionLocal, close_engine, create_schema
from cvforge.main import app
from cvforge.models import ActivityEvent, CVDocument, UserProfile


@pytest_asyncio.fixture(autouse=True)
async def clean_state() -> None:
    await create_schema()
    async with AsyncSessionLocal() as session:
        await session.execute(delete(ActivityEvent))
        await session.execute(delete(CVDocument))
        await session.execute(delete(UserProfile))
        await session.commit()

    await main_module.rate_limiter.reset()
    main_module.request_metrics.clear()
    main_module.rejection_metrics.clear()
    yield
    await close_engine()


@pytest_asyncio.fixture
async def client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
