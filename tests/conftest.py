"""测试配置和 fixtures."""

import hashlib
import math
import re
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import numpy as np
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from newsthread.cache import CacheStore, create_cache_store
from newsthread.config import Settings
from newsthread.ml.engine import EmbeddingEngine
from newsthread.models.article import Article
from newsthread.models.database import configure_sqlite

NOW = datetime(2025, 3, 1, 12, 0, 0)
DIMENSIONS = 384


class FakeEncoder:
    """确定性的词袋编码器，代替真实模型权重."""

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.calls = 0

    def encode(self, texts: list[str], **kwargs: object) -> np.ndarray:
        self.calls += 1
        out = np.zeros((len(texts), self.dimensions), dtype=np.float32)
        for row, text in enumerate(texts):
            for token in re.findall(r"[a-z0-9]+", text.lower()):
                digest = hashlib.md5(token.encode()).digest()
                out[row, int.from_bytes(digest[:4], "little") % self.dimensions] += 1.0
        return out


def unit(index: int, dimensions: int = DIMENSIONS) -> np.ndarray:
    """单位基向量."""
    vec = np.zeros(dimensions, dtype=np.float32)
    vec[index] = 1.0
    return vec


def vector_with_score(score: float, dimensions: int = DIMENSIONS, axis: int = 1) -> np.ndarray:
    """构造与 unit(0) 点积为 score 的单位向量."""
    vec = np.zeros(dimensions, dtype=np.float64)
    vec[0] = score
    vec[axis] = math.sqrt(max(0.0, 1.0 - score * score))
    return vec.astype(np.float32)


def make_article(
    url: str,
    title: str = "Senate passes climate bill after marathon debate",
    published_at: datetime | None = None,
    source_id: str | None = None,
    source_name: str | None = None,
    description: str | None = None,
) -> Article:
    """创建测试用文章."""
    return Article(
        url=url,
        title=title,
        source_id=source_id,
        source_name=source_name,
        description=description,
        content="Snippet of the article [+1234 chars]",
        published_at=published_at or NOW - timedelta(hours=2),
    )


@pytest.fixture
def settings() -> Settings:
    """测试用配置（不读取 .env）."""
    return Settings(_env_file=None, newsapi_key="")  # type: ignore[call-arg]


@asynccontextmanager
async def _memory_database() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite(engine, wal=False)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """创建测试用的内存数据库会话工厂."""
    async with _memory_database() as factory:
        yield factory


@pytest.fixture
def memory_store(settings: Settings) -> CacheStore:
    """内存缓存."""
    return create_cache_store("memory", settings=settings)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(
    request: pytest.FixtureRequest, settings: Settings
) -> AsyncGenerator[CacheStore, None]:
    """两种后端各跑一遍."""
    if request.param == "memory":
        yield create_cache_store("memory", settings=settings)
        return
    async with _memory_database() as factory:
        yield create_cache_store("sql", factory, settings)


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def engine(fake_encoder: FakeEncoder) -> EmbeddingEngine:
    """使用假编码器的嵌入引擎."""
    return EmbeddingEngine(model_name="test-model", version=1, model_factory=lambda: fake_encoder)
