"""句向量嵌入引擎."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import numpy as np

from newsthread.errors import EmbeddingError, ModelNotLoadedError
from newsthread.models.embedding import ArticleEmbedding
from newsthread.utils.vectors import l2_normalize, vector_to_bytes

logger = logging.getLogger(__name__)


def sentence_transformer_factory(model_name: str, max_seq_length: int) -> Callable[[], Any]:
    """创建加载 sentence-transformers 模型的工厂函数."""

    def load() -> Any:
        # 延迟导入，避免模块导入时加载 torch
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer(model_name)
        model.max_seq_length = max_seq_length
        return model

    return load


class EmbeddingEngine:
    """管理嵌入模型生命周期并生成 L2 归一化向量.

    模型需显式调用 load_model() 加载，推理调用串行执行。
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        version: int = 1,
        dimensions: int = 384,
        max_chars: int = 1000,
        max_seq_length: int = 128,
        model_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.model_name = model_name
        self.version = version
        self.dimensions = dimensions
        self.max_chars = max_chars
        self._factory = model_factory or sentence_transformer_factory(model_name, max_seq_length)
        self._model: Any = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def model_version(self) -> str:
        """模型标识（名称 + 版本），版本变化时已存储的嵌入需重新生成."""
        return f"{self.model_name}@v{self.version}"

    async def load_model(self) -> None:
        """加载模型（幂等）."""
        async with self._lock:
            if self._model is not None:
                return
            logger.info(f"正在加载嵌入模型: {self.model_name}")
            loop = asyncio.get_running_loop()
            try:
                self._model = await loop.run_in_executor(None, self._factory)
            except Exception as e:
                logger.exception(f"嵌入模型加载失败: {e}")
                msg = f"嵌入模型加载失败: {e}"
                raise EmbeddingError(msg) from e
            logger.info(f"嵌入模型已加载: {self.model_version()}")

    def unload_model(self) -> None:
        """释放模型."""
        if self._model is not None:
            self._model = None
            logger.info("嵌入模型已释放")

    def prepare_text(self, text: str) -> str:
        """截断输入文本（模型只处理前若干 token）."""
        return " ".join(text.split())[: self.max_chars]

    async def embed(self, text: str) -> np.ndarray:
        """生成单条文本的归一化嵌入向量."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """批量生成归一化嵌入向量."""
        if not texts:
            return []
        prepared = [self.prepare_text(t or "") for t in texts]
        if any(not t for t in prepared):
            msg = "无法为空文本生成嵌入"
            raise EmbeddingError(msg)

        async with self._lock:
            model = self._model
            if model is None:
                msg = "嵌入模型未加载，请先调用 load_model()"
                raise ModelNotLoadedError(msg)
            loop = asyncio.get_running_loop()
            try:
                raw = await loop.run_in_executor(None, self._encode, model, prepared)
            except Exception as e:
                msg = f"嵌入推理失败: {e}"
                raise EmbeddingError(msg) from e

        matrix = np.asarray(raw, dtype=np.float32)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if matrix.shape != (len(prepared), self.dimensions):
            msg = f"嵌入维度不符: 期望 {self.dimensions}，实际 {matrix.shape}"
            raise EmbeddingError(msg)
        return [l2_normalize(row) for row in matrix]

    @staticmethod
    def _encode(model: Any, texts: list[str]) -> Any:
        return model.encode(texts, convert_to_numpy=True, show_progress_bar=False)

    def to_record(
        self, article_url: str, vector: np.ndarray, now: datetime, validity: timedelta
    ) -> ArticleEmbedding:
        """构造可持久化的嵌入记录."""
        return ArticleEmbedding(
            article_url=article_url,
            embedding=vector_to_bytes(vector),
            embedding_model=self.model_version(),
            dimensions=int(vector.shape[0]),
            computed_at=now,
            expires_at=now + validity,
        )
