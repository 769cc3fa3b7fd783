"""嵌入模型模块."""

from newsthread.ml.engine import EmbeddingEngine, sentence_transformer_factory

__all__ = ["EmbeddingEngine", "sentence_transformer_factory"]
