"""向量序列化与归一化."""

import numpy as np

# 小端 float32，与持久化格式保持一致
_DTYPE = np.dtype("<f4")


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """L2 归一化，零向量原样返回."""
    vec = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        return vec
    return vec / norm


def vector_to_bytes(vector: np.ndarray) -> bytes:
    """将向量编码为小端 float32 字节."""
    return np.asarray(vector, dtype=_DTYPE).tobytes()


def bytes_to_vector(data: bytes) -> np.ndarray:
    """从小端 float32 字节解码向量."""
    if len(data) % _DTYPE.itemsize != 0:
        msg = f"嵌入字节长度非法: {len(data)}"
        raise ValueError(msg)
    return np.frombuffer(data, dtype=_DTYPE).astype(np.float32)
