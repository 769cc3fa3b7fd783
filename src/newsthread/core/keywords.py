"""关键词回退匹配（嵌入不可用时使用）."""

import re

from newsthread.core.similarity import MatchStrength, ScoredMatch
from newsthread.models.article import CachedArticle

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "be",
        "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "must", "can", "about",
        "says", "said", "after", "over", "what", "know", "this", "that",
        "news", "report", "breaking", "live", "least", "officials", "including",
        "video", "photos", "watch", "today", "updates", "scoop", "exclusive",
        "analysis", "opinion", "review", "timeline",
    }
)


def extract_entities(text: str, excluded_text: str | None = None) -> list[str]:
    """
    提取文本中的实体和关键词.

    连续的大写开头单词合并为一个实体，另外收集长度大于 3 的非停用词；
    与 excluded_text（通常是来源名称）重叠的词会被过滤。
    """
    clean = re.sub(r"[-_]", " ", text or "")
    entities: list[str] = []
    current: list[str] = []

    for word in clean.split():
        token = re.sub(r"[^a-zA-Z0-9&.]", "", word)
        if token and token[0].isupper() and token.lower() not in STOP_WORDS and len(token) >= 2:
            current.append(token)
        elif current:
            entities.append(" ".join(current))
            current = []
    if current:
        entities.append(" ".join(current))

    lowered = re.sub(r"[^a-z0-9&.\s]", "", clean.lower())
    entities.extend(w for w in lowered.split() if len(w) > 3 and w not in STOP_WORDS)

    excluded = (excluded_text or "").lower()
    excluded_tokens = set(excluded.split())
    result: list[str] = []
    for entity in dict.fromkeys(entities):
        lower = entity.lower()
        if lower in excluded_tokens:
            continue
        if excluded and (excluded in lower or lower in excluded):
            continue
        result.append(entity)
    return result


def build_search_query(title: str, source_name: str | None = None, max_terms: int = 3) -> str:
    """根据标题实体构造上游搜索关键词."""
    entities = extract_entities(title, source_name)
    if entities:
        return " ".join(entities[:max_terms])
    return title[:50]


def _tokenize(text: str) -> set[str]:
    return {w for w in re.sub(r"[^a-z0-9\s]", " ", (text or "").lower()).split() if len(w) > 2}


def title_similarity(title_a: str, title_b: str) -> float:
    """标题词集合的 Jaccard 相似度（0-1）."""
    words_a = _tokenize(title_a)
    words_b = _tokenize(title_b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def keyword_matches(
    source: CachedArticle,
    candidates: list[CachedArticle],
    threshold: float = 0.10,
) -> list[ScoredMatch]:
    """按标题相似度匹配候选文章，结果均视为弱匹配."""
    matches = [
        ScoredMatch(
            url=c.url,
            score=score,
            strength=MatchStrength.WEAK,
            published_at=c.published_at,
        )
        for c in candidates
        if c.url != source.url
        and (score := title_similarity(source.title, c.title)) >= threshold
    ]
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches
