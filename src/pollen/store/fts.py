"""全文检索查询构造."""

import re

MAX_QUERY_LENGTH = 256
MAX_TOKEN_LENGTH = 48


def build_fts_prefix_query(raw: str) -> str:
    """
    构造 FTS5 前缀查询.

    每个词去掉非字母数字字符，长度大于 1 的词追加 ``*`` 做前缀匹配。
    """
    normalized = re.sub(r"\s+", " ", raw[:MAX_QUERY_LENGTH].strip())
    if not normalized:
        return ""

    tokens = []
    for token in normalized.split(" "):
        cleaned = re.sub(r"[\W_]+", "", token)[:MAX_TOKEN_LENGTH]
        if cleaned:
            tokens.append(cleaned)

    return " ".join(t if len(t) == 1 else f"{t}*" for t in tokens)
