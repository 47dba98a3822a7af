"""
Download packaging: one text file per successfully generated article.
"""

from __future__ import annotations

import io
import zipfile
from collections.abc import Sequence

from app.models.models import Article, ArticleStatus


def render_article(article: Article) -> str:
    return f"<h1>{article.title}</h1>\n\n{article.content}\n"


def build_article_archive(articles: Sequence[Article]) -> bytes:
    """Zip COMPLETED articles as article-<n>.txt, n being the article's position in the batch."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for index, article in enumerate(articles, start=1):
            if article.status != ArticleStatus.COMPLETED:
                continue
            archive.writestr(f"article-{index}.txt", render_article(article))
    return buffer.getvalue()
