"""SQLAlchemy ORM models for feeds, articles, summaries and tags."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..utils.time import utc_now


class Base(DeclarativeBase):
    pass


class Feed(Base):
    __tablename__ = "feeds"
    __table_args__ = (
        Index("idx_feeds_active", "is_active"),
        Index("idx_feeds_last_fetched", "last_fetched"),
        Index("idx_feeds_category", "feed_category"),
        CheckConstraint("priority IN ('high', 'medium', 'low')", name="ck_feeds_priority"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    feed_url: Mapped[str] = mapped_column(Text, unique=True)
    feed_name: Mapped[str] = mapped_column(Text)
    feed_category: Mapped[str | None] = mapped_column(Text)
    fetch_frequency: Mapped[int] = mapped_column(Integer, default=3600)
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    last_fetched: Mapped[datetime | None] = mapped_column(DateTime)
    last_error: Mapped[str | None] = mapped_column(Text)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    retry_after: Mapped[datetime | None] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    modified_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    articles: Mapped[list["Article"]] = relationship(
        back_populates="feed", cascade="all, delete-orphan", passive_deletes=True
    )


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        Index("idx_articles_feed", "feed_id"),
        Index("idx_articles_published", "published_date"),
        Index("idx_articles_status", "processing_status"),
        Index("idx_articles_fetched", "fetched_date"),
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_articles_status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    feed_id: Mapped[int] = mapped_column(ForeignKey("feeds.id", ondelete="CASCADE"))
    guid: Mapped[str] = mapped_column(Text, unique=True)
    title: Mapped[str] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    content_hash: Mapped[str | None] = mapped_column(String(64))
    published_date: Mapped[datetime | None] = mapped_column(DateTime)
    fetched_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    author: Mapped[str | None] = mapped_column(Text)
    processing_status: Mapped[str] = mapped_column(String(20), default="pending")
    processing_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    claim_token: Mapped[str | None] = mapped_column(String(32))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime)

    feed: Mapped[Feed] = relationship(back_populates="articles")
    summary: Mapped[Optional["Summary"]] = relationship(
        back_populates="article", cascade="all, delete-orphan", passive_deletes=True
    )
    tags: Mapped[list["ArticleTag"]] = relationship(
        back_populates="article", cascade="all, delete-orphan", passive_deletes=True
    )
    sources: Mapped[list["ArticleSource"]] = relationship(
        back_populates="article", cascade="all, delete-orphan", passive_deletes=True
    )


class Summary(Base):
    __tablename__ = "summaries"
    __table_args__ = (
        Index("idx_summaries_model", "model_version"),
        CheckConstraint(
            "summary_type IN ('brief', 'detailed', 'bullet')", name="ck_summaries_type"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    article_id: Mapped[int] = mapped_column(
        ForeignKey("articles.id", ondelete="CASCADE"), unique=True
    )
    summary_text: Mapped[str] = mapped_column(Text)
    summary_type: Mapped[str] = mapped_column(String(20), default="brief")
    word_count: Mapped[int | None] = mapped_column(Integer)
    model_version: Mapped[str] = mapped_column(Text)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer)
    content_hash: Mapped[str | None] = mapped_column(String(64))
    is_stale: Mapped[bool] = mapped_column(Boolean, default=False)
    created_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    article: Mapped[Article] = relationship(back_populates="summary")


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (
        Index("idx_tags_category", "tag_category"),
        Index("idx_tags_usage", "usage_count"),
        CheckConstraint(
            "tag_category IN ('topic', 'entity', 'sentiment', 'industry')",
            name="ck_tags_category",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tag_name: Mapped[str] = mapped_column(Text, unique=True)
    tag_category: Mapped[str] = mapped_column(String(50))
    tag_description: Mapped[str | None] = mapped_column(Text)
    parent_tag_id: Mapped[int | None] = mapped_column(ForeignKey("tags.id", ondelete="SET NULL"))
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    created_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ArticleTag(Base):
    __tablename__ = "article_tags"
    __table_args__ = (
        Index("idx_article_tags_tag", "tag_id"),
        Index("idx_article_tags_confidence", "confidence_score"),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1", name="ck_article_tags_confidence"
        ),
        CheckConstraint("source IN ('auto', 'manual', 'hybrid')", name="ck_article_tags_source"),
    )

    article_id: Mapped[int] = mapped_column(
        ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    confidence_score: Mapped[float] = mapped_column(Float, default=1.0)
    source: Mapped[str] = mapped_column(String(20), default="auto")
    created_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    article: Mapped[Article] = relationship(back_populates="tags")


class ArticleSource(Base):
    """A secondary source that carried the same story as an article."""

    __tablename__ = "article_sources"
    __table_args__ = (Index("idx_article_sources_article", "article_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    article_id: Mapped[int] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"))
    feed_id: Mapped[int] = mapped_column(ForeignKey("feeds.id", ondelete="CASCADE"))
    guid: Mapped[str] = mapped_column(Text, unique=True)
    url: Mapped[str] = mapped_column(Text)
    title: Mapped[str] = mapped_column(Text)
    published_date: Mapped[datetime | None] = mapped_column(DateTime)
    seen_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    article: Mapped[Article] = relationship(back_populates="sources")
