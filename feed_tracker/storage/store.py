"""
SQLAlchemy-backed persistence for the processing pipeline.

Every public method runs in its own short transaction. The two pieces of
state that concurrent workers race on are handled with single statements:
- the article claim is a compare-and-set on ``processing_status``
- tag usage counters are incremented/decremented in the same transaction
  that inserts/deletes the association rows

Writes made on behalf of a worker carry its claim token; if the claim was
lost (expired, or the article content changed underneath it) the write is
refused with ClaimConflict.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Iterable, Iterator, Sequence
from uuid import uuid4

from sqlalchemy import case, create_engine, delete, event, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..config import DatabaseConfig, FeedConfig
from ..core.dedup import StoredFingerprint, TitleCandidate
from ..core.errors import ClaimConflict, CounterDrift, FetchError
from ..core.state import COMPLETED, FAILED, PENDING, PROCESSING, transition_name
from ..core.tags import TagNode, TagTaxonomy
from ..core.types import (
    ContentIdentity,
    Priority,
    ProcessingStatus,
    RawItem,
    ResolvedTag,
    SummaryMode,
    SummaryResult,
    TagCategory,
    TagSource,
)
from ..utils.time import to_naive_utc, utc_now
from .models import Article, ArticleSource, ArticleTag, Base, Feed, Summary, Tag
from .seed import STARTER_TAGS


logger = logging.getLogger("feed_tracker.store")


@dataclass(frozen=True)
class PendingRef:
    """A pending article as picked up from the backlog."""
    article_id: int
    feed_id: int


@dataclass(frozen=True)
class ReleaseResult:
    """Outcome of returning a claim: the status the article ended in."""
    status: ProcessingStatus
    attempts: int


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Store:
    """Facade over the pipeline's tables."""

    def __init__(self, cfg: DatabaseConfig):
        connect_args = {}
        if cfg.url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        self.engine = create_engine(cfg.url, echo=cfg.echo, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.seed_tags_enabled = cfg.seed_tags

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create missing tables and seed the starter taxonomy."""
        Base.metadata.create_all(self.engine)
        if self.seed_tags_enabled:
            self.seed_tags()

    def close(self) -> None:
        self.engine.dispose()

    # --- Feeds ---

    def add_feed(
        self,
        url: str,
        name: str,
        category: str | None = None,
        fetch_interval: int = 3600,
        priority: Priority | str = Priority.MEDIUM,
    ) -> int:
        with self.session() as session:
            feed = Feed(
                feed_url=url,
                feed_name=name,
                feed_category=category,
                fetch_frequency=fetch_interval,
                priority=Priority(priority).value,
                error_count=0,
                is_active=True,
            )
            session.add(feed)
            session.flush()
            return feed.id

    def sync_feeds(self, feeds: Iterable[FeedConfig]) -> list[int]:
        """Create or update feeds declared in configuration.

        Existing feeds keep their fetch history and active flag; only the
        descriptive fields are refreshed.
        """
        ids: list[int] = []
        with self.session() as session:
            for cfg in feeds:
                feed = session.scalar(select(Feed).where(Feed.feed_url == cfg.url))
                if feed is None:
                    feed = Feed(feed_url=cfg.url, error_count=0, is_active=True)
                    session.add(feed)
                feed.feed_name = cfg.name
                feed.feed_category = cfg.category
                feed.fetch_frequency = cfg.fetch_interval
                feed.priority = Priority(cfg.priority).value
                session.flush()
                ids.append(feed.id)
        return ids

    def get_feed(self, feed_id: int) -> Feed | None:
        with self.session() as session:
            return session.get(Feed, feed_id)

    def list_feeds(self) -> list[Feed]:
        with self.session() as session:
            return list(session.scalars(select(Feed).order_by(Feed.id)))

    def due_feeds(
        self,
        now: datetime | None = None,
        feed_ids: Sequence[int] | None = None,
        force: bool = False,
    ) -> list[Feed]:
        """Active feeds whose fetch interval has elapsed.

        Args:
            now: Reference time (defaults to the current UTC time)
            feed_ids: Restrict the selection to these feeds
            force: Ignore fetch intervals and rate-limit back-off
        """
        now = now or utc_now()
        stmt = select(Feed).where(Feed.is_active.is_(True)).order_by(Feed.id)
        if feed_ids is not None:
            stmt = stmt.where(Feed.id.in_(list(feed_ids)))
        with self.session() as session:
            feeds = list(session.scalars(stmt))
        if force:
            return feeds
        return [feed for feed in feeds if _is_due(feed, now)]

    def record_feed_success(self, feed_id: int, fetched_at: datetime | None = None) -> None:
        with self.session() as session:
            session.execute(
                update(Feed)
                .where(Feed.id == feed_id)
                .values(
                    last_fetched=fetched_at or utc_now(),
                    error_count=0,
                    last_error=None,
                    retry_after=None,
                    modified_date=utc_now(),
                )
            )

    def record_feed_failure(
        self,
        feed_id: int,
        error: FetchError,
        error_threshold: int,
        default_retry_after: float = 900.0,
        now: datetime | None = None,
    ) -> bool:
        """Record a failed fetch and deactivate the feed past the threshold.

        Rate-limit signals only postpone the next fetch; other failures count
        toward deactivation.

        Returns:
            True if this failure deactivated the feed
        """
        now = now or utc_now()
        message = f"{error.kind}: {error}"
        with self.session() as session:
            feed = session.get(Feed, feed_id)
            if feed is None:
                return False
            feed.last_error = message
            feed.modified_date = now
            if error.kind == FetchError.RATE_LIMITED:
                wait = error.retry_after if error.retry_after is not None else default_retry_after
                feed.retry_after = now + timedelta(seconds=wait)
                return False
            feed.error_count = (feed.error_count or 0) + 1
            if feed.is_active and feed.error_count >= error_threshold:
                feed.is_active = False
                logger.warning(
                    "Deactivated feed %s after %d consecutive errors", feed.feed_url, feed.error_count
                )
                return True
            return False

    def reactivate_feed(self, feed_id: int) -> bool:
        with self.session() as session:
            result = session.execute(
                update(Feed)
                .where(Feed.id == feed_id)
                .values(
                    is_active=True,
                    error_count=0,
                    last_error=None,
                    retry_after=None,
                    modified_date=utc_now(),
                )
            )
            return result.rowcount == 1

    def delete_feed(self, feed_id: int) -> bool:
        """Delete a feed with its articles, keeping tag counters exact."""
        with self.session() as session:
            per_tag = session.execute(
                select(ArticleTag.tag_id, func.count())
                .join(Article, Article.id == ArticleTag.article_id)
                .where(Article.feed_id == feed_id)
                .group_by(ArticleTag.tag_id)
            ).all()
            for tag_id, count in per_tag:
                session.execute(
                    update(Tag).where(Tag.id == tag_id).values(usage_count=Tag.usage_count - count)
                )
            article_ids = select(Article.id).where(Article.feed_id == feed_id)
            no_sync = {"synchronize_session": False}
            # Explicit deletes so engines without enforced cascades stay consistent.
            for stmt in (
                delete(ArticleTag).where(ArticleTag.article_id.in_(article_ids)),
                delete(Summary).where(Summary.article_id.in_(article_ids)),
                delete(ArticleSource).where(
                    ArticleSource.article_id.in_(article_ids) | (ArticleSource.feed_id == feed_id)
                ),
                delete(Article).where(Article.feed_id == feed_id),
            ):
                session.execute(stmt, execution_options=no_sync)
            result = session.execute(delete(Feed).where(Feed.id == feed_id), execution_options=no_sync)
            return result.rowcount == 1

    # --- Articles: deduplication index ---

    def get_fingerprint(self, guid: str) -> StoredFingerprint | None:
        with self.session() as session:
            row = session.execute(
                select(Article.id, Article.content_hash).where(Article.guid == guid)
            ).first()
        if row is None:
            return None
        return StoredFingerprint(article_id=row[0], content_hash=row[1])

    def find_secondary_source(self, guid: str) -> int | None:
        with self.session() as session:
            return session.scalar(select(ArticleSource.article_id).where(ArticleSource.guid == guid))

    def recent_titles(
        self, start: datetime, end: datetime, exclude_feed_id: int
    ) -> list[TitleCandidate]:
        with self.session() as session:
            rows = session.execute(
                select(Article.id, Article.feed_id, Article.title, Article.published_date).where(
                    Article.published_date.is_not(None),
                    Article.published_date >= start,
                    Article.published_date <= end,
                    Article.feed_id != exclude_feed_id,
                )
            ).all()
        return [
            TitleCandidate(article_id=r[0], feed_id=r[1], title=r[2], published_at=r[3])
            for r in rows
        ]

    def insert_article(self, feed_id: int, item: RawItem, identity: ContentIdentity) -> int | None:
        """Insert a new pending article.

        Returns:
            The new article id, or None if the GUID already exists
        """
        try:
            with self.session() as session:
                article = Article(
                    feed_id=feed_id,
                    guid=identity.key,
                    title=item.title or "",
                    url=identity.url or (item.url or ""),
                    content=item.content,
                    content_hash=identity.fingerprint,
                    published_date=to_naive_utc(item.published_at),
                    fetched_date=utc_now(),
                    author=item.author,
                    processing_status=PENDING.value,
                    processing_attempts=0,
                )
                session.add(article)
                session.flush()
                return article.id
        except IntegrityError:
            return None

    def update_article_content(self, article_id: int, item: RawItem, identity: ContentIdentity) -> bool:
        """Replace an article's content in place and send it back to pending.

        The attempt counter is left alone. An existing summary is marked
        stale; tag rows stay until retagging replaces them. A worker holding
        a claim on the article loses it.

        Returns:
            False if the stored fingerprint already matches
        """
        with self.session() as session:
            article = session.get(Article, article_id)
            if article is None or article.content_hash == identity.fingerprint:
                return False
            previous = ProcessingStatus(article.processing_status)
            article.title = item.title or article.title
            article.url = identity.url or (item.url or article.url)
            article.content = item.content
            article.content_hash = identity.fingerprint
            article.published_date = to_naive_utc(item.published_at) or article.published_date
            article.author = item.author or article.author
            article.fetched_date = utc_now()
            self._reopen(session, article, previous)
            logger.debug("Article %s content changed (%s -> pending)", article_id, previous.value)
            return True

    def promote_source(
        self, article_id: int, feed_id: int, item: RawItem, identity: ContentIdentity
    ) -> bool | None:
        """Make an earlier report of a story the article's primary record.

        The article's current source is kept as a secondary source. If the
        earlier report's content differs, the article goes back to pending
        as on a content update.

        Returns:
            Whether the article needs processing again, or None if the
            item's key was stored by a concurrent writer
        """
        try:
            with self.session() as session:
                article = session.get(Article, article_id)
                if article is None:
                    raise KeyError(article_id)
                session.add(
                    ArticleSource(
                        article_id=article.id,
                        feed_id=article.feed_id,
                        guid=article.guid,
                        url=article.url,
                        title=article.title,
                        published_date=article.published_date,
                    )
                )
                changed = article.content_hash != identity.fingerprint
                previous = ProcessingStatus(article.processing_status)
                article.feed_id = feed_id
                article.guid = identity.key
                article.title = item.title or article.title
                article.url = identity.url or (item.url or article.url)
                article.content = item.content
                article.content_hash = identity.fingerprint
                article.published_date = to_naive_utc(item.published_at)
                article.author = item.author
                article.fetched_date = utc_now()
                if changed:
                    self._reopen(session, article, previous)
        except IntegrityError:
            return None
        logger.debug("Article %s now led by earlier source %r", article_id, identity.key)
        return changed

    def _reopen(self, session: Session, article: Article, previous: ProcessingStatus) -> None:
        """Send an article with new content back to pending, revoking any claim."""
        if previous is not PENDING:
            transition_name(previous, PENDING)
        article.processing_status = PENDING.value
        article.claim_token = None
        article.claimed_at = None
        article.last_error = None
        session.execute(
            update(Summary).where(Summary.article_id == article.id).values(is_stale=True)
        )

    def add_secondary_source(
        self, article_id: int, feed_id: int, item: RawItem, identity: ContentIdentity
    ) -> None:
        try:
            with self.session() as session:
                session.add(
                    ArticleSource(
                        article_id=article_id,
                        feed_id=feed_id,
                        guid=identity.key,
                        url=identity.url or (item.url or ""),
                        title=item.title or "",
                        published_date=to_naive_utc(item.published_at),
                    )
                )
        except IntegrityError:
            logger.debug("Secondary source %r already recorded", identity.key)

    # --- Articles: lifecycle ---

    def get_article(self, article_id: int) -> Article | None:
        with self.session() as session:
            return session.get(Article, article_id)

    def pending_articles(self, limit: int | None = None) -> list[PendingRef]:
        """Pending articles, oldest first."""
        stmt = (
            select(Article.id, Article.feed_id)
            .join(Feed, Feed.id == Article.feed_id)
            .where(Article.processing_status == PENDING.value)
            .order_by(Article.fetched_date, Article.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.session() as session:
            return [PendingRef(article_id=r[0], feed_id=r[1]) for r in session.execute(stmt).all()]

    def claim_article(self, article_id: int) -> str:
        """Atomically move a pending article to processing.

        Returns:
            The claim token that guards the worker's writes

        Raises:
            ClaimConflict: If the article is not pending anymore
        """
        token = uuid4().hex
        with self.session() as session:
            claimed = self._transition(
                session,
                article_id,
                PENDING,
                PROCESSING,
                claim_token=token,
                claimed_at=utc_now(),
            )
        if not claimed:
            raise ClaimConflict(article_id)
        return token

    def complete_article(self, article_id: int, token: str) -> None:
        """Finish a processing run. The attempt counter starts over for the next run."""
        with self.session() as session:
            done = self._transition(
                session,
                article_id,
                PROCESSING,
                COMPLETED,
                token=token,
                claim_token=None,
                claimed_at=None,
                last_error=None,
                processing_attempts=0,
            )
        if not done:
            raise ClaimConflict(article_id)

    def fail_article(self, article_id: int, token: str, reason: str) -> None:
        with self.session() as session:
            done = self._transition(
                session,
                article_id,
                PROCESSING,
                FAILED,
                token=token,
                claim_token=None,
                claimed_at=None,
                last_error=reason,
            )
        if not done:
            raise ClaimConflict(article_id)

    def record_attempt_failure(self, article_id: int, token: str, reason: str) -> int:
        """Count one failed processing attempt while keeping the claim.

        Returns:
            The updated attempt count
        """
        with self.session() as session:
            self._hold_claim(session, article_id, token)
            session.execute(
                update(Article)
                .where(Article.id == article_id)
                .values(
                    processing_attempts=Article.processing_attempts + 1,
                    last_error=reason,
                )
            )
            return session.scalar(select(Article.processing_attempts).where(Article.id == article_id))

    def release_claim(
        self,
        article_id: int,
        token: str,
        increment_attempts: bool = False,
        reason: str | None = None,
        max_attempts: int | None = None,
    ) -> ReleaseResult | None:
        """Give up a claim, returning the article to pending.

        When ``increment_attempts`` is set and the new count reaches
        ``max_attempts`` the article is marked failed instead.

        Returns:
            The resulting status, or None if the claim was already gone
        """
        with self.session() as session:
            article = session.scalar(
                select(Article).where(
                    Article.id == article_id,
                    Article.claim_token == token,
                    Article.processing_status == PROCESSING.value,
                )
            )
            if article is None:
                return None
            attempts = article.processing_attempts + (1 if increment_attempts else 0)
            target = PENDING
            if increment_attempts and max_attempts is not None and attempts >= max_attempts:
                target = FAILED
            values = {
                "processing_attempts": attempts,
                "claim_token": None,
                "claimed_at": None,
            }
            if reason is not None:
                values["last_error"] = reason
            self._transition(session, article_id, PROCESSING, target, token=token, **values)
            return ReleaseResult(status=target, attempts=attempts)

    def expire_stale_claims(self, older_than: datetime, max_attempts: int) -> tuple[int, int]:
        """Return abandoned processing claims to pending.

        Each expired claim counts as a failed attempt; articles that reach
        ``max_attempts`` this way are marked failed.

        Returns:
            Tuple of (released to pending, marked failed)
        """
        released = failed = 0
        with self.session() as session:
            stale = list(
                session.scalars(
                    select(Article).where(
                        Article.processing_status == PROCESSING.value,
                        (Article.claimed_at.is_(None)) | (Article.claimed_at < older_than),
                    )
                )
            )
            for article in stale:
                attempts = article.processing_attempts + 1
                target = FAILED if attempts >= max_attempts else PENDING
                self._transition(
                    session,
                    article.id,
                    PROCESSING,
                    target,
                    token=article.claim_token,
                    processing_attempts=attempts,
                    claim_token=None,
                    claimed_at=None,
                    last_error="claim expired",
                )
                if target is FAILED:
                    failed += 1
                else:
                    released += 1
        if stale:
            logger.warning("Expired %d stale claim(s): %d pending, %d failed", len(stale), released, failed)
        return released, failed

    def requeue_failed(self, article_ids: Sequence[int] | None = None) -> list[PendingRef]:
        """Move failed articles back to pending without resetting attempts."""
        transition_name(FAILED, PENDING)
        stmt = select(Article.id, Article.feed_id).where(Article.processing_status == FAILED.value)
        if article_ids is not None:
            stmt = stmt.where(Article.id.in_(list(article_ids)))
        with self.session() as session:
            rows = session.execute(stmt).all()
            refs: list[PendingRef] = []
            for article_id, feed_id in rows:
                if self._transition(session, article_id, FAILED, PENDING):
                    refs.append(PendingRef(article_id=article_id, feed_id=feed_id))
            return refs

    def _transition(
        self,
        session: Session,
        article_id: int,
        source: ProcessingStatus,
        target: ProcessingStatus,
        token: str | None = None,
        **values,
    ) -> bool:
        """Compare-and-set the processing status of one article."""
        transition_name(source, target)
        stmt = update(Article).where(
            Article.id == article_id, Article.processing_status == source.value
        )
        if token is not None:
            stmt = stmt.where(Article.claim_token == token)
        result = session.execute(
            stmt.values(processing_status=target.value, **values),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount == 1

    def _hold_claim(self, session: Session, article_id: int, token: str) -> None:
        """Verify the claim inside the caller's transaction and refresh its timestamp."""
        result = session.execute(
            update(Article)
            .where(
                Article.id == article_id,
                Article.claim_token == token,
                Article.processing_status == PROCESSING.value,
            )
            .values(claimed_at=utc_now()),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount != 1:
            raise ClaimConflict(article_id)

    # --- Summaries ---

    def get_summary(self, article_id: int) -> Summary | None:
        with self.session() as session:
            return session.scalar(select(Summary).where(Summary.article_id == article_id))

    def save_summary(
        self,
        article_id: int,
        token: str,
        result: SummaryResult,
        mode: SummaryMode | str,
        content_hash: str | None,
    ) -> None:
        """Create or replace the article's summary under the worker's claim."""
        with self.session() as session:
            self._hold_claim(session, article_id, token)
            summary = session.scalar(select(Summary).where(Summary.article_id == article_id))
            if summary is None:
                summary = Summary(article_id=article_id)
                session.add(summary)
            summary.summary_text = result.text
            summary.summary_type = SummaryMode(mode).value
            summary.word_count = result.word_count
            summary.model_version = result.model_id
            summary.processing_time_ms = result.latency_ms
            summary.content_hash = content_hash
            summary.is_stale = False
            summary.created_date = utc_now()

    # --- Tags ---

    def seed_tags(self) -> int:
        """Insert the starter taxonomy, skipping names that already exist."""
        inserted = 0
        with self.session() as session:
            existing = set(session.scalars(select(Tag.tag_name)))
            for name, category, description in STARTER_TAGS:
                if name in existing:
                    continue
                session.add(
                    Tag(
                        tag_name=name,
                        tag_category=category,
                        tag_description=description,
                        usage_count=0,
                    )
                )
                inserted += 1
        return inserted

    def add_tag(
        self,
        name: str,
        category: TagCategory | str,
        description: str | None = None,
        parent: str | None = None,
    ) -> int:
        with self.session() as session:
            tag = Tag(
                tag_name=name,
                tag_category=TagCategory(category).value,
                tag_description=description,
                usage_count=0,
            )
            session.add(tag)
            session.flush()
            tag_id = tag.id
        if parent is not None:
            self.set_tag_parent(name, parent)
        return tag_id

    def load_taxonomy(self) -> TagTaxonomy:
        with self.session() as session:
            rows = session.execute(
                select(Tag.id, Tag.tag_name, Tag.tag_category, Tag.parent_tag_id)
            ).all()
        return TagTaxonomy(
            TagNode(tag_id=r[0], name=r[1], category=r[2], parent_id=r[3]) for r in rows
        )

    def set_tag_parent(self, name: str, parent: str | None) -> None:
        """Attach a tag to a parent, rejecting edges that would form a cycle.

        Raises:
            KeyError: If either tag does not exist
            TaxonomyCycleError: If the edge would create a cycle
        """
        with self.session() as session:
            tag = session.scalar(select(Tag).where(func.lower(Tag.tag_name) == name.lower()))
            if tag is None:
                raise KeyError(name)
            parent_id = None
            if parent is not None:
                parent_tag = session.scalar(
                    select(Tag).where(func.lower(Tag.tag_name) == parent.lower())
                )
                if parent_tag is None:
                    raise KeyError(parent)
                parent_id = parent_tag.id
            rows = session.execute(
                select(Tag.id, Tag.tag_name, Tag.tag_category, Tag.parent_tag_id)
            ).all()
            taxonomy = TagTaxonomy(
                TagNode(tag_id=r[0], name=r[1], category=r[2], parent_id=r[3]) for r in rows
            )
            taxonomy.validate_parent(tag.id, parent_id)
            tag.parent_tag_id = parent_id

    def replace_article_tags(
        self,
        article_id: int,
        token: str,
        tags: Sequence[ResolvedTag],
        source: TagSource | str = TagSource.AUTO,
    ) -> tuple[int, int]:
        """Replace an article's tag set under the worker's claim.

        Counters move in the same transaction as the association rows.

        Returns:
            Tuple of (tags added, tags removed)
        """
        source_value = TagSource(source).value
        wanted = {tag.tag_id: tag for tag in tags}
        with self.session() as session:
            self._hold_claim(session, article_id, token)
            current = {
                row.tag_id: row
                for row in session.scalars(
                    select(ArticleTag).where(ArticleTag.article_id == article_id)
                )
            }
            removed = [tag_id for tag_id in current if tag_id not in wanted]
            added = [tag_id for tag_id in wanted if tag_id not in current]

            if removed:
                session.execute(
                    delete(ArticleTag).where(
                        ArticleTag.article_id == article_id, ArticleTag.tag_id.in_(removed)
                    ),
                    execution_options={"synchronize_session": False},
                )
                session.execute(
                    update(Tag)
                    .where(Tag.id.in_(removed))
                    .values(usage_count=Tag.usage_count - 1),
                    execution_options={"synchronize_session": False},
                )
            for tag_id, row in current.items():
                if tag_id in wanted:
                    row.confidence_score = wanted[tag_id].confidence
                    row.source = source_value
            for tag_id in added:
                session.add(
                    ArticleTag(
                        article_id=article_id,
                        tag_id=tag_id,
                        confidence_score=wanted[tag_id].confidence,
                        source=source_value,
                    )
                )
            if added:
                session.execute(
                    update(Tag).where(Tag.id.in_(added)).values(usage_count=Tag.usage_count + 1),
                    execution_options={"synchronize_session": False},
                )
            return len(added), len(removed)

    def article_tags(self, article_id: int) -> list[tuple[str, float]]:
        with self.session() as session:
            rows = session.execute(
                select(Tag.tag_name, ArticleTag.confidence_score)
                .join(Tag, Tag.id == ArticleTag.tag_id)
                .where(ArticleTag.article_id == article_id)
                .order_by(ArticleTag.confidence_score.desc(), Tag.tag_name)
            ).all()
        return [(r[0], r[1]) for r in rows]

    def usage_counts(self) -> dict[str, int]:
        with self.session() as session:
            return dict(session.execute(select(Tag.tag_name, Tag.usage_count)).all())

    def verify_usage_counts(self) -> list[CounterDrift]:
        """Recompute every tag counter from live associations and fix drift.

        Returns:
            One CounterDrift per corrected tag
        """
        drifts: list[CounterDrift] = []
        with self.session() as session:
            actual = dict(
                session.execute(
                    select(ArticleTag.tag_id, func.count()).group_by(ArticleTag.tag_id)
                ).all()
            )
            for tag in session.scalars(select(Tag)):
                live = actual.get(tag.id, 0)
                if tag.usage_count != live:
                    drifts.append(CounterDrift(tag.tag_name, tag.usage_count, live))
                    tag.usage_count = live
        for drift in drifts:
            logger.warning("Corrected tag counter drift: %s", drift)
        return drifts

    # --- Statistics ---

    def status_counts(self) -> dict[str, int]:
        with self.session() as session:
            rows = session.execute(
                select(Article.processing_status, func.count()).group_by(Article.processing_status)
            ).all()
        counts = {status.value: 0 for status in ProcessingStatus}
        counts.update({r[0]: r[1] for r in rows})
        return counts

    def feed_stats(self) -> list[dict]:
        """Per-feed totals by processing status."""
        def _count(status: ProcessingStatus):
            return func.count(case((Article.processing_status == status.value, 1)))

        stmt = (
            select(
                Feed.id,
                Feed.feed_name,
                Feed.feed_category,
                Feed.is_active,
                Feed.last_fetched,
                Feed.error_count,
                func.count(Article.id),
                _count(COMPLETED),
                _count(PENDING),
                _count(FAILED),
                func.max(Article.published_date),
            )
            .outerjoin(Article, Article.feed_id == Feed.id)
            .group_by(Feed.id)
            .order_by(Feed.id)
        )
        keys = (
            "id",
            "feed_name",
            "feed_category",
            "is_active",
            "last_fetched",
            "error_count",
            "total_articles",
            "processed_articles",
            "pending_articles",
            "failed_articles",
            "latest_article_date",
        )
        with self.session() as session:
            return [dict(zip(keys, row)) for row in session.execute(stmt).all()]

    def tag_popularity(self) -> list[dict]:
        """Tag usage with live article counts and average confidence."""
        stmt = (
            select(
                Tag.id,
                Tag.tag_name,
                Tag.tag_category,
                Tag.usage_count,
                func.count(func.distinct(ArticleTag.article_id)),
                func.avg(ArticleTag.confidence_score),
            )
            .outerjoin(ArticleTag, ArticleTag.tag_id == Tag.id)
            .group_by(Tag.id)
            .order_by(Tag.usage_count.desc(), Tag.tag_name)
        )
        keys = ("id", "tag_name", "tag_category", "usage_count", "article_count", "avg_confidence")
        with self.session() as session:
            return [dict(zip(keys, row)) for row in session.execute(stmt).all()]

    def articles_full(self, status: ProcessingStatus | None = None, limit: int | None = None) -> list[dict]:
        """Articles with their feed, summary and tag count, newest first.

        Filter by ``status`` to list e.g. failed articles with their last error.
        """
        tag_counts = (
            select(ArticleTag.article_id, func.count(ArticleTag.tag_id).label("tag_count"))
            .group_by(ArticleTag.article_id)
            .subquery()
        )
        stmt = (
            select(
                Article.id,
                Article.title,
                Article.url,
                Article.published_date,
                Article.processing_status,
                Article.processing_attempts,
                Article.last_error,
                Feed.feed_name,
                Feed.feed_category,
                Summary.summary_text,
                Summary.is_stale,
                func.coalesce(tag_counts.c.tag_count, 0),
            )
            .join(Feed, Feed.id == Article.feed_id)
            .outerjoin(Summary, Summary.article_id == Article.id)
            .outerjoin(tag_counts, tag_counts.c.article_id == Article.id)
            .order_by(Article.fetched_date.desc(), Article.id.desc())
        )
        if status is not None:
            stmt = stmt.where(Article.processing_status == ProcessingStatus(status).value)
        if limit is not None:
            stmt = stmt.limit(limit)
        keys = (
            "id",
            "title",
            "url",
            "published_date",
            "processing_status",
            "processing_attempts",
            "last_error",
            "feed_name",
            "feed_category",
            "summary_text",
            "is_stale",
            "tag_count",
        )
        with self.session() as session:
            return [dict(zip(keys, row)) for row in session.execute(stmt).all()]


def _is_due(feed: Feed, now: datetime) -> bool:
    if feed.retry_after is not None and feed.retry_after > now:
        return False
    if feed.last_fetched is None:
        return True
    return (now - feed.last_fetched).total_seconds() >= feed.fetch_frequency
