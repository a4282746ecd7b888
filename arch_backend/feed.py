"""
Arch feed: posts merged with today's shared daily-question responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from arch_backend.records import (
    ArchRecord,
    DailyQuestionRecord,
    PostRecord,
    ResponseRecord,
)
from arch_backend.timeutils import local_date

POST_ITEM = "post"
RESPONSE_ITEM = "daily_response"


@dataclass
class FeedItem:
    kind: str
    created_at: float
    post: Optional[PostRecord] = None
    question: Optional[DailyQuestionRecord] = None
    response: Optional[ResponseRecord] = None
    user_has_liked: bool = False
    engagement_score: int = 0

    @property
    def item_id(self) -> str:
        if self.post is not None:
            return self.post.post_id
        return f"response_{self.question.question_id}_{self.response.response_id}"


@dataclass
class FeedPage:
    items: list[FeedItem] = field(default_factory=list)
    has_more: bool = False
    current_page: int = 1


def build_feed(
    db,
    arch: ArchRecord,
    viewer_id: str,
    page: int,
    limit: int,
    now: float,
) -> FeedPage:
    """
    Assemble one feed page.

    Posts are paginated in the store; today's shared responses are always
    included and compete with posts for the `limit` slots by timestamp.
    """
    page = max(page, 1)
    posts = db.list_posts(arch.arch_id, offset=(page - 1) * limit, limit=limit)
    today = local_date(arch.settings.timezone, now)
    shared = db.list_shared_responses(arch.arch_id, today)

    items = [
        FeedItem(
            kind=POST_ITEM,
            created_at=post.created_at,
            post=post,
            user_has_liked=any(like.user_id == viewer_id for like in post.likes),
            engagement_score=len(post.likes) + len(post.comments),
        )
        for post in posts
    ]
    items.extend(
        FeedItem(
            kind=RESPONSE_ITEM,
            created_at=response.submitted_at,
            question=question,
            response=response,
        )
        for question, response in shared
    )
    items.sort(key=lambda item: item.created_at, reverse=True)
    return FeedPage(
        items=items[:limit],
        has_more=len(posts) == limit,
        current_page=page,
    )
