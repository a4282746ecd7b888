"""
HTTP routes of The Arch backend, mounted under the API prefix.
"""

from fastapi import APIRouter

from arch_backend.routes import (
    arches,
    auth,
    gettogethers,
    media,
    messages,
    posts,
    questions,
    responses,
    users,
)

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(arches.router, prefix="/arches", tags=["arches"])
router.include_router(questions.router, prefix="/questions", tags=["questions"])
router.include_router(responses.router, prefix="/responses", tags=["responses"])
router.include_router(posts.router, prefix="/posts", tags=["posts"])
router.include_router(
    gettogethers.router, prefix="/gettogethers", tags=["gettogethers"]
)
router.include_router(messages.router, prefix="/messages", tags=["messages"])
router.include_router(media.router, prefix="/media", tags=["media"])
