# API v1 routes
from fastapi import APIRouter

from permsearch.api.v1 import acl, answer, search

router = APIRouter()

router.include_router(search.router, tags=["search"])
router.include_router(answer.router, tags=["answer"])
router.include_router(acl.router, prefix="/acl", tags=["acl"])
