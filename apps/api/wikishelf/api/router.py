from fastapi import APIRouter

from wikishelf.api.endpoints.books import router as books_router
from wikishelf.api.endpoints.chapters import router as chapters_router

api_router = APIRouter()
api_router.include_router(books_router)
api_router.include_router(chapters_router)
