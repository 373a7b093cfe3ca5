from fastapi import APIRouter, Depends
from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal, get_current_principal
from wikishelf.core.database import get_session
from wikishelf.schemas.content import BookCreateRequest, BookRead
from wikishelf.services import book_repo
from .helpers import SERVICE_ERRORS, http_error

router = APIRouter()


@router.get("/books", response_model=list[BookRead])
def books(
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    return book_repo.list_visible_books(db, principal)


@router.post("/books", response_model=BookRead)
def create_book(
    payload: BookCreateRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        return book_repo.create_book(db, principal, payload.model_dump())
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.get("/books/{book_slug}", response_model=BookRead)
def book(
    book_slug: str,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        return book_repo.get_visible_book(db, principal, book_slug)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
