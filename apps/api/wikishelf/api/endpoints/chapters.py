from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from wikishelf.core.auth import AuthPrincipal, get_current_principal
from wikishelf.core.database import get_session
from wikishelf.schemas.content import (
    BookRead,
    ChapterCopyRequest,
    ChapterCreateRequest,
    ChapterDeleteResult,
    ChapterMoveRequest,
    ChapterMoveResult,
    ChapterPermissionsRequest,
    ChapterRead,
    ChapterUpdateRequest,
    PageCreateRequest,
    PageRead,
)
from wikishelf.services import (
    book_repo,
    chapter_duplicator,
    chapter_lifecycle,
    chapter_locator,
    chapter_relocator,
    page_repo,
)
from .helpers import SERVICE_ERRORS, chapter_read, ensure_can, http_error

router = APIRouter()

_FAILURE_STATUS_CODES = {
    "resolve": 400,
    "authorize": 403,
}


@router.get("/books/{book_slug}/chapters", response_model=list[ChapterRead])
def book_chapters(
    book_slug: str,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        book = book_repo.get_visible_book(db, principal, book_slug)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return [chapter_read(db, chapter) for chapter in book_repo.list_book_chapters(db, principal, book)]


@router.post("/books/{book_slug}/chapters", response_model=ChapterRead)
def create_chapter(
    book_slug: str,
    payload: ChapterCreateRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        book = book_repo.get_visible_book(db, principal, book_slug)
        ensure_can(db, principal, "chapter-create", book)
        chapter = chapter_lifecycle.create(db, principal, payload.model_dump(), book)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return chapter_read(db, chapter)


@router.get("/books/{book_slug}/chapters/{chapter_slug}", response_model=ChapterRead)
def chapter(
    book_slug: str,
    chapter_slug: str,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return chapter_read(db, found)


@router.put("/books/{book_slug}/chapters/{chapter_slug}", response_model=ChapterRead)
def update_chapter(
    book_slug: str,
    chapter_slug: str,
    payload: ChapterUpdateRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
        ensure_can(db, principal, "update", found)
        updated = chapter_lifecycle.update(db, principal, found, payload.model_dump())
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return chapter_read(db, updated)


@router.put("/books/{book_slug}/chapters/{chapter_slug}/permissions", response_model=ChapterRead)
def update_chapter_permissions(
    book_slug: str,
    chapter_slug: str,
    payload: ChapterPermissionsRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
        ensure_can(db, principal, "update", found)
        permissions = None
        if payload.permissions is not None:
            permissions = [item.model_dump() for item in payload.permissions]
        chapter_lifecycle.update_permissions(db, found, payload.restricted, permissions)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return chapter_read(db, found)


@router.delete("/books/{book_slug}/chapters/{chapter_slug}", response_model=ChapterDeleteResult)
def delete_chapter(
    book_slug: str,
    chapter_slug: str,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
        ensure_can(db, principal, "delete", found)
        chapter_id = int(found.id)
        deletion = chapter_lifecycle.destroy(db, principal, found)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return ChapterDeleteResult(deleted_chapter_id=chapter_id, deletion_id=int(deletion.id))


@router.put("/books/{book_slug}/chapters/{chapter_slug}/move", response_model=ChapterMoveResult)
def move_chapter(
    book_slug: str,
    chapter_slug: str,
    payload: ChapterMoveRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
        ensure_can(db, principal, "update", found)
        ensure_can(db, principal, "delete", found)
        reference = chapter_locator.parse_parent_reference(payload.parent)
        if isinstance(reference, chapter_locator.BookReference):
            target = book_repo.find_visible_book(db, principal, reference.entity_id)
            if target is not None:
                ensure_can(db, principal, "chapter-create", target)
        parent = chapter_relocator.move(db, principal, found, payload.parent)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return ChapterMoveResult(chapter=chapter_read(db, found), parent=BookRead.model_validate(parent, from_attributes=True))


@router.post("/books/{book_slug}/chapters/{chapter_slug}/copy", response_model=ChapterRead)
def copy_chapter(
    book_slug: str,
    chapter_slug: str,
    payload: ChapterCopyRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)

    result = chapter_duplicator.duplicate(db, principal, found, payload.parent, payload.name)
    if result.ok and result.chapter is not None:
        return chapter_read(db, result.chapter)
    if result.stage == "copy":
        raise HTTPException(
            status_code=404,
            detail={
                "message": result.message,
                "navigate": result.navigate,
                "error_kind": result.status,
            },
        )
    raise HTTPException(status_code=_FAILURE_STATUS_CODES.get(result.stage, 400), detail=result.message)


@router.get("/books/{book_slug}/chapters/{chapter_slug}/pages", response_model=list[PageRead])
def chapter_pages(
    book_slug: str,
    chapter_slug: str,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return page_repo.list_visible_by_chapter(db, principal, int(found.id))


@router.post("/books/{book_slug}/chapters/{chapter_slug}/pages", response_model=PageRead)
def create_page(
    book_slug: str,
    chapter_slug: str,
    payload: PageCreateRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        found = chapter_locator.resolve_by_path(db, principal, book_slug, chapter_slug)
        ensure_can(db, principal, "page-create", found)
        return page_repo.create_page(db, principal, found, payload.model_dump())
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
