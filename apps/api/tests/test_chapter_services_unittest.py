import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, Session, create_engine, select

from wikishelf.core.auth import AuthPrincipal
from wikishelf.core.config import settings
from wikishelf.models.content import Chapter, Deletion, JointPermission, Page
from wikishelf.services import (
    base_repo,
    book_repo,
    chapter_duplicator,
    chapter_lifecycle,
    chapter_locator,
    chapter_relocator,
    entity_store,
    page_repo,
    permission_service,
)
from wikishelf.services.errors import (
    InvalidOperationError,
    NotFoundError,
    StorageFailureError,
)
from wikishelf.services.unit_of_work import commit, unit_of_work


class ChapterServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "auth_admin_users": settings.auth_admin_users,
            "chapter_draft_name": settings.chapter_draft_name,
            "duplicate_rollback_on_failure": settings.duplicate_rollback_on_failure,
        }
        settings.auth_admin_users = ""
        settings.duplicate_rollback_on_failure = True

        self.engine = create_engine("sqlite:///:memory:", echo=False)
        SQLModel.metadata.create_all(self.engine)
        self.db = Session(self.engine)
        self.author = AuthPrincipal(user_id="author")
        self.reader = AuthPrincipal(user_id="reader")

    def tearDown(self) -> None:
        self.db.close()
        SQLModel.metadata.drop_all(self.engine)
        self.engine.dispose()
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def _book(self, name: str, **fields):
        return book_repo.create_book(self.db, self.author, {"name": name, **fields})

    def _chapter(self, book, name: str, tags=None):
        return chapter_lifecycle.create(self.db, self.author, {"name": name, "tags": tags}, book)

    def _page(self, chapter, name: str, html: str = "", tags=None):
        return page_repo.create_page(
            self.db,
            self.author,
            chapter,
            {"name": name, "html": html, "tags": tags},
        )

    def _chapters_in(self, book_id: int) -> list[Chapter]:
        stmt = select(Chapter).where(Chapter.book_id == book_id).order_by(Chapter.id.asc())
        return self.db.exec(stmt).all()

    def _chapter_state(self, chapter_id: int) -> dict:
        chapter = self.db.get(Chapter, chapter_id)
        return {
            "book_id": chapter.book_id,
            "name": chapter.name,
            "slug": chapter.slug,
            "description": chapter.description,
            "priority": chapter.priority,
            "restricted": chapter.restricted,
            "updated_at": chapter.updated_at,
            "tags": [(tag.name, tag.value) for tag in base_repo.list_tags(self.db, chapter)],
            "pages": [
                (page.id, page.name, page.slug, page.html, page.priority)
                for page in page_repo.list_by_chapter(self.db, chapter_id)
            ],
        }

    def _restricted_book(self, name: str, grants: dict[str, list[str]]):
        permissions = [
            {"user_id": user_id, "action": action}
            for user_id, actions in grants.items()
            for action in actions
        ]
        return self._book(name, restricted=True, permissions=permissions)

    def test_parse_parent_reference_variants(self) -> None:
        self.assertEqual(
            chapter_locator.parse_parent_reference("book:5"),
            chapter_locator.BookReference(entity_id=5),
        )
        self.assertIsInstance(
            chapter_locator.parse_parent_reference("chapter:9"),
            chapter_locator.ChapterReference,
        )
        self.assertIsInstance(
            chapter_locator.parse_parent_reference("page:5"),
            chapter_locator.PageReference,
        )
        self.assertEqual(
            chapter_locator.parse_parent_reference("book:9223372036854775807"),
            chapter_locator.BookReference(entity_id=2**63 - 1),
        )
        for raw in (
            "book:abc",
            "book:",
            "book:-1",
            "shelf:3",
            "",
            None,
            "book 5",
            "book:9223372036854775808",
            "book:99999999999999999999",
        ):
            self.assertIsInstance(
                chapter_locator.parse_parent_reference(raw),
                chapter_locator.InvalidReference,
                f"{raw!r} should not parse",
            )
        self.assertEqual(
            chapter_locator.parse_parent_reference("book:99999999999999999999").reason,
            "id out of range",
        )

    def test_resolve_parent_token_requires_visible_book(self) -> None:
        book = self._book("Handbook")
        hidden = self._restricted_book("Vault", {"author": ["view", "chapter-create"]})

        resolved = chapter_locator.resolve_parent_token(self.db, self.author, f"book:{book.id}")
        self.assertEqual(resolved.id, book.id)

        with self.assertRaises(InvalidOperationError):
            chapter_locator.resolve_parent_token(self.db, self.author, "page:5")
        with self.assertRaises(InvalidOperationError):
            chapter_locator.resolve_parent_token(self.db, self.author, "book:abc")
        with self.assertRaises(InvalidOperationError):
            chapter_locator.resolve_parent_token(self.db, self.author, "book:99999999999999999999")
        with self.assertRaises(NotFoundError):
            chapter_locator.resolve_parent_token(self.db, self.author, "book:999")
        with self.assertRaises(NotFoundError):
            chapter_locator.resolve_parent_token(self.db, self.reader, f"book:{hidden.id}")

    def test_resolve_by_path_hides_drafts_and_restricted_chapters(self) -> None:
        book = self._book("Handbook")
        chapter = self._chapter(book, "Getting Started")

        found = chapter_locator.resolve_by_path(self.db, self.reader, "handbook", "getting-started")
        self.assertEqual(found.id, chapter.id)

        with self.assertRaises(NotFoundError):
            chapter_locator.resolve_by_path(self.db, self.reader, "handbook", "missing")

        chapter_lifecycle.update_permissions(
            self.db,
            chapter,
            True,
            [{"user_id": "author", "action": "view"}],
        )
        with self.assertRaises(NotFoundError):
            chapter_locator.resolve_by_path(self.db, self.reader, "handbook", "getting-started")
        self.assertEqual(
            chapter_locator.resolve_by_path(self.db, self.author, "handbook", "getting-started").id,
            chapter.id,
        )

        draft = chapter_lifecycle.create_draft(self.db, self.author, book)
        self.assertIsNone(entity_store.find_visible_chapter_by_id(self.db, self.reader, int(draft.id)))
        self.assertIsNotNone(entity_store.find_visible_chapter_by_id(self.db, self.author, int(draft.id)))

    def test_create_assigns_next_priority_and_owner(self) -> None:
        book = self._book("Handbook")
        first = self._chapter(book, "Intro")
        self.assertEqual(first.priority, 1)
        self.assertEqual(first.book_id, book.id)
        self.assertEqual(first.created_by, "author")
        self.assertEqual(first.slug, "intro")

        first.priority = 7
        entity_store.save(self.db, first)
        second = self._chapter(book, "Intro")
        self.assertEqual(second.priority, 8)
        self.assertEqual(second.slug, "intro-2")
        self.assertTrue(permission_service.user_can(self.db, self.reader, "view", second))

    def test_update_renames_and_ignores_unknown_fields(self) -> None:
        book = self._book("Handbook")
        chapter = self._chapter(book, "Intro", tags=[{"name": "level", "value": "basic"}])

        updated = chapter_lifecycle.update(
            self.db,
            AuthPrincipal(user_id="editor"),
            chapter,
            {"name": "Overview", "book_id": 999, "source_chapter_id": 42, "tags": [{"name": "level", "value": "advanced"}]},
        )
        self.assertEqual(updated.name, "Overview")
        self.assertEqual(updated.slug, "overview")
        self.assertEqual(updated.book_id, book.id)
        self.assertIsNone(updated.source_chapter_id)
        self.assertEqual(updated.updated_by, "editor")
        self.assertEqual(
            [(tag.name, tag.value) for tag in base_repo.list_tags(self.db, updated)],
            [("level", "advanced")],
        )

    def test_create_draft_uses_placeholder_name_and_rebuilds(self) -> None:
        settings.chapter_draft_name = "Untitled"
        book = self._book("Handbook")
        with mock.patch.object(permission_service, "rebuild", wraps=permission_service.rebuild) as rebuild_spy:
            draft = chapter_lifecycle.create_draft(self.db, self.author, book)

        self.assertEqual(draft.name, "Untitled")
        self.assertTrue(draft.draft)
        self.assertEqual(draft.book_id, book.id)
        self.assertEqual(draft.created_by, "author")
        self.assertEqual(rebuild_spy.call_count, 1)
        self.assertTrue(permission_service.user_can(self.db, self.author, "page-create", draft))

    def test_destroy_moves_chapter_and_pages_to_trash(self) -> None:
        book = self._book("Handbook")
        chapter = self._chapter(book, "Intro")
        page = self._page(chapter, "Welcome", "<p>hi</p>")
        chapter_id = int(chapter.id)

        deletion = chapter_lifecycle.destroy(self.db, self.author, chapter)

        self.assertIsInstance(deletion, Deletion)
        self.assertEqual(deletion.deletable_type, "chapter")
        self.assertEqual(deletion.deletable_id, chapter_id)
        self.assertEqual(deletion.deleted_by, "author")
        with self.assertRaises(NotFoundError):
            chapter_locator.resolve_by_path(self.db, self.author, "handbook", "intro")
        self.assertIsNotNone(self.db.get(Page, page.id).deleted_at)
        remaining = self.db.exec(
            select(JointPermission).where(
                JointPermission.entity_type == "chapter",
                JointPermission.entity_id == chapter_id,
            )
        ).all()
        self.assertEqual(remaining, [])

    def test_move_changes_owner_and_keeps_identity(self) -> None:
        source_book = self._book("Handbook")
        target_book = self._book("Archive")
        chapter = self._chapter(source_book, "Intro")
        page = self._page(chapter, "Welcome", "<p>hi</p>")
        chapter_id = int(chapter.id)

        with mock.patch.object(permission_service, "rebuild", wraps=permission_service.rebuild) as rebuild_spy:
            parent = chapter_relocator.move(self.db, self.author, chapter, f"book:{target_book.id}")

        self.assertEqual(parent.id, target_book.id)
        self.assertGreaterEqual(rebuild_spy.call_count, 1)
        moved = self.db.get(Chapter, chapter_id)
        self.assertEqual(moved.book_id, target_book.id)
        self.assertEqual(moved.name, "Intro")
        self.assertEqual(moved.slug, "intro")
        moved_page = self.db.get(Page, page.id)
        self.assertEqual(moved_page.chapter_id, chapter_id)
        self.assertEqual(moved_page.book_id, target_book.id)

    def test_move_refreshes_slug_on_collision(self) -> None:
        source_book = self._book("Handbook")
        target_book = self._book("Archive")
        self._chapter(target_book, "Intro")
        chapter = self._chapter(source_book, "Intro")

        chapter_relocator.move(self.db, self.author, chapter, f"book:{target_book.id}")
        self.assertEqual(self.db.get(Chapter, chapter.id).slug, "intro-2")

    def test_move_rejects_non_book_targets_without_writing(self) -> None:
        book = self._book("Handbook")
        chapter = self._chapter(book, "Intro")

        for token in ("chapter:9", "page:1", "book:abc", "book:999", "book:99999999999999999999"):
            with self.assertRaises(InvalidOperationError):
                chapter_relocator.move(self.db, self.author, chapter, token)
            self.assertEqual(self.db.get(Chapter, chapter.id).book_id, book.id)

    def test_move_applies_target_book_permissions(self) -> None:
        source_book = self._book("Handbook")
        target_book = self._restricted_book(
            "Vault",
            {"author": ["view", "update", "delete", "chapter-create", "page-create"]},
        )
        chapter = self._chapter(source_book, "Intro")
        page = self._page(chapter, "Welcome")
        self.assertTrue(permission_service.user_can(self.db, self.reader, "view", chapter))

        chapter_relocator.move(self.db, self.author, chapter, f"book:{target_book.id}")

        self.assertFalse(permission_service.user_can(self.db, self.reader, "view", chapter))
        self.assertFalse(permission_service.user_can(self.db, self.reader, "view", self.db.get(Page, page.id)))
        self.assertTrue(permission_service.user_can(self.db, self.author, "view", chapter))

    def test_duplicate_copies_chapter_and_pages(self) -> None:
        book = self._book("Handbook")
        self._chapter(book, "C1")
        source = self._chapter(book, "C2", tags=[{"name": "t1", "value": "v1"}])
        self._page(source, "P1", "<p>one</p>", tags=[{"name": "kind", "value": "intro"}])
        self._page(source, "P2", "<p>two</p>")
        source_id = int(source.id)

        with mock.patch.object(permission_service, "rebuild", wraps=permission_service.rebuild) as rebuild_spy:
            result = chapter_duplicator.duplicate(self.db, self.author, source, f"book:{book.id}", "C2 Copy")

        self.assertTrue(result.ok, result.error)
        self.assertEqual(result.stage, "done")
        self.assertGreaterEqual(rebuild_spy.call_count, 2)
        copy = result.chapter
        self.assertEqual(result.parent.id, book.id)
        self.assertNotEqual(copy.id, source_id)
        self.assertEqual(copy.book_id, book.id)
        self.assertEqual(copy.name, "C2 Copy")
        self.assertEqual(copy.slug, "c2-copy")
        self.assertEqual(copy.priority, 3)
        self.assertEqual(copy.source_chapter_id, source_id)
        self.assertFalse(copy.draft)
        self.assertEqual(
            [(tag.name, tag.value) for tag in base_repo.list_tags(self.db, copy)],
            [("t1", "v1")],
        )

        copied_pages = page_repo.list_by_chapter(self.db, int(copy.id))
        self.assertEqual([item.name for item in copied_pages], ["P1", "P2"])
        self.assertEqual([item.html for item in copied_pages], ["<p>one</p>", "<p>two</p>"])
        self.assertEqual([item.priority for item in copied_pages], [1, 2])
        self.assertTrue(all(item.book_id == book.id for item in copied_pages))
        self.assertEqual(
            [(tag.name, tag.value) for tag in base_repo.list_tags(self.db, copied_pages[0])],
            [("kind", "intro")],
        )

        refreshed_source = self.db.get(Chapter, source_id)
        self.assertEqual(refreshed_source.name, "C2")
        self.assertEqual(refreshed_source.priority, 2)
        self.assertEqual(len(page_repo.list_by_chapter(self.db, source_id)), 2)

        base_repo.apply_tags(self.db, copy, [{"name": "t1", "value": "changed"}])
        self.assertEqual(
            [(tag.name, tag.value) for tag in base_repo.list_tags(self.db, refreshed_source)],
            [("t1", "v1")],
        )

    def test_duplicate_defaults_to_source_book_and_name(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro")

        result = chapter_duplicator.duplicate(self.db, self.author, source)

        self.assertTrue(result.ok)
        self.assertEqual(result.chapter.name, "Intro")
        self.assertEqual(result.chapter.slug, "intro-2")
        self.assertEqual(result.chapter.book_id, book.id)

    def test_duplicate_into_another_book(self) -> None:
        book = self._book("Handbook")
        other = self._book("Archive")
        source = self._chapter(book, "Intro")
        self._page(source, "Welcome")

        result = chapter_duplicator.duplicate(self.db, self.author, source, f"book:{other.id}")

        self.assertTrue(result.ok)
        self.assertEqual(result.chapter.book_id, other.id)
        self.assertEqual(result.chapter.priority, 1)
        self.assertEqual(len(page_repo.list_by_chapter(self.db, int(result.chapter.id))), 1)

    def test_duplicate_reports_invalid_target(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro")

        for token in ("page:5", "book:abc", "book:999", "book:99999999999999999999"):
            result = chapter_duplicator.duplicate(self.db, self.author, source, token)
            self.assertFalse(result.ok)
            self.assertEqual(result.status, "invalid_operation")
            self.assertEqual(result.stage, "resolve")
        self.assertEqual(len(self._chapters_in(int(book.id))), 1)

    def test_duplicate_without_chapter_create_permission_creates_nothing(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro")
        target = self._restricted_book("Vault", {"reader": ["view"]})

        result = chapter_duplicator.duplicate(self.db, self.reader, source, f"book:{target.id}")

        self.assertEqual(result.status, "permission_denied")
        self.assertEqual(result.stage, "authorize")
        self.assertEqual(self._chapters_in(int(target.id)), [])

    def test_duplicate_rolls_back_when_page_copy_is_denied(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro", tags=[{"name": "t1", "value": "v1"}])
        self._page(source, "Welcome", "<p>hello</p>")
        target = self._restricted_book("Vault", {"reader": ["view", "chapter-create"]})
        before = self._chapter_state(int(source.id))

        result = chapter_duplicator.duplicate(self.db, self.reader, source, f"book:{target.id}")

        self.assertFalse(result.ok)
        self.assertEqual(result.status, "permission_denied")
        self.assertEqual(result.stage, "copy")
        self.assertEqual(result.message, chapter_duplicator.GENERIC_FAILURE_MESSAGE)
        self.assertEqual(result.navigate, "back")
        self.assertEqual(self._chapters_in(int(target.id)), [])
        self.assertEqual(self._chapter_state(int(source.id)), before)

    def test_duplicate_keeps_partial_copy_when_rollback_disabled(self) -> None:
        settings.duplicate_rollback_on_failure = False
        book = self._book("Handbook")
        source = self._chapter(book, "Intro", tags=[{"name": "t1", "value": "v1"}])
        self._page(source, "Welcome", "<p>hello</p>")
        target = self._restricted_book("Vault", {"reader": ["view", "chapter-create"]})
        before = self._chapter_state(int(source.id))

        result = chapter_duplicator.duplicate(self.db, self.reader, source, f"book:{target.id}")

        self.assertEqual(result.status, "permission_denied")
        self.assertEqual(result.stage, "copy")
        leftovers = self._chapters_in(int(target.id))
        self.assertEqual(len(leftovers), 1)
        self.assertEqual(leftovers[0].source_chapter_id, source.id)
        self.assertEqual(page_repo.list_by_chapter(self.db, int(leftovers[0].id)), [])
        self.assertEqual(self._chapter_state(int(source.id)), before)

    def test_duplicate_reports_read_failures_as_storage_failure(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro", tags=[{"name": "t1", "value": "v1"}])
        self._page(source, "Welcome", "<p>hello</p>")
        before = self._chapter_state(int(source.id))
        read_error = OperationalError("SELECT", {}, Exception("connection lost"))

        with mock.patch.object(page_repo, "list_by_chapter", side_effect=read_error):
            result = chapter_duplicator.duplicate(self.db, self.author, source)

        self.assertFalse(result.ok)
        self.assertEqual(result.status, "storage_failure")
        self.assertEqual(result.stage, "copy")
        self.assertEqual(result.message, chapter_duplicator.GENERIC_FAILURE_MESSAGE)
        self.assertEqual(result.navigate, "back")
        self.assertIs(result.error, read_error)
        self.assertEqual([item.id for item in self._chapters_in(int(book.id))], [source.id])
        self.assertEqual(self._chapter_state(int(source.id)), before)

    def test_duplicate_does_not_carry_source_restrictions(self) -> None:
        book = self._book("Handbook")
        source = self._chapter(book, "Intro")
        chapter_lifecycle.update_permissions(
            self.db,
            source,
            True,
            [{"user_id": "author", "action": action} for action in ("view", "update", "delete", "page-create")],
        )

        result = chapter_duplicator.duplicate(self.db, self.author, source)

        self.assertTrue(result.ok)
        self.assertFalse(result.chapter.restricted)
        self.assertTrue(permission_service.user_can(self.db, self.reader, "view", result.chapter))

    def test_admin_bypasses_restrictions(self) -> None:
        settings.auth_admin_users = "root"
        vault = self._restricted_book("Vault", {"author": ["view"]})
        root = AuthPrincipal(user_id="root")

        self.assertFalse(permission_service.user_can(self.db, self.reader, "view", vault))
        self.assertTrue(permission_service.user_can(self.db, root, "delete", vault))
        self.assertEqual(
            [item.id for item in book_repo.list_visible_books(self.db, root)],
            [vault.id],
        )

    def test_rebuild_all_regenerates_joint_permissions(self) -> None:
        book = self._book("Handbook")
        chapter = self._chapter(book, "Intro")
        self._page(chapter, "Welcome")
        for row in self.db.exec(select(JointPermission)).all():
            self.db.delete(row)
        self.db.commit()
        self.assertFalse(permission_service.user_can(self.db, self.reader, "view", chapter))

        total = permission_service.rebuild_all(self.db)

        self.assertEqual(total, 3)
        self.assertTrue(permission_service.user_can(self.db, self.reader, "view", chapter))

    def test_commit_failure_raises_storage_failure(self) -> None:
        with mock.patch.object(self.db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("down"))):
            with self.assertRaises(StorageFailureError):
                commit(self.db)

    def test_unit_of_work_rolls_back_on_error(self) -> None:
        book = self._book("Handbook")

        with self.assertRaises(InvalidOperationError):
            with unit_of_work(self.db):
                self._chapter(book, "Intro")
                raise InvalidOperationError("stop")

        self.assertEqual(self._chapters_in(int(book.id)), [])


if __name__ == "__main__":
    unittest.main()
