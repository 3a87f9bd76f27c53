"""Tests for the Gyazo sync engine."""

import asyncio

import pytest

from gyazobridge.core.config import GyazoConfig
from gyazobridge.core.errors import ConfigurationError, SyncCancelledError, TransportError
from gyazobridge.core.sync import GyazoSyncEngine
from gyazobridge.sources.notes.codec import OCR_HEADING, note_relative_path
from gyazobridge.utils.db import SyncCheckpoint

from .conftest import FakeGyazoSource, make_image


def _engine(config, db_path, source) -> GyazoSyncEngine:
    return GyazoSyncEngine(config, db_path, client=source)


def _notes(vault) -> list[str]:
    folder = vault / "Gyazo"
    if not folder.exists():
        return []
    return sorted(path.relative_to(vault).as_posix() for path in folder.rglob("*.md"))


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_missing_token_fails_before_any_io(vault, db_path):
    config = GyazoConfig(vault_path=vault)
    source = FakeGyazoSource([make_image(0)])
    engine = _engine(config, db_path, source)

    with pytest.raises(ConfigurationError):
        await engine.run_sync()

    assert source.page_calls == []
    assert not db_path.exists()
    assert _notes(vault) == []


@pytest.mark.asyncio
async def test_pagination_stops_at_page_cap(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(i) for i in range(100)])
    engine = _engine(gyazo_config, db_path, source)

    result = await engine.run_sync()

    assert source.page_calls == [1, 2]
    assert result.pages_fetched == 2
    assert result.fetched == 40
    assert result.created == 40
    assert len(_notes(vault)) == 40
    checkpoint = await engine.db.get_checkpoint()
    assert checkpoint.last_fetched_id == "img000"
    assert checkpoint.last_fetch_time > 0


@pytest.mark.asyncio
async def test_pagination_stops_on_short_page(gyazo_config, db_path):
    config = gyazo_config.model_copy(update={"max_images_to_fetch": 100})
    source = FakeGyazoSource([make_image(i) for i in range(25)])
    engine = _engine(config, db_path, source)

    result = await engine.run_sync()

    assert source.page_calls == [1, 2]
    assert result.fetched == 25
    assert result.created == 25


@pytest.mark.asyncio
async def test_empty_account_reports_no_images(gyazo_config, db_path, vault):
    source = FakeGyazoSource([])
    engine = _engine(gyazo_config, db_path, source)
    messages = []

    result = await engine.run_sync(notify=messages.append)

    assert result.status == "no_images"
    assert messages == ["No images found on Gyazo"]
    assert not (vault / "Gyazo").exists()
    assert (await engine.db.get_checkpoint()).last_fetched_id == ""


@pytest.mark.asyncio
async def test_incremental_run_only_processes_new_images(gyazo_config, db_path, vault):
    older = [make_image(i) for i in range(2, 7)]
    source = FakeGyazoSource(older)
    engine = _engine(gyazo_config, db_path, source)

    first = await engine.run_sync()
    assert first.created == 5
    assert (await engine.db.get_checkpoint()).last_fetched_id == "img002"

    source.images = [make_image(0), make_image(1)] + older
    source.detail_calls.clear()
    second = await engine.run_sync()

    assert second.created == 2
    assert second.updated == 0
    assert source.detail_calls == ["img000", "img001"]
    assert (await engine.db.get_checkpoint()).last_fetched_id == "img000"
    assert len(_notes(vault)) == 7


@pytest.mark.asyncio
async def test_pagination_stops_at_page_holding_checkpoint(gyazo_config, db_path):
    config = gyazo_config.model_copy(update={"max_images_to_fetch": 100})
    source = FakeGyazoSource([make_image(i) for i in range(60)])
    engine = _engine(config, db_path, source)
    await engine.initialize()
    await engine.db.save_checkpoint(SyncCheckpoint(last_fetched_id="img025", last_fetch_time=1.0))

    result = await engine.run_sync()

    assert source.page_calls == [1, 2]
    assert result.created == 25
    assert "img025" not in source.detail_calls


@pytest.mark.asyncio
async def test_nothing_newer_than_checkpoint_keeps_it(gyazo_config, db_path):
    source = FakeGyazoSource([make_image(i) for i in range(5)])
    engine = _engine(gyazo_config, db_path, source)
    await engine.initialize()
    await engine.db.save_checkpoint(SyncCheckpoint(last_fetched_id="img000", last_fetch_time=1.0))

    result = await engine.run_sync()

    assert result.created == 0
    assert source.detail_calls == []
    checkpoint = await engine.db.get_checkpoint()
    assert checkpoint.last_fetched_id == "img000"
    assert checkpoint.last_fetch_time > 1.0


@pytest.mark.asyncio
async def test_force_refetch_recreates_managed_notes_only(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(i) for i in range(3)])
    engine = _engine(gyazo_config, db_path, source)
    await engine.run_sync()

    manual = vault / "Gyazo" / "manual.md"
    manual.write_text("# My own note\n\nNot from Gyazo.\n", encoding="utf-8")
    await engine.db.set_force_refetch(True)
    messages = []

    result = await engine.run_sync(notify=messages.append)

    assert result.force_deleted == 3
    assert result.created == 3
    assert manual.exists()
    assert len(_notes(vault)) == 4
    assert any("Force refetch" in message for message in messages)
    checkpoint = await engine.db.get_checkpoint()
    assert checkpoint.force_refetch is False
    assert checkpoint.last_fetched_id == "img000"


@pytest.mark.asyncio
async def test_failed_detail_is_skipped_and_checkpoint_advances(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(i) for i in range(3)])
    source.broken.add("img000")
    engine = _engine(gyazo_config, db_path, source)

    result = await engine.run_sync()

    assert result.skipped == 1
    assert result.created == 2
    assert not (vault / note_relative_path(make_image(0), "Gyazo")).exists()
    assert (await engine.db.get_checkpoint()).last_fetched_id == "img000"

    runs = await engine.db.get_recent_runs()
    assert runs[0]["status"] == "completed"
    assert runs[0]["created"] == 2
    assert runs[0]["skipped"] == 1


@pytest.mark.asyncio
async def test_late_ocr_is_merged_into_existing_note(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(0)])
    engine = _engine(gyazo_config, db_path, source)
    await engine.run_sync()
    path = vault / note_relative_path(make_image(0), "Gyazo")
    assert OCR_HEADING not in path.read_text(encoding="utf-8")

    await engine.db.clear_all()
    source.details["img000"] = make_image(0, ocr="late text")
    result = await engine.run_sync()

    assert result.updated == 1
    text = path.read_text(encoding="utf-8")
    assert "late text" in text
    assert text.count(OCR_HEADING) == 1
    assert _notes(vault) == [path.relative_to(vault).as_posix()]

    await engine.db.clear_all()
    again = await engine.run_sync()
    assert again.unchanged == 1
    assert path.read_text(encoding="utf-8") == text


@pytest.mark.asyncio
async def test_title_change_updates_the_note_found_by_id(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(0, title="Old title")])
    engine = _engine(gyazo_config, db_path, source)
    await engine.run_sync()
    original_path = note_relative_path(make_image(0, title="Old title"), "Gyazo")

    await engine.db.clear_all()
    source.details["img000"] = make_image(0, title="New title")
    result = await engine.run_sync()

    assert result.updated == 1
    assert result.created == 0
    assert _notes(vault) == [original_path]
    assert "title: New title" in (vault / original_path).read_text(encoding="utf-8")
    assert await engine.db.get_note_path("img000") == original_path


@pytest.mark.asyncio
async def test_name_collision_with_foreign_note_uses_id_suffix(gyazo_config, db_path, vault):
    record = make_image(0, title="Shot")
    taken = vault / note_relative_path(record, "Gyazo")
    taken.parent.mkdir(parents=True)
    taken.write_text("# Someone else's note\n", encoding="utf-8")
    engine = _engine(gyazo_config, db_path, FakeGyazoSource([record]))

    result = await engine.run_sync()

    assert result.created == 1
    assert taken.read_text(encoding="utf-8") == "# Someone else's note\n"
    assert (vault / "Gyazo" / "Gyazo 2024-01-31_120000 Shot img000.md").exists()


def _detection_source() -> FakeGyazoSource:
    images = [make_image(i) for i in range(5)]
    source = FakeGyazoSource(images)
    return source


async def _shrink_window(source: FakeGyazoSource) -> None:
    # img002 is gone upstream, img003 still exists, img004 cannot be checked
    still_there = source.images[3]
    source.images = source.images[:2]
    source.missing.add("img002")
    source.details["img003"] = still_there
    source.broken.add("img004")


@pytest.mark.asyncio
async def test_deleted_images_are_flagged_when_note_deletion_is_off(gyazo_config, db_path, vault):
    config = gyazo_config.model_copy(update={"detect_deleted_images": True})
    source = _detection_source()
    engine = _engine(config, db_path, source)
    first = await engine.run_sync()
    assert first.deletions.candidates == 0

    await _shrink_window(source)
    messages = []
    result = await engine.run_sync(notify=messages.append)

    gone = note_relative_path(make_image(2), "Gyazo")
    assert result.deletions.candidates == 3
    assert result.deletions.flagged_notes == [gone]
    assert result.deletions.deleted_notes == []
    assert f"Image deleted on Gyazo: {gone}" in messages
    assert (vault / gone).exists()
    assert len(_notes(vault)) == 5


@pytest.mark.asyncio
async def test_deleted_images_remove_notes_when_enabled(gyazo_config, db_path, vault):
    config = gyazo_config.model_copy(
        update={"detect_deleted_images": True, "delete_notes_for_deleted_images": True}
    )
    source = _detection_source()
    engine = _engine(config, db_path, source)
    await engine.run_sync()

    await _shrink_window(source)
    result = await engine.run_sync()

    gone = note_relative_path(make_image(2), "Gyazo")
    assert result.deletions.deleted_notes == [gone]
    assert result.deletions.flagged_notes == []
    assert not (vault / gone).exists()
    assert (vault / note_relative_path(make_image(3), "Gyazo")).exists()
    assert (vault / note_relative_path(make_image(4), "Gyazo")).exists()
    assert await engine.db.get_note_path("img002") is None


@pytest.mark.asyncio
async def test_second_trigger_while_running_is_ignored(gyazo_config, db_path):
    source = FakeGyazoSource([make_image(0)])
    source.gate = asyncio.Event()
    engine = _engine(gyazo_config, db_path, source)

    first = asyncio.create_task(engine.run_sync())
    await _wait_for(lambda: source.page_calls)
    assert engine.is_running

    messages = []
    busy = await engine.run_sync(notify=messages.append)

    assert busy.status == "busy"
    assert messages == ["Gyazo sync already in progress; ignoring this trigger"]

    source.gate.set()
    result = await first
    assert result.status == "completed"
    assert result.created == 1
    assert source.page_calls == [1]


@pytest.mark.asyncio
async def test_close_cancels_a_run_in_progress(gyazo_config, db_path, vault):
    source = FakeGyazoSource([make_image(0)])
    source.gate = asyncio.Event()
    engine = _engine(gyazo_config, db_path, source)

    run = asyncio.create_task(engine.run_sync())
    await _wait_for(lambda: source.page_calls)
    await engine.close()
    source.gate.set()

    with pytest.raises(SyncCancelledError):
        await run

    assert _notes(vault) == []
    assert (await engine.db.get_checkpoint()).last_fetched_id == ""
    runs = await engine.db.get_recent_runs()
    assert runs[0]["status"] == "cancelled"

    with pytest.raises(SyncCancelledError):
        await engine.run_sync()


@pytest.mark.asyncio
async def test_long_title_still_gets_a_note(gyazo_config, db_path, vault):
    record = make_image(0, title="スクリーンショットのタイトル" * 8)
    engine = _engine(gyazo_config, db_path, FakeGyazoSource([record]))

    result = await engine.run_sync()

    assert result.created == 1
    assert result.skipped == 0
    [note] = _notes(vault)
    assert len(note.rsplit("/", 1)[1].encode("utf-8")) <= 255
    assert await engine.db.get_note_path("img000") == note


@pytest.mark.asyncio
async def test_force_refetch_keeps_going_when_one_delete_fails(gyazo_config, db_path, vault, monkeypatch):
    source = FakeGyazoSource([make_image(i) for i in range(3)])
    engine = _engine(gyazo_config, db_path, source)
    await engine.run_sync()
    stuck = note_relative_path(make_image(1), "Gyazo")

    original_delete = engine.store.delete

    async def delete(relative_path):
        if relative_path == stuck:
            raise RuntimeError(f"Failed to delete note '{relative_path}': permission denied")
        return await original_delete(relative_path)

    monkeypatch.setattr(engine.store, "delete", delete)
    await engine.db.set_force_refetch(True)

    result = await engine.run_sync()

    assert result.status == "completed"
    assert result.force_deleted == 2
    assert result.created == 2
    assert result.unchanged == 1
    assert len(_notes(vault)) == 3
    assert (await engine.db.get_checkpoint()).force_refetch is False


@pytest.mark.asyncio
async def test_list_page_failure_aborts_without_moving_checkpoint(gyazo_config, db_path, vault):
    older = [make_image(i) for i in range(30, 33)]
    source = FakeGyazoSource(older)
    engine = _engine(gyazo_config, db_path, source)
    await engine.run_sync()
    before = await engine.db.get_checkpoint()

    source.images = [make_image(i) for i in range(25)] + older
    source.failing_pages.add(2)
    with pytest.raises(TransportError):
        await engine.run_sync()

    assert source.page_calls[-2:] == [1, 2]
    assert await engine.db.get_checkpoint() == before
    assert len(_notes(vault)) == 3
    runs = await engine.db.get_recent_runs()
    assert runs[0]["status"] == "error"
    assert "page 2" in runs[0]["error_message"]


@pytest.mark.asyncio
async def test_initialize_reopens_a_closed_engine(gyazo_config, db_path):
    source = FakeGyazoSource([make_image(0)])
    engine = _engine(gyazo_config, db_path, source)
    await engine.close()

    with pytest.raises(SyncCancelledError):
        await engine.run_sync()

    await engine.initialize()
    result = await engine.run_sync()

    assert result.created == 1
