import asyncio

import pytest

from novel_viewer.models import DocumentKey
from novel_viewer.window import ByteWindowManager, FetchError, window_start

from conftest import FakeTextSource, run


KEY = DocumentKey(album_id="album", item_id="book.txt")
WIDTH = 256 * 1024


def manager_for(size, key=KEY):
    source = FakeTextSource({key: b"a" * size})
    return ByteWindowManager(source), source


class TestWindowStart:

    def test_centered(self):
        assert window_start(500_000, 1_000_000, WIDTH) == 368_928

    def test_clamped_to_start(self):
        assert window_start(10, 1_000_000, WIDTH) == 0

    def test_clamped_to_end(self):
        assert window_start(999_999, 1_000_000, WIDTH) == 1_000_000 - WIDTH

    def test_small_document(self):
        assert window_start(500, 1000, WIDTH) == 0


def test_initial_load_centers_on_target():
    manager, source = manager_for(1_000_000)

    loaded = run(manager.load_initial(KEY, target_byte=500_000))

    window = loaded.window
    assert (window.start, window.end, window.total) == (368_928, 631_072, 1_000_000)
    assert window.width == WIDTH
    assert len(loaded.text) == WIDTH
    assert source.calls[0] == (KEY, 0, 1024)
    assert source.calls[1] == (KEY, 368_928, WIDTH)


def test_initial_load_from_fraction():
    manager, _ = manager_for(1_000_000)
    loaded = run(manager.load_initial(KEY, fraction=0.0))
    assert loaded.window.start == 0
    assert loaded.window.end == WIDTH


def test_small_document_fits_in_one_window():
    manager, _ = manager_for(1000)
    loaded = run(manager.load_initial(KEY, fraction=0.7))
    assert (loaded.window.start, loaded.window.end, loaded.window.total) == (0, 1000, 1000)
    assert loaded.window.at_document_start
    assert loaded.window.at_document_end


def test_empty_document_has_nonzero_total():
    manager, _ = manager_for(0)
    loaded = run(manager.load_initial(KEY))
    assert loaded.window.total == 1
    assert loaded.text == ""


def test_translation_round_trip():
    manager, _ = manager_for(1_000_000)
    run(manager.load_initial(KEY, target_byte=500_000))

    assert manager.translate_scroll_to_global(0.0) == pytest.approx(0.368928)
    assert manager.translate_scroll_to_global(1.0) == pytest.approx(0.631072)
    assert manager.translate_global_to_window_local(0.5) == pytest.approx(0.5)
    for local in [0.0, 0.1, 0.25, 0.5, 0.77, 1.0]:
        back = manager.translate_global_to_window_local(manager.translate_scroll_to_global(local))
        assert back == pytest.approx(local, abs=1e-9)


def test_translation_clamps_outside_window():
    manager, _ = manager_for(1_000_000)
    run(manager.load_initial(KEY, target_byte=500_000))
    assert manager.translate_global_to_window_local(0.1) == 0.0
    assert manager.translate_global_to_window_local(0.9) == 1.0


def test_translation_without_window_is_identity():
    manager, _ = manager_for(10)
    assert manager.translate_scroll_to_global(0.3) == 0.3
    assert manager.translate_global_to_window_local(0.3) == 0.3


def test_recenter_moves_window():
    manager, _ = manager_for(1_000_000)
    run(manager.load_initial(KEY, target_byte=500_000))

    loaded = run(manager.recenter(KEY, 0.9))

    assert loaded.window.start == 1_000_000 - WIDTH
    assert loaded.window.end == 1_000_000
    assert loaded.window.at_document_end
    assert manager.loaded is loaded
    assert not manager.busy


def test_recenter_ignores_other_document():
    manager, _ = manager_for(1_000_000)
    run(manager.load_initial(KEY, target_byte=500_000))
    before = manager.loaded
    assert run(manager.recenter(DocumentKey(album_id="album", item_id="other"), 0.9)) is None
    assert manager.loaded is before


def test_recenter_without_window_is_dropped():
    manager, source = manager_for(1_000_000)
    assert run(manager.recenter(KEY, 0.5)) is None
    assert source.calls == []


def test_recenter_is_single_flight():
    manager, source = manager_for(1_000_000)

    async def scenario():
        await manager.load_initial(KEY, target_byte=500_000)
        source.gate = asyncio.Event()
        first = asyncio.ensure_future(manager.recenter(KEY, 0.8))
        await asyncio.sleep(0)
        assert manager.busy
        second = await manager.recenter(KEY, 0.85)
        third = await manager.recenter(KEY, 0.2)
        source.gate.set()
        return await first, second, third

    first, second, third = run(scenario())

    assert first is not None
    assert second is None
    assert third is None
    assert len(source.calls) == 3
    assert not manager.busy


def test_failed_recenter_keeps_previous_window():
    manager, source = manager_for(1_000_000)
    run(manager.load_initial(KEY, target_byte=500_000))
    before = manager.loaded
    source.fail = True

    with pytest.raises(FetchError):
        run(manager.recenter(KEY, 0.9))

    assert manager.loaded is before
    assert not manager.busy

    source.fail = False
    assert run(manager.recenter(KEY, 0.9)) is not None


def test_reset_drops_recenter_in_flight():
    manager, source = manager_for(1_000_000)

    async def scenario():
        await manager.load_initial(KEY, target_byte=500_000)
        source.gate = asyncio.Event()
        task = asyncio.ensure_future(manager.recenter(KEY, 0.9))
        await asyncio.sleep(0)
        manager.reset()
        source.gate.set()
        return await task

    assert run(scenario()) is None
    assert manager.loaded is None
    assert not manager.busy


def test_reset_drops_initial_load_in_flight():
    manager, source = manager_for(1_000_000)
    source.gate = asyncio.Event()

    async def scenario():
        task = asyncio.ensure_future(manager.load_initial(KEY, target_byte=0))
        await asyncio.sleep(0)
        manager.reset()
        source.gate.set()
        return await task

    assert run(scenario()) is None
    assert manager.loaded is None


class TestShouldRecenter:

    def loaded_manager(self, size=1_000_000, target=500_000):
        manager, _ = manager_for(size)
        run(manager.load_initial(KEY, target_byte=target))
        return manager

    def test_near_window_end(self):
        assert self.loaded_manager().should_recenter(0.95, 0.6)

    def test_near_window_start(self):
        assert self.loaded_manager().should_recenter(0.05, 0.4)

    def test_middle_of_window(self):
        assert not self.loaded_manager().should_recenter(0.5, 0.5)

    def test_near_document_end(self):
        assert not self.loaded_manager().should_recenter(0.95, 0.995)

    def test_near_document_start(self):
        assert not self.loaded_manager().should_recenter(0.05, 0.005)

    def test_window_at_document_end(self):
        manager = self.loaded_manager(target=999_000)
        assert not manager.should_recenter(0.95, 0.9)
        assert manager.should_recenter(0.05, 0.75)

    def test_small_document_never_recenters(self):
        manager = self.loaded_manager(size=1000, target=500)
        for local in [0.0, 0.05, 0.5, 0.95, 1.0]:
            for global_fraction in [0.02, 0.5, 0.98]:
                assert not manager.should_recenter(local, global_fraction)

    def test_no_window(self):
        manager, _ = manager_for(1000)
        assert not manager.should_recenter(0.95, 0.5)

    def test_busy(self):
        manager = self.loaded_manager()
        manager._busy = True
        assert not manager.should_recenter(0.95, 0.5)
