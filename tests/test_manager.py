import os

import pytest

from core.errors import EngineCallFailed, InvalidArgument, NotFound, PersistenceError
from core.models import (
    CURRENT, ChangeFlags, EventType, PlaybackState, PlaylistState, SourceType, Status, TrackDescription,
)
from fakes import FakeLegacySdk, FakeModernSdk, drain, make_track
from player import capabilities
from player.sdk import LEGACY_STATUS_IDS, LegacyMessage


def three_tracks():
    return [make_track("One"), make_track("Two"), make_track("Three")]


class TestDiscovery:
    """Playlists the engine already has, and ones it announces later."""

    def test_existing_playlists_are_loaded_at_start(self, make_manager, modern_sdk):
        modern_sdk.add_storage("A", three_tracks())
        modern_sdk.add_storage("B", [])
        manager = make_manager(modern_sdk)

        playlists = manager.get_playlists()
        assert [p.title for p in playlists] == ["A", "B"]
        assert [p.entry_count for p in playlists] == [3, 0]
        assert all(p.state == PlaylistState.READY for p in playlists)

    def test_added_storage_is_announced(self, make_manager, modern_sdk, events):
        manager = make_manager(modern_sdk)
        manager.register_listener(events)

        handle = modern_sdk.add_storage("Late", three_tracks(), notify=True)
        assert events == []
        drain(manager)

        pid = manager.internals().ids.known(handle)
        assert [e.playlist_id for e in events.of(EventType.PLAYLIST_ADDED)] == [pid]
        assert len(events.of(EventType.PLAYLISTS_CONTENT_CHANGED)) == 1
        assert len(manager.get_playlist_entries(pid)) == 3

    def test_removed_storage_is_purged(self, make_manager, modern_sdk, events, clock):
        handle = modern_sdk.add_storage("Doomed", three_tracks())
        manager = make_manager(modern_sdk)
        manager.register_listener(events)
        internals = manager.internals()
        pid = internals.ids.known(handle)

        modern_sdk.changed(handle, ChangeFlags.CONTENT)
        drain(manager)
        assert internals.coalescer.is_pending(pid)

        modern_sdk.drop_storage(handle)
        drain(manager)

        assert [e.playlist_id for e in events.of(EventType.PLAYLIST_REMOVED)] == [pid]
        assert internals.cache.get_state(pid) == PlaylistState.REMOVED
        assert not internals.coalescer.is_pending(pid)
        with pytest.raises(InvalidArgument):
            manager.get_playlist_crc32(pid)

        clock.advance(5)
        drain(manager)
        assert events.of(EventType.PLAYLIST_CHANGED) == []

    def test_change_for_unknown_storage_adds_it(self, make_manager, modern_sdk):
        manager = make_manager(modern_sdk)
        handle = modern_sdk.add_storage("Quiet", three_tracks())

        modern_sdk.changed(handle, ChangeFlags.CONTENT)
        drain(manager)

        assert [p.title for p in manager.get_playlists()] == ["Quiet"]

    def test_activation(self, make_manager, modern_sdk, events):
        handle = modern_sdk.add_storage("A", [])
        manager = make_manager(modern_sdk)
        manager.register_listener(events)

        modern_sdk.listener.on_storage_activated(handle)
        drain(manager)

        assert [e.type for e in events] == [EventType.PLAYLIST_ACTIVATED]


class TestDebouncedReload:
    """Bursts of change notifications."""

    def test_burst_scenario(self, make_manager, modern_sdk, clock, events):
        for i in range(6):
            modern_sdk.add_storage(f"Filler {i}", [])
        handle = modern_sdk.add_storage("Seven", three_tracks())
        manager = make_manager(modern_sdk)
        manager.register_listener(events)
        pid = manager.internals().ids.known(handle)
        assert pid == 7

        c1 = manager.get_playlist_crc32(pid)
        reads_after_load = modern_sdk.reads[handle]

        clock.now = 0.05
        modern_sdk.changed(handle, ChangeFlags.CONTENT)
        modern_sdk.changed(handle, ChangeFlags.ENTRY_INFO)
        drain(manager)
        clock.now = 0.125
        modern_sdk.storages[handle]["entries"].append(make_track("Four"))
        modern_sdk.changed(handle, ChangeFlags.CONTENT)
        drain(manager)
        assert manager.internals().cache.get_state(pid) == PlaylistState.STALE

        clock.now = 0.75
        drain(manager)
        assert modern_sdk.reads[handle] == reads_after_load

        clock.now = 1.0
        drain(manager)
        assert modern_sdk.reads[handle] == reads_after_load + 1
        assert manager.get_playlist_crc32(pid) != c1
        assert len(manager.get_playlist_entries(pid)) == 4
        assert manager.internals().cache.get_state(pid) == PlaylistState.READY

        changed = events.of(EventType.PLAYLIST_CHANGED)
        assert len(changed) == 1
        assert changed[0].flags == ChangeFlags.CONTENT | ChangeFlags.ENTRY_INFO

        clock.now = 10.0
        drain(manager)
        assert modern_sdk.reads[handle] == reads_after_load + 1

    def test_spaced_notifications_reload_each_time(self, make_manager, modern_sdk, clock):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        base = modern_sdk.reads[handle]

        for t in (2.0, 4.0, 6.0):
            clock.now = t
            modern_sdk.changed(handle, ChangeFlags.CONTENT)
            drain(manager)

        assert modern_sdk.reads[handle] == base + 3

    def test_selection_changes_are_ignored(self, make_manager, modern_sdk, clock):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        base = modern_sdk.reads[handle]

        modern_sdk.changed(handle, ChangeFlags.SELECTION | ChangeFlags.FOCUS)
        clock.now = 5.0
        drain(manager)

        assert modern_sdk.reads[handle] == base

    def test_unchanged_content_reload(self, make_manager, modern_sdk, clock, events):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        manager.register_listener(events)
        pid = manager.internals().ids.known(handle)
        before = [e.stable_id for e in manager.get_playlist_entries(pid)]

        clock.now = 2.0
        modern_sdk.changed(handle, ChangeFlags.STATISTICS)
        drain(manager)

        assert [e.stable_id for e in manager.get_playlist_entries(pid)] == before
        assert len(events.of(EventType.PLAYLIST_CHANGED)) == 1
        assert events.of(EventType.PLAYLISTS_CONTENT_CHANGED) == []

    def test_failed_reload_leaves_playlist_stale(self, make_manager, modern_sdk, clock):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)

        modern_sdk.fail_reads = True
        clock.now = 2.0
        modern_sdk.changed(handle, ChangeFlags.CONTENT)
        drain(manager)

        assert manager.internals().cache.get_state(pid) == PlaylistState.STALE
        assert len(manager.get_playlist_entries(pid)) == 3

        modern_sdk.fail_reads = False
        manager.request_reload(pid)
        drain(manager)
        assert manager.internals().cache.get_state(pid) == PlaylistState.READY

    def test_removed_entry_is_not_served_stale(self, make_manager, modern_sdk, clock):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)
        gone = manager.get_playlist_entries(pid)[2].stable_id

        del modern_sdk.storages[handle]["entries"][2]
        manager.reload_playlist(pid)

        with pytest.raises(InvalidArgument):
            manager.get_entry_filename(TrackDescription(pid, gone))
        with pytest.raises(InvalidArgument):
            manager.get_entry_filename(TrackDescription(pid, 999))

    def test_reload_while_locked(self, make_manager, modern_sdk):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)

        manager.lock_playlist(pid)
        modern_sdk.storages[handle]["entries"].append(make_track("Four"))

        assert manager.reload_playlist(pid) is True
        assert len(manager.get_playlist_entries(pid)) == 4
        assert manager.internals().cache.get_playlist(pid).lock_state is True

        with pytest.raises(EngineCallFailed):
            manager.lock_playlist(pid)
        manager.unlock_playlist(pid)


class TestPlayback:
    """Control calls, playing track and synthesized events."""

    def setup_method(self):
        self.sdk = FakeModernSdk()
        self.handle = self.sdk.add_storage("A", three_tracks())

    def test_control_calls_reach_the_engine(self, make_manager):
        manager = make_manager(self.sdk)
        manager.start_playback()
        manager.pause_playback()
        manager.play_next_track()
        manager.play_previous_track()
        manager.stop_playback()

        assert self.sdk.calls == [("play",), ("pause",), ("next",), ("previous",), ("stop",)]

    def test_start_specific_track(self, make_manager):
        manager = make_manager(self.sdk)
        pid = manager.internals().ids.known(self.handle)
        entry = manager.get_playlist_entries(pid)[1]

        manager.start_playback(TrackDescription(pid, entry.stable_id))

        assert self.sdk.playing == (self.handle, 1)
        assert manager.get_playing_track() == TrackDescription(pid, entry.stable_id)
        assert manager.get_playing_playlist() == pid
        assert manager.get_playing_entry() == entry.stable_id

    def test_current_sentinel(self, make_manager):
        manager = make_manager(self.sdk)
        pid = manager.internals().ids.known(self.handle)

        with pytest.raises(NotFound):
            manager.get_absolute_playlist_id(CURRENT)
        assert manager.get_playing_track() is None

        self.sdk.playing = (self.handle, 2)
        entry_id = manager.get_playlist_entries(pid)[2].stable_id
        assert manager.get_absolute_playlist_id(CURRENT) == pid
        assert manager.get_absolute_entry_id(CURRENT) == entry_id
        assert manager.get_absolute_track_desc(TrackDescription(CURRENT, CURRENT)) == TrackDescription(pid, entry_id)
        assert manager.get_entry_filename(TrackDescription(CURRENT, CURRENT)).endswith("Three.mp3")

        with pytest.raises(InvalidArgument):
            manager.get_absolute_playlist_id(-3)

    def test_track_and_state_changes_are_published(self, make_manager, events):
        manager = make_manager(self.sdk)
        manager.register_listener(events)
        pid = manager.internals().ids.known(self.handle)

        drain(manager)
        assert events == []

        self.sdk.playing = (self.handle, 0)
        self.sdk.status["player"] = int(PlaybackState.PLAYING)
        drain(manager)

        track = events.of(EventType.TRACK_CHANGED)
        assert [e.value for e in track] == [TrackDescription(pid, manager.get_playlist_entries(pid)[0].stable_id)]
        assert [e.value for e in events.of(EventType.PLAYER_STATE_CHANGED)] == [PlaybackState.PLAYING]

        self.sdk.playing = (None, None)
        drain(manager)
        assert events.of(EventType.TRACK_CHANGED)[-1].value is None

    def test_status(self, make_manager, events):
        manager = make_manager(self.sdk)
        manager.register_listener(events)

        manager.set_status(Status.VOLUME, 80)
        manager.set_status(Status.MUTE, True)
        drain(manager)

        assert manager.get_status(Status.VOLUME) == 80
        assert manager.get_status(Status.MUTE) is True
        assert [(e.status, e.value) for e in events.of(EventType.STATUS_CHANGED)] == [
            (Status.VOLUME, 80), (Status.MUTE, True),
        ]
        assert manager.get_playback_state() == PlaybackState.STOPPED

    def test_status_validation(self, make_manager):
        manager = make_manager(self.sdk)

        with pytest.raises(InvalidArgument):
            manager.set_status(Status.VOLUME, 101)
        with pytest.raises(InvalidArgument):
            manager.set_status(Status.BALANCE, -101)
        with pytest.raises(InvalidArgument):
            manager.set_status(Status.PLAYER, 1)
        with pytest.raises(InvalidArgument):
            manager.set_status(Status.POS, -1)

    def test_play_queue(self, make_manager):
        manager = make_manager(self.sdk)
        pid = manager.internals().ids.known(self.handle)
        first, second = [TrackDescription(pid, e.stable_id) for e in manager.get_playlist_entries(pid)[:2]]

        manager.enqueue_entry_for_play(first)
        manager.enqueue_entry_for_play(second, insert_at_queue_beginning=True)
        assert self.sdk.play_queue == [(self.handle, 1), (self.handle, 0)]

        manager.remove_entry_from_play_queue(first)
        assert self.sdk.play_queue == [(self.handle, 1)]
        with pytest.raises(EngineCallFailed):
            manager.remove_entry_from_play_queue(first)

    def test_version(self, make_manager):
        assert make_manager(self.sdk).get_version() == "3.61.0"


class TestEntryInfo:
    def setup_method(self):
        self.sdk = FakeModernSdk()
        self.handle = self.sdk.add_storage("A", [make_track("One"), {"filename": "http://radio", "source": "radio"}])

    def _tracks(self, manager):
        pid = manager.internals().ids.known(self.handle)
        return [TrackDescription(pid, e.stable_id) for e in manager.get_playlist_entries(pid)]

    def test_source_type_and_filename(self, make_manager):
        manager = make_manager(self.sdk)
        local, radio = self._tracks(manager)

        assert manager.get_track_source_type(local) == SourceType.FILE
        assert manager.get_track_source_type(radio) == SourceType.RADIO
        assert manager.get_entry_filename(radio) == "http://radio"

    def test_formatted_title_uses_engine_formatter(self, make_manager):
        manager = make_manager(self.sdk)
        local, _ = self._tracks(manager)
        assert manager.get_formatted_entry_title(local, "%a - %T") == "native:%a - %T"

    def test_crc32_is_exposed(self, make_manager):
        manager = make_manager(self.sdk)
        pid = manager.internals().ids.known(self.handle)
        assert manager.get_playlist_crc32(pid) == manager.internals().cache.get_checksum(pid)

    def test_supported_extensions(self, make_manager):
        assert make_manager(self.sdk).supported_track_extensions() == "*.mp3;*.flac"


class TestCoverArt:
    def setup_method(self):
        self.sdk = FakeModernSdk()
        self.handle = self.sdk.add_storage("A", [make_track("One"), make_track("Two")])

    def _tracks(self, manager):
        pid = manager.internals().ids.known(self.handle)
        return [TrackDescription(pid, e.stable_id) for e in manager.get_playlist_entries(pid)]

    def test_cover_file(self, make_manager, tmp_path):
        cover = tmp_path / "cover.jpg"
        cover.write_bytes(b"\xff\xd8jpeg")
        self.sdk.covers[(self.handle, 0)] = (str(cover), None)
        manager = make_manager(self.sdk)
        with_cover, without = self._tracks(manager)

        assert manager.is_cover_image_file_exist(with_cover) == str(cover)
        assert manager.is_cover_image_file_exist(without) is None

        target = tmp_path / "out.jpg"
        manager.save_cover_to_file(with_cover, str(target))
        assert target.read_bytes() == b"\xff\xd8jpeg"

    def test_embedded_cover_bytes(self, make_manager, tmp_path):
        self.sdk.covers[(self.handle, 1)] = (None, b"PNGDATA")
        manager = make_manager(self.sdk)
        _, embedded = self._tracks(manager)

        target = tmp_path / "out.png"
        manager.save_cover_to_file(embedded, str(target))
        assert target.read_bytes() == b"PNGDATA"

    def test_errors(self, make_manager, tmp_path):
        self.sdk.covers[(self.handle, 1)] = (None, b"PNGDATA")
        manager = make_manager(self.sdk)
        without, embedded = self._tracks(manager)

        with pytest.raises(InvalidArgument):
            manager.save_cover_to_file(embedded, str(tmp_path / "x.png"), 100, 100)
        with pytest.raises(NotFound):
            manager.save_cover_to_file(without, str(tmp_path / "y.png"))
        with pytest.raises(PersistenceError):
            manager.save_cover_to_file(embedded, str(tmp_path / "missing-dir" / "z.png"))


class TestEditing:
    def test_add_and_remove(self, make_manager, modern_sdk, clock):
        handle = modern_sdk.add_storage("A", three_tracks())
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)

        manager.add_file_to_playlist("/music/new.mp3", pid)
        manager.add_url_to_playlist("http://example.com/a.mp3", pid)
        clock.now = 2.0
        drain(manager)
        entries = manager.get_playlist_entries(pid)
        assert [e.filename for e in entries][-2:] == ["/music/new.mp3", "http://example.com/a.mp3"]

        manager.remove_track(TrackDescription(pid, entries[0].stable_id), physically=False)
        assert modern_sdk.calls[-1] == ("remove_entry", handle, 0, False)

    def test_unknown_playlist(self, make_manager, modern_sdk):
        manager = make_manager(modern_sdk)
        with pytest.raises(InvalidArgument):
            manager.add_file_to_playlist("/music/a.mp3", 42)

    def test_create_playlist(self, make_manager, modern_sdk, events):
        manager = make_manager(modern_sdk)
        manager.register_listener(events)

        pid = manager.create_playlist("Fresh")
        assert isinstance(pid, int)
        drain(manager)

        assert [p.title for p in manager.get_playlists()] == ["Fresh"]
        assert [e.playlist_id for e in events.of(EventType.PLAYLIST_ADDED)] == [pid]


class TestRatings:
    def test_native_rating(self, make_manager, modern_sdk):
        handle = modern_sdk.add_storage("A", [make_track("One", rating=1)])
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)
        track = TrackDescription(pid, manager.get_playlist_entries(pid)[0].stable_id)

        assert manager.track_rating(track) == 1.0
        manager.set_track_rating(track, 4)

        assert modern_sdk.storages[handle]["entries"][0]["rating"] == 4.0
        assert manager.track_rating(track) == 4.0

    def test_rating_range(self, make_manager, modern_sdk):
        handle = modern_sdk.add_storage("A", [make_track("One")])
        manager = make_manager(modern_sdk)
        pid = manager.internals().ids.known(handle)
        track = TrackDescription(pid, manager.get_playlist_entries(pid)[0].stable_id)

        with pytest.raises(InvalidArgument):
            manager.set_track_rating(track, 5.5)


class TestLegacyEngine:
    """The same surface over a generation 2 engine."""

    def setup_method(self):
        self.sdk = FakeLegacySdk()
        self.handle = self.sdk.add_playlist("Old", three_tracks())

    def _first_track(self, manager):
        pid = manager.internals().ids.known(self.handle)
        return TrackDescription(pid, manager.get_playlist_entries(pid)[0].stable_id)

    def test_rating_is_kept_by_filename(self, make_manager, clock):
        manager = make_manager(self.sdk)
        track = self._first_track(manager)

        manager.set_track_rating(track, 3.5)
        assert manager.track_rating(track) == 3.5

        # content change: rows are rebuilt, the rating survives
        self.sdk.playlists[self.handle]["entries"].append(make_track("Four"))
        self.sdk.message(LegacyMessage.STORAGE_CHANGED, self.handle)
        clock.now = 2.0
        drain(manager)

        assert manager.track_rating(self._first_track(manager)) == 3.5

    def test_local_title_formatting(self, make_manager):
        manager = make_manager(self.sdk)
        assert manager.get_formatted_entry_title(self._first_track(manager), "%a - %T (%L)") == "Artist - One (3:30)"

    def test_playing_track(self, make_manager):
        manager = make_manager(self.sdk)
        assert manager.get_playing_track() is None

        self.sdk.play_entry(self.handle, 0)
        self.sdk.status[LEGACY_STATUS_IDS[Status.PLAYER]] = 1
        assert manager.get_playing_track() == self._first_track(manager)
        assert manager.get_playback_state() == PlaybackState.PLAYING

    def test_physical_removal(self, make_manager, tmp_path):
        path = tmp_path / "bye.mp3"
        path.write_bytes(b"ID3")
        handle = self.sdk.add_playlist("Files", [make_track("Bye", filename=str(path))])
        manager = make_manager(self.sdk)
        pid = manager.internals().ids.known(handle)

        manager.remove_track(TrackDescription(pid, manager.get_playlist_entries(pid)[0].stable_id), physically=True)

        assert not os.path.exists(path)

    def test_reused_handle_starts_unlocked(self, make_manager):
        manager = make_manager(self.sdk)
        old_id = manager.internals().ids.known(self.handle)
        manager.lock_playlist(old_id)

        del self.sdk.playlists[self.handle]
        self.sdk.message(LegacyMessage.STORAGE_REMOVED, self.handle)
        drain(manager)

        self.sdk.playlists[self.handle] = {"title": "Reborn", "entries": []}
        self.sdk.message(LegacyMessage.STORAGE_ADDED, self.handle)
        drain(manager)

        new_id = manager.internals().ids.known(self.handle)
        assert new_id != old_id
        assert manager.internals().cache.get_playlist(new_id).lock_state is False

        manager.lock_playlist(new_id)
        assert manager.internals().cache.get_playlist(new_id).lock_state is True
        manager.unlock_playlist(new_id)

    def test_supported_extensions_and_version(self, make_manager):
        manager = make_manager(self.sdk)
        assert manager.supported_track_extensions() == "*.mp3;*.ogg;*.wav"
        assert manager.get_version() == "2.61.0"


class TestListeners:
    def test_unregister(self, make_manager, modern_sdk, events):
        manager = make_manager(modern_sdk)
        listener_id = manager.register_listener(events)

        modern_sdk.add_storage("A", [], notify=True)
        manager.unregister_listener(listener_id)
        drain(manager)

        assert events == []
        with pytest.raises(InvalidArgument):
            manager.unregister_listener(listener_id)

    def test_broken_listener_does_not_block_others(self, make_manager, modern_sdk, events):
        manager = make_manager(modern_sdk)

        def broken(event):
            raise ValueError("bug")

        manager.register_listener(broken)
        manager.register_listener(events)
        modern_sdk.add_storage("A", [], notify=True)
        drain(manager)

        assert len(events.of(EventType.PLAYLIST_ADDED)) == 1


def test_store_failure_is_fatal_at_construction(tmp_path, clock):
    from player.manager import EngineManager

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(PersistenceError):
        EngineManager(FakeModernSdk(), str(blocker), clock=clock)


@pytest.mark.parametrize("view", [
    capabilities.PlaybackControl,
    capabilities.PlayQueue,
    capabilities.PlaylistReader,
    capabilities.CoverArtProvider,
    capabilities.PlaylistEditor,
    capabilities.EntryRatingManager,
    capabilities.PlaylistUpdateManager,
    capabilities.SupportedFormatsGetter,
    capabilities.EventSource,
])
def test_manager_covers_every_narrow_view(make_manager, modern_sdk, view):
    assert isinstance(make_manager(modern_sdk), view)
