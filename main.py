import logging
import os
import signal
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from core.errors import ControlError
from core.state import QtEventBridge
from library.tags import iter_audio_paths
from player.capabilities import PlaylistEditor
from player.mpv_engine import MpvSdk
from player.mpv_ipc import MpvClient
from plugin.context import PluginContext

logger = logging.getLogger("mediactl")


def print_event(event) -> None:
    print(f"[{event.type.name}] playlist={event.playlist_id} flags={int(event.flags)} value={event.value!r}")


def fill_playlist(manager: PlaylistEditor, sources: list[str]) -> int:
    """Create one playlist from files, folders and URLs given on the command line."""
    playlist_id = manager.create_playlist("Command line")
    for source in sources:
        try:
            if "://" in source:
                manager.add_url_to_playlist(source, playlist_id)
            elif os.path.isdir(source):
                for path in iter_audio_paths([source]):
                    manager.add_file_to_playlist(path, playlist_id)
            else:
                manager.add_file_to_playlist(source, playlist_id)
        except ControlError as e:
            logger.warning("Skipping %s: %s", source, e)
    return playlist_id


def main() -> int:
    qt_app = QCoreApplication(sys.argv)
    qt_app.setApplicationName("mediactl")
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    sdk = MpvSdk(MpvClient())
    try:
        sdk.start()
    except (OSError, ControlError) as e:
        print(f"Failed to start mpv: {e}", file=sys.stderr)
        return 1

    ctx = PluginContext(sdk, work_dir=os.getenv("MEDIACTL_WORK_DIR") or None)
    try:
        ctx.initialize()
    except ControlError as e:
        print(f"Failed to initialize: {e}", file=sys.stderr)
        sdk.shutdown()
        return 1

    bridge = QtEventBridge(ctx.manager)
    bridge.received.connect(print_event)

    sources = qt_app.arguments()[1:]
    if sources:
        fill_playlist(ctx.manager, sources)
        qt_app.processEvents()
        try:
            ctx.manager.start_playback()
        except ControlError as e:
            logger.error("Playback did not start: %s", e)

    signal.signal(signal.SIGINT, lambda *_: qt_app.quit())
    try:
        return qt_app.exec()
    finally:
        bridge.detach()
        ctx.finalize()
        sdk.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
