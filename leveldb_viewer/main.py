"""LevelDB Viewer - forensic inspection of LevelDB records, manifest and info logs."""

import sys
from pathlib import Path

from PySide6.QtWidgets import QApplication, QMessageBox
from PySide6.QtCore import Qt
from PySide6.QtGui import QFont

# Support both: python main.py (from leveldb_viewer/) and python -m leveldb_viewer (from repo root)
if __package__:
    from .config import load_config
    from .errors import ConfigError
    from .gui.main_window import LevelDBViewerMainWindow
    from .log import get_logger, setup_logging
else:
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
    from leveldb_viewer.config import load_config
    from leveldb_viewer.errors import ConfigError
    from leveldb_viewer.gui.main_window import LevelDBViewerMainWindow
    from leveldb_viewer.log import get_logger, setup_logging


def main():
    # High DPI: must be set before QApplication
    QApplication.setHighDpiScaleFactorRoundingPolicy(Qt.HighDpiScaleFactorRoundingPolicy.PassThrough)
    app = QApplication(sys.argv)
    app.setApplicationName("LevelDB Viewer")
    app.setApplicationDisplayName("LevelDB Viewer — Forensic LevelDB Inspection")
    app.setOrganizationName("Forensic Tools")
    font = QFont("Ubuntu", 10)
    app.setFont(font)
    try:
        config = load_config()
    except ConfigError as e:
        setup_logging()
        get_logger().error("%s", e)
        QMessageBox.critical(None, "LevelDB Viewer", f"Invalid configuration: {e}")
        sys.exit(2)
    setup_logging(config.log_level)
    win = LevelDBViewerMainWindow(config)
    if len(sys.argv) > 1:
        win.process_paths([Path(p) for p in sys.argv[1:]])
    win.showMaximized()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
