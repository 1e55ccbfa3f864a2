import logging
import sys
import os
import argparse
from PySide6.QtWidgets import QApplication, QMessageBox
from PySide6.QtCore import QTimer
from config.config_manager import ConfigManager
from core.context import LockerContext
from gui.main_window import MainWindow


def setup_logging(log_level):
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = os.path.expanduser("~/.dirtlocker")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "dirtlocker.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stdout)
        ]
    )


def main():
    parser = argparse.ArgumentParser(description="Dirt Locker: moderation records for Discord users.")
    parser.add_argument('--config', default=None, help='Path to the YAML config file.')
    parser.add_argument('--log-level', default=None, help='Override the configured logging level.')
    args = parser.parse_args()

    config_manager = ConfigManager(args.config)
    setup_logging(args.log_level or config_manager.logging_level)

    logging.info("Starting Dirt Locker GUI")

    app = QApplication(sys.argv)
    app.setApplicationName("Dirt Locker")

    if not config_manager.discord_token:
        logging.warning("No Discord token configured; user lookups and avatar downloads will fail")

    try:
        context = LockerContext.from_config(config_manager)
    except (OSError, ValueError) as e:
        logging.error(f"Could not open the locker: {e}", exc_info=True)
        QMessageBox.critical(None, "Dirt Locker", f"Could not open the locker:\n{e}")
        return 1

    window = MainWindow(context)
    window.show()
    logging.info("[startup] window shown")

    # Load entries on the next event-loop tick so the empty window paints first.
    QTimer.singleShot(0, window.reload_entries)

    exit_code = app.exec()

    logging.info(f"Application exiting with code {exit_code}.")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
