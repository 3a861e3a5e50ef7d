"""
run_all.py

Start the LMS portal and its background workers in one go.

Usage:
    python run_all.py

This script:
- Configures logging once for every module
- Starts the Flask portal in a daemon thread
- Stops time trackers and live notification sockets on Ctrl+C
"""
import logging
import sys
import threading
import time

from config import LMS_API_URL, PORTAL_HOST, PORTAL_PORT, setup_logging

logger = logging.getLogger("run_all")


def run_portal():
    """Run the Flask portal in this thread"""
    from portal.app import app

    logger.info("Starting portal on http://%s:%s (API %s)", PORTAL_HOST, PORTAL_PORT, LMS_API_URL)
    # debug=False and use_reloader=False are required off the main thread
    app.run(host=PORTAL_HOST, port=PORTAL_PORT, debug=False, use_reloader=False)


def shutdown():
    from portal.app import notification_hub, time_tracker

    time_tracker.stop_all()
    notification_hub.disconnect_all()


def main():
    setup_logging()
    portal_thread = threading.Thread(target=run_portal, name="portal", daemon=True)
    portal_thread.start()

    try:
        while portal_thread.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        shutdown()

    sys.exit(0)


if __name__ == "__main__":
    main()
