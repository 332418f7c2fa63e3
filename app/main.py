import os
import time
import logging

from artwork import ArtworkResolver
from bluos import BluOSClient, BluOSStatus
from deezer_client import DeezerClient
from history import HistoryStore
from lastfm_client import LastFMClient
from metadata_rules import MetadataProcessor
from scheduler import ScrobbleScheduler
from watcher import PlayerWatcher

# -------------------------
# Configuration via ENV VARS
# -------------------------
BLUOS_HOST = os.getenv("BLUOS_HOST", "127.0.0.1")
BLUOS_PORT = int(os.getenv("BLUOS_PORT", "11000"))
POLL_INTERVAL = max(1, int(os.getenv("POLL_INTERVAL", "3")))
SAMPLE_INTERVAL = max(0.1, float(os.getenv("SAMPLE_INTERVAL", "0.5")))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LASTFM_API_KEY = os.getenv("LASTFM_API_KEY")
LASTFM_API_SECRET = os.getenv("LASTFM_API_SECRET")
LASTFM_SESSION_KEY = os.getenv("LASTFM_SESSION_KEY")
LASTFM_USERNAME = os.getenv("LASTFM_USERNAME")
LASTFM_PASSWORD_MD5 = os.getenv("LASTFM_PASSWORD_MD5")

HISTORY_PATH = os.getenv("HISTORY_PATH", "/data/scrobble_history.json")
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "5000"))
RULES_PATH = os.getenv("RULES_PATH", "/data/metadata_rules.json")
SCROBBLING_ENABLED = os.getenv("SCROBBLING_ENABLED", "true").lower() in ("1", "true", "yes", "on")

# -------------------------
# Logging setup
# -------------------------
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    force=True,  # ensure our config is used even if libs pre-configure logging
)
log = logging.getLogger("bluos-scrobbler")


def main():
    # Validate Last.fm configuration up-front for clear errors
    if not LASTFM_API_KEY or not LASTFM_API_SECRET:
        raise SystemExit("LASTFM_API_KEY and LASTFM_API_SECRET are required")

    if not (LASTFM_SESSION_KEY or (LASTFM_USERNAME and LASTFM_PASSWORD_MD5)):
        log.warning("No LASTFM_SESSION_KEY or LASTFM_USERNAME + LASTFM_PASSWORD_MD5; running without submissions")

    # Initialize clients
    blu = BluOSClient(BLUOS_HOST, BLUOS_PORT)
    lfm = LastFMClient(
        api_key=LASTFM_API_KEY,
        api_secret=LASTFM_API_SECRET,
        session_key=LASTFM_SESSION_KEY,
        username=LASTFM_USERNAME,
        password_md5=LASTFM_PASSWORD_MD5,
    )
    processor = MetadataProcessor()
    processor.load_rules(RULES_PATH)
    history = HistoryStore(HISTORY_PATH, HISTORY_LIMIT)
    resolver = ArtworkResolver(lfm, DeezerClient(), username=LASTFM_USERNAME)

    scheduler = ScrobbleScheduler(
        processor, lfm, history, blu.sample, resolver,
        sample_interval=SAMPLE_INTERVAL,
        scrobbling_enabled=SCROBBLING_ENABLED,
    )
    watcher = PlayerWatcher(scheduler)

    log.info("Starting BluOS scrobbler. Poll interval: %ss, sample interval: %ss", POLL_INTERVAL, SAMPLE_INTERVAL)
    log.info("BluOS device: %s:%s | History: %s (limit=%s, size=%s) | Rules: %s",
             BLUOS_HOST, BLUOS_PORT, HISTORY_PATH, HISTORY_LIMIT, history.count(), RULES_PATH)
    scheduler.start()

    try:
        while True:
            status: BluOSStatus | None = blu.get_status()
            if status is not None:
                log.debug("Parsed: state=%s artist=%s title=%s album=%s elapsed=%s duration=%s",
                          status.state, status.artist, status.title, status.album, status.secs, status.duration)
            else:
                log.debug("Parsed: status=None (unreachable or XML parse failed)")
            watcher.observe(status)
            time.sleep(POLL_INTERVAL)
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log.info("Shutting down…")
