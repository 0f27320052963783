import asyncio
import logging
import os

from bluos import BluOSClient
from coordinator import ScrobblingCoordinator
from lastfm_client import LastFMBackend, LibreFMBackend
from scrobble_queue import ScrobbleQueue
from settings import BridgeConfig, ScrobbleSettings

# -------------------------
# Configuration via ENV VARS
# -------------------------
CONFIG = BridgeConfig.from_env()

# -------------------------
# Logging setup
# -------------------------
logging.basicConfig(
    level=getattr(logging, CONFIG.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    force=True,  # ensure our config is used even if libs pre-configure logging
)
log = logging.getLogger("bluos-scrobbler")


def build_backends(config: BridgeConfig) -> list:
    backends = []
    if config.lastfm.is_configured:
        backends.append(LastFMBackend(
            api_key=config.lastfm.api_key,
            api_secret=config.lastfm.api_secret,
            session_key=config.lastfm.session_key,
            username=config.lastfm.username,
            password_md5=config.lastfm.password_md5,
            session_file=os.path.join(config.data_dir, "lastfm_session.json"),
        ))
    if config.librefm.username or config.librefm.session_key:
        backends.append(LibreFMBackend(
            api_key=config.librefm.api_key,
            api_secret=config.librefm.api_secret,
            session_key=config.librefm.session_key,
            username=config.librefm.username,
            password_md5=config.librefm.password_md5,
            session_file=os.path.join(config.data_dir, "librefm_session.json"),
        ))
    return backends


async def connect_backends(backends: list, settings: ScrobbleSettings) -> None:
    """Validate restored sessions and authenticate the enabled backends that need it."""
    for backend in backends:
        if not settings.is_backend_enabled(backend.name):
            log.info("%s is disabled; skipping authentication", backend.name)
            continue
        if backend.auth_state.is_connected:
            if await backend.validate_session():
                continue
            log.warning("%s session is no longer valid; re-authenticating", backend.name)
        try:
            await backend.authenticate()
        except Exception as e:
            log.error("%s authentication failed, backend stays disconnected: %s", backend.name, e)


async def run(config: BridgeConfig) -> None:
    settings = ScrobbleSettings.from_env()
    backends = build_backends(config)
    if not backends:
        raise SystemExit("Configure LASTFM_API_KEY + LASTFM_API_SECRET and/or LIBREFM_USERNAME")

    queue = ScrobbleQueue(config.queue_path)
    coordinator = ScrobblingCoordinator(
        source=BluOSClient(config.bluos_host, config.bluos_port),
        settings=settings,
        backends=backends,
        queue=queue,
    )

    coordinator.restore_auth_state()
    await connect_backends(backends, settings)

    log.info("Starting BluOS scrobbler. Device: %s:%s | Queue: %s (size=%s) | Backends: %s",
             config.bluos_host, config.bluos_port, config.queue_path, queue.size(),
             ", ".join(f"{b.name}={'on' if settings.is_backend_enabled(b.name) else 'off'}"
                       for b in backends))

    coordinator.start()
    try:
        await asyncio.Event().wait()
    finally:
        await coordinator.stop()


def main():
    asyncio.run(run(CONFIG))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        log.info("Shutting down…")
