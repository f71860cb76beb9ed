"""
streamscout server
------------------
Finds HLS manifest URLs (.m3u8) embedded in web pages and relays upstream
streams to media players without CORS or referer blocks.

Features:
- /scrape: static or headless-browser page fetch, manifest discovery, best pick
- /proxy: chunked relay with Range passthrough and caching headers
- CORS headers on every response
- Optional domain allow-listing (ALLOWLIST env var)
- Dual-mode launcher: Flask dev server or Gunicorn production server
"""

import logging
import sys

from streamscout import Settings, create_app

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
)

# ---------------------------------------------------------------------------
# Flask application setup
# ---------------------------------------------------------------------------
app = create_app(settings)


# ---------------------------------------------------------------------------
# Entrypoint: run with Flask dev server or Gunicorn
# ---------------------------------------------------------------------------
def main():
    if settings.use_gunicorn:
        # Run under Gunicorn
        from gunicorn.app.wsgiapp import run

        sys.argv = [
            "gunicorn",
            "-w", str(settings.workers),
            "-b", f"0.0.0.0:{settings.port}",
            "--log-level", settings.log_level,
            "--access-logfile", "-",
            "--error-logfile", "-",
            "--capture-output",
            "app:app",
        ]
        run()
    else:
        logging.getLogger(__name__).info(
            "Server running at http://localhost:%d (fetch mode: %s)",
            settings.port, settings.fetch_mode,
        )
        # Run with Flask's built-in dev server
        app.run(host="0.0.0.0", port=settings.port, threaded=True)


if __name__ == "__main__":
    main()
