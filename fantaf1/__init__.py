import logging
import os
from flask import Flask

from .racing import SAFETY_LIMITS


def _env_int(name, default):
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def create_app():
    app = Flask(__name__)

    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)

    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError(
            "DATABASE_URL is required. Set it to a PostgreSQL connection string."
        )

    app.config["SCORING_MAX_WORKERS"] = _env_int("SCORING_MAX_WORKERS", 8)

    # Initialize connection pool early (optional; direct connect works if pool init fails)
    try:
        from . import datastore_pg as _pg
        _pg.init_pool(minconn=_env_int("DB_POOL_MIN", 1), maxconn=_env_int("DB_POOL_MAX", 10))
    except Exception:  # pragma: no cover
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from .notifications import RateLimiter, client_from_env
    app.extensions["notify_test_limiter"] = RateLimiter(
        max_calls=_env_int("NOTIFY_TEST_MAX_CALLS", SAFETY_LIMITS["MAX_TEST_CALLS_PER_MINUTE"]),
        window_seconds=_env_int("NOTIFY_TEST_WINDOW_S", SAFETY_LIMITS["RATE_LIMIT_WINDOW_SECONDS"]),
    )
    app.extensions["push_client"] = client_from_env()

    from . import routes  # type: ignore
    routes._cache_clear_all()
    app.register_blueprint(routes.bp)

    from . import cli
    cli.register(app)

    app.logger.info("fantaf1 app ready (scoring workers=%s)", app.config["SCORING_MAX_WORKERS"])
    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
