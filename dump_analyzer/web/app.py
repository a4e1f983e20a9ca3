"""Flask application factory."""

from __future__ import annotations

import atexit
from typing import Any, Mapping, Optional

from flask import Flask

from ..config import settings
from ..runtime.tasks import TaskExecutor
from ..storage.database import connect
from ..utils.logging_utils import get_logger
from .routes import bp

LOGGER = get_logger("web.app")


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.setdefault("DUMP_ANALYZER_DB", settings.database_path)
    app.config.setdefault("DUMP_ANALYZER_WORK_ROOT", str(settings.work_root))
    if config:
        app.config.update(config)

    connection = connect(app.config["DUMP_ANALYZER_DB"])
    executor = TaskExecutor(connection)
    app.dump_analyzer_connection = connection
    app.dump_analyzer_tasks = executor

    def _shutdown() -> None:
        executor.shutdown(wait=False)
        connection.close()

    atexit.register(_shutdown)
    app.register_blueprint(bp)

    LOGGER.info("Serving dump analyzer with database %s", app.config["DUMP_ANALYZER_DB"])
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
