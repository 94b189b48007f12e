"""Process startup: directories, logging, config and the long-lived engine objects."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler

from db.pending_selections import PendingSelectionStore
from engine.acquisition import AcquisitionService
from engine.config import EngineConfig, load_config, parse_config
from engine.paths import EnginePaths, build_engine_paths, resolve_config_path, setup_logging
from engine.selection_cache import InteractiveSelectionCache
from scheduler.jobs.selection_expiry import start_selection_expiry_scheduler

CONFIG_ENV_VAR = "SLSKD_ACQ_CONFIG"

logger = logging.getLogger(__name__)


@dataclass
class EngineRuntime:
    paths: EnginePaths
    config_path: str
    config: EngineConfig
    service: AcquisitionService
    scheduler: BackgroundScheduler | None = None

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None


def start_engine(config_path=None, *, client=None, start_scheduler=True) -> EngineRuntime:
    """Build the service from the config file under ``CONFIG_DIR``.

    ``config_path`` falls back to ``$SLSKD_ACQ_CONFIG`` and then to
    ``config.json``. An override outside ``CONFIG_DIR`` is logged and ignored.
    Raises ``ValueError`` when the config does not validate.
    """
    paths = build_engine_paths()
    setup_logging(paths.log_dir)
    try:
        resolved = resolve_config_path(config_path or os.environ.get(CONFIG_ENV_VAR))
    except ValueError as exc:
        logger.error("Invalid config override: %s", exc)
        resolved = resolve_config_path(None)

    result = parse_config(load_config(resolved))
    if not result.ok:
        raise ValueError(f"invalid config {resolved}: " + "; ".join(result.errors))
    config = result.config

    store = PendingSelectionStore(paths.db_path)
    store.ensure_schema()
    cache = InteractiveSelectionCache(store, timeout_seconds=config.selection.timeout_seconds)
    service = AcquisitionService(config, client=client, cache=cache, db_path=paths.db_path)
    scheduler = start_selection_expiry_scheduler(cache) if start_scheduler else None
    logger.info("acquisition engine started config=%s db=%s mode=%s", resolved, paths.db_path, config.selection.mode)
    return EngineRuntime(paths=paths, config_path=resolved, config=config, service=service, scheduler=scheduler)
