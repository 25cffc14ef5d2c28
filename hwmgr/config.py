"""Process configuration for the hardware manager plugin."""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
DEFAULT_NODELIST_NAME = "nodelist"


@dataclass
class PluginConfig:
    """Settings shared by the store, engine, reconciler and controller."""
    namespace: str = "default"
    nodelist_name: str = DEFAULT_NODELIST_NAME

    # Requeue tiers (seconds)
    short_requeue_s: float = 15.0
    medium_requeue_s: float = 60.0

    # Artificial latency injected before each allocation step
    allocation_delay_s: float = 0.0
    conflict_retries: int = 10
    shortfall_warning_s: float = 600.0

    # Controller
    workers: int = 2
    resync_period_s: float = 300.0
    watch_timeout_s: int = 30
    error_backoff_base_s: float = 0.5
    error_backoff_max_s: float = 300.0

    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        namespace_path: str = SERVICE_ACCOUNT_NAMESPACE_PATH,
    ) -> "PluginConfig":
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            namespace_path: Service account namespace file used when
                MY_POD_NAMESPACE is not set

        Returns:
            PluginConfig with defaults for anything unset or invalid
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        namespace = env.get("MY_POD_NAMESPACE", "").strip()
        if not namespace:
            namespace = _read_namespace_file(namespace_path) or defaults.namespace
            logger.info(f"MY_POD_NAMESPACE not set, using namespace '{namespace}'")

        def _float(key: str, default: float) -> float:
            raw = (env.get(key) or "").strip()
            if not raw:
                return default
            try:
                value = float(raw)
            except ValueError:
                logger.warning(f"Invalid {key}={raw!r}, using {default}")
                return default
            if value < 0:
                logger.warning(f"Ignoring negative {key}={raw}, using {default}")
                return default
            return value

        def _int(key: str, default: int, minimum: int = 0) -> int:
            raw = (env.get(key) or "").strip()
            if not raw:
                return default
            try:
                value = int(raw)
            except ValueError:
                logger.warning(f"Invalid {key}={raw!r}, using {default}")
                return default
            if value < minimum:
                logger.warning(f"Ignoring {key}={raw} (minimum {minimum}), using {default}")
                return default
            return value

        return cls(
            namespace=namespace,
            nodelist_name=(env.get("HWMGR_NODELIST_NAME") or "").strip() or defaults.nodelist_name,
            short_requeue_s=_float("HWMGR_SHORT_REQUEUE_S", defaults.short_requeue_s),
            medium_requeue_s=_float("HWMGR_MEDIUM_REQUEUE_S", defaults.medium_requeue_s),
            allocation_delay_s=_float("HWMGR_ALLOCATION_DELAY_S", defaults.allocation_delay_s),
            conflict_retries=_int("HWMGR_CONFLICT_RETRIES", defaults.conflict_retries, minimum=1),
            shortfall_warning_s=_float("HWMGR_SHORTFALL_WARNING_S", defaults.shortfall_warning_s),
            workers=_int("HWMGR_WORKERS", defaults.workers, minimum=1),
            resync_period_s=_float("HWMGR_RESYNC_PERIOD_S", defaults.resync_period_s),
            watch_timeout_s=_int("HWMGR_WATCH_TIMEOUT_S", defaults.watch_timeout_s, minimum=1),
            error_backoff_base_s=_float("HWMGR_ERROR_BACKOFF_BASE_S", defaults.error_backoff_base_s),
            error_backoff_max_s=_float("HWMGR_ERROR_BACKOFF_MAX_S", defaults.error_backoff_max_s),
            log_level=(env.get("LOG_LEVEL") or defaults.log_level).strip().upper(),
        )


def _read_namespace_file(path: str) -> Optional[str]:
    try:
        value = Path(path).read_text().strip()
    except OSError:
        return None
    return value or None
