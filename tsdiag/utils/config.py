"""Case-study configuration files.

A case study is described by one YAML file under ``configs/case_studies/``
(data source, frequency and start, transform, decomposition mode, which of
the exponential smoothing / ARIMA / GLS fitters to run, forecast horizon,
diagnostic lags, output directory). Each file is layered on top of
``configs/defaults.yaml``, so a case study only states what differs from
the shared settings, e.g. ``models.arima.ic: bic`` keeps every other
``models.arima`` default.
"""

from pathlib import Path
from typing import Any

import yaml

from tsdiag.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIGS_DIR = PROJECT_ROOT / "configs"
DEFAULTS_PATH = CONFIGS_DIR / "defaults.yaml"
CASE_STUDIES_DIR = CONFIGS_DIR / "case_studies"


def _deep_merge(base: dict, override: dict) -> dict:
    """Layer ``override`` on ``base`` section by section.

    Nested sections (``models.arima``, ``forecast``, ...) are merged key by
    key; any other value in ``override`` replaces the one in ``base``.
    Neither input is modified.
    """
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_paths: list[str | Path]) -> dict[str, Any]:
    """Read YAML files in order and layer each on the ones before it.

    Args:
        config_paths: Defaults first, most specific file last.

    Returns:
        Merged configuration dictionary. An empty file contributes nothing.

    Raises:
        FileNotFoundError: If a config file does not exist.
        ConfigurationError: If a file does not hold a mapping at top level.
    """
    merged: dict[str, Any] = {}
    for path in config_paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ConfigurationError(
                f"{path}: expected a mapping of config sections, got {type(config).__name__}"
            )
        merged = _deep_merge(merged, config)
    return merged


def load_case_study_config(
    case_path: str | Path,
    defaults_path: str | Path | None = DEFAULTS_PATH,
) -> dict[str, Any]:
    """Load one case-study YAML on top of the shared defaults.

    Args:
        case_path: Path to the case-study YAML file.
        defaults_path: Shared defaults applied first. ``None`` skips them.

    Returns:
        Merged configuration dictionary.
    """
    paths: list[str | Path] = []
    if defaults_path is not None:
        paths.append(defaults_path)
    paths.append(case_path)
    return load_config(paths)


def list_case_studies(directory: Path = CASE_STUDIES_DIR) -> list[Path]:
    """Return the case-study YAML files in a directory, sorted by name."""
    return sorted(directory.glob("*.yaml"))
