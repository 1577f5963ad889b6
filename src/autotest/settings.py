from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---- filesystem layout ----
    tests_repository: Path = Path("/srv/autotest/tests")
    submissions_dir: Path = Path("/srv/autotest/submissions")
    run_dir: Path = Path("/srv/autotest/run")

    # ---- harness ----
    harness_path: Path = Path("/srv/autotest/harness/test_runner.rb")
    harness_interpreter: Optional[str] = None
    harness_timeout_s: int = 600

    # ---- persistence / worker ----
    db_url: str = "sqlite:///./autotest.db"
    poll_interval_s: float = 2.0

    # ---- http ----
    cors_origins: List[str] = ["http://localhost:8080"]

    # ---- config files ----
    limits_file: Path = Path("conf/limits.yaml")

    # rlimits applied to the harness child (read from YAML)
    limits: Dict[str, Any] = {}

    # env prefix AUTOTEST_*
    model_config = SettingsConfigDict(env_prefix="AUTOTEST_", extra="ignore")


def _block(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    return value if isinstance(value, dict) else {}


def load_settings() -> Settings:
    # 0) base values from AUTOTEST_* env
    s = Settings()

    # 1) conf/autotest.yaml (or AUTOTEST_CONF)
    conf_yaml = os.environ.get("AUTOTEST_CONF", "conf/autotest.yaml")
    try:
        with open(conf_yaml, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    paths = _block(data, "paths")
    harness = _block(data, "harness")
    defaults = _block(data, "defaults")

    # 2) merge into Settings keeping Path/int/float types
    s = s.model_copy(
        update={
            "tests_repository": Path(str(paths.get("tests_repository", s.tests_repository))),
            "submissions_dir": Path(str(paths.get("submissions_dir", s.submissions_dir))),
            "run_dir": Path(str(paths.get("run_dir", s.run_dir))),
            "harness_path": Path(str(harness.get("path", s.harness_path))),
            "harness_interpreter": harness.get("interpreter", s.harness_interpreter),
            "harness_timeout_s": int(harness.get("timeout_s", s.harness_timeout_s)),
            "db_url": str(defaults.get("db_url", s.db_url)),
            "poll_interval_s": float(defaults.get("poll_interval_s", s.poll_interval_s)),
            "cors_origins": list(defaults.get("cors_origins", s.cors_origins)),
            "limits_file": Path(str(defaults.get("limits_file", s.limits_file))),
        }
    )

    # 3) conf/limits.yaml (optional)
    limits: Dict[str, Any] = {}
    if s.limits_file.exists():
        limits_raw = yaml.safe_load(s.limits_file.read_text(encoding="utf-8")) or {}
        if isinstance(limits_raw, dict):
            limits = limits_raw

    return s.model_copy(update={"limits": limits})
