"""
설정 파일 로더

config/ 디렉토리의 YAML 파일들을 읽어 하나의 dict로 병합합니다.
값에 들어있는 ${ENV_NAME} 형태의 플레이스홀더는 환경변수로 치환합니다.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent.parent / "config"

CONFIG_FILES = (
    "database.yaml",
    "scheduler.yaml",
    "worker.yaml",
    "provider.yaml",
    "admin.yaml",
    "logging.yaml",
)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: Any) -> Any:
    """${ENV} 플레이스홀더 치환 (재귀)"""
    if isinstance(value, str):
        expanded = _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
        # 환경변수가 비어 있으면 None으로 취급
        if expanded == "" and _ENV_PATTERN.search(value):
            return None
        return expanded
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def load_yaml(path: Path) -> dict:
    """단일 YAML 파일 로드"""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return _expand_env(data)


def load_config(config_dir: Path | str | None = None, files: tuple[str, ...] = CONFIG_FILES) -> dict:
    """
    설정 파일 로드 및 병합

    Args:
        config_dir: 설정 디렉토리 (기본: 프로젝트 루트의 config/)
        files: 읽을 파일 목록 (없는 파일은 건너뜀)

    Returns:
        최상위 키 기준으로 병합된 설정 dict
    """
    base = Path(config_dir) if config_dir else CONFIG_DIR
    config: dict = {}

    for name in files:
        path = base / name
        if not path.exists():
            logger.debug(f"Config file not found, skipping: {path}")
            continue
        config.update(load_yaml(path))

    return config
