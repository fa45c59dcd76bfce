"""공통 fixture: 테스트마다 임시 SQLite DB와 빈 큐 레지스트리"""

import sys
from pathlib import Path

import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db
from database.registry import DatabaseRegistry
from jobqueue import QueueRegistry


@pytest_asyncio.fixture
async def database(tmp_path):
    """임시 파일 DB (init.sql로 스키마 생성)"""
    DatabaseRegistry.clear()
    QueueRegistry.clear()

    config = {
        'databases': {
            'default': {
                'type': 'sqlite',
                'path': str(tmp_path / 'meetjob_test.db'),
                'pool': {'pool_size': 5, 'pool_timeout': 5.0},
            }
        }
    }
    await DatabaseRegistry.init_from_config(config)

    yield get_db('default')

    QueueRegistry.clear()
    await DatabaseRegistry.close_all()
