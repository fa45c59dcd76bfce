"""
큐 단위 처리율 제한 (슬라이딩 윈도)

duration_ms 동안 최대 max_jobs개의 잡만 시작하도록 acquire()에서 대기합니다.
claim 전에 슬롯을 받고, 실제로 잡을 받지 못하면 release()로 돌려줍니다.
동시 실행 수(concurrency)와 별개로 적용됩니다.
"""

import asyncio
import time
from collections import deque
from typing import Callable


class RateLimiter:

    def __init__(
        self,
        max_jobs: int,
        duration_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_jobs <= 0 or duration_ms <= 0:
            raise ValueError(f"Invalid limiter: max={max_jobs}, duration={duration_ms}ms")
        self._max = max_jobs
        self._window = duration_ms / 1000
        self._clock = clock
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_jobs(self) -> int:
        return self._max

    @property
    def duration_ms(self) -> int:
        return int(self._window * 1000)

    def _evict(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self._window:
            self._starts.popleft()

    async def acquire(self) -> None:
        """시작 슬롯이 날 때까지 대기"""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._starts) < self._max:
                    self._starts.append(now)
                    return
                await asyncio.sleep(self._starts[0] + self._window - now)

    def in_window(self) -> int:
        """현재 윈도 안의 시작 수"""
        self._evict(self._clock())
        return len(self._starts)

    def release(self) -> None:
        """마지막으로 받은 슬롯 반납 (claim할 잡이 없었을 때)"""
        if self._starts:
            self._starts.pop()
