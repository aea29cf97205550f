"""
Перебор записей о свободных воркерах.
"""

from typing import Any, List, Union

from redis.exceptions import RedisError

from ..utils.logger import get_logger
from ..exceptions import ScanError


logger = get_logger(__name__)


class AvailabilityScanner:
    """
    Собирает кандидатов курсорным SCAN по префиксу записей о простое.

    Перебор не дает согласованного снимка: ключи могут истечь, удалиться
    или быть захвачены во время обхода. Истиной считается только
    результат захвата блокировки.
    """

    def __init__(self, redis: Any, idle_prefix: str, scan_count: int = 100):
        self._redis = redis
        self._idle_prefix = idle_prefix
        self._scan_count = scan_count

    @property
    def match_pattern(self) -> str:
        return f"{self._idle_prefix}*"

    async def scan(self) -> List[str]:
        """
        Полный обход записей о простое.

        Returns:
            ID воркеров в порядке перечисления хранилищем, без повторов

        Raises:
            ScanError: Если хранилище вернуло ошибку на любой странице
        """
        candidates: List[str] = []
        seen = set()
        cursor = 0
        pages = 0

        try:
            while True:
                cursor, keys = await self._redis.scan(
                    cursor=cursor, match=self.match_pattern, count=self._scan_count
                )
                pages += 1
                for key in keys:
                    worker_id = self._worker_id(key)
                    # SCAN может вернуть один ключ на разных страницах
                    if worker_id and worker_id not in seen:
                        seen.add(worker_id)
                        candidates.append(worker_id)
                if int(cursor) == 0:
                    break
        except RedisError as e:
            raise ScanError(f"Scan of {self.match_pattern} failed after {pages} pages: {e}") from e

        logger.debug(f"idle workers: {candidates}")
        return candidates

    def _worker_id(self, key: Union[str, bytes]) -> str:
        if isinstance(key, bytes):
            key = key.decode('utf-8')
        if not key.startswith(self._idle_prefix):
            return ""
        return key[len(self._idle_prefix):]
