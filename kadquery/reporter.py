"""
Вывод результатов запроса в stdout
"""

import sys
from typing import Any, TextIO

import yaml

from kadquery.logger import get_logger


def _to_plain(value: Any) -> Any:
    """Приведение к типам, которые понимает yaml.safe_dump (bytes -> hex)"""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, dict):
        return {_to_plain(k): _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if hasattr(value, "to_dict"):
        return _to_plain(value.to_dict())
    return value


class ResultReporter:
    """
    Человекочитаемый вывод результатов (YAML)

    Записи выводятся как есть: без фильтрации и дедупликации.
    """

    def __init__(self, stream: TextIO = None):
        self.stream = stream or sys.stdout
        self.logger = get_logger("reporter")

    def render(self, result: Any) -> str:
        return yaml.safe_dump(_to_plain(result), default_flow_style=False, sort_keys=False, allow_unicode=True)

    def report(self, result: Any) -> bool:
        """
        Вывод результата

        Args:
            result: LookupResult или DirectQueryResult

        Returns:
            True если результат выведен; ошибки логируются, но не пробрасываются
        """
        try:
            text = self.render(result)
            self.stream.write(text)
            self.stream.flush()
        except (yaml.YAMLError, TypeError, ValueError, OSError) as e:
            self.logger.error("Failed to report result", error=str(e), result_type=type(result).__name__)
            return False
        return True
