"""
Исключения для kadquery
"""

from typing import Optional


class KadQueryError(Exception):
    """Базовое исключение для kadquery"""
    pass


class ConfigError(KadQueryError):
    """Ошибка конфигурации"""
    pass


class InvalidAddressError(KadQueryError):
    """Неверная строка адреса (multiaddr + /p2p/ идентичность)"""

    def __init__(self, address: str, reason: str):
        super().__init__(f"Invalid address {address!r}: {reason}")
        self.address = address
        self.reason = reason


class InvalidIdentityError(KadQueryError):
    """Строку нельзя декодировать как идентичность пира"""

    def __init__(self, value: str, reason: str):
        super().__init__(f"Invalid peer identity {value!r}: {reason}")
        self.value = value
        self.reason = reason


class NetworkError(KadQueryError):
    """Ошибка сетевых операций"""
    pass


class BootstrapError(NetworkError):
    """Ошибка bootstrap процесса (не удалось занять адреса прослушивания)"""
    pass


class DialError(NetworkError):
    """Не удалось установить соединение с адресом"""

    def __init__(self, address: str, reason: str):
        super().__init__(f"Failed to dial {address}: {reason}")
        self.address = address
        self.reason = reason


class HandshakeError(NetworkError):
    """Ошибка аутентификации соединения"""
    pass


class StreamError(NetworkError):
    """Ошибка согласования протокола или ввода-вывода на потоке"""

    def __init__(self, message: str, protocol: Optional[str] = None):
        super().__init__(message)
        self.protocol = protocol


class EncodingError(KadQueryError):
    """Сообщение не удалось закодировать или декодировать"""
    pass


class DHTError(KadQueryError):
    """Ошибка DHT операций"""
    pass


class OperationCancelled(KadQueryError):
    """Операция прервана сигналом отмены (дедлайн или явная отмена)"""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class DirectQueryError(KadQueryError):
    """Сбой прямого запроса с указанием фазы, на которой он произошел"""

    def __init__(self, phase: str, address: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Direct query to {address} failed during {phase}{detail}")
        self.phase = phase
        self.address = address
        self.cause = cause
