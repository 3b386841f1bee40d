"""
kadquery: поиск пиров в Kademlia DHT через bootstrap узлы
"""

__version__ = "0.1.0"
