"""
Серверные сервисы: приём ping-ов, тепловая карта, realtime-канал.
"""
