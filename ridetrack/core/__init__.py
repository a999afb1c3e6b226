"""
Доменная логика устройства водителя.
"""
