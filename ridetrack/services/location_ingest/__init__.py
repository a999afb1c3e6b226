"""
Приём ping-ов позиции водителей.
"""
