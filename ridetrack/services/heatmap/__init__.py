"""
Тепловая карта плотности водителей.
"""
