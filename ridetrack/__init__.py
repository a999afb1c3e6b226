"""
ridetrack - трекинг поездок водителя и тепловая карта плотности водителей.
"""
