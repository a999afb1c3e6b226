"""
Трекинг на устройстве водителя: оценка позиции, сессия поездки, фоновая отправка.
"""
