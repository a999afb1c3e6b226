"""
Общие модели (DTO) для сервисов и трекинга.
"""
