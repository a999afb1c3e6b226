"""
Общие модули: константы, исключения, логирование.
"""
