"""
Грубый realtime-канал позиций водителей через Redis Pub/Sub.
"""
